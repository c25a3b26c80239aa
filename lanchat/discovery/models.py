"""Pydantic models for peer discovery."""

from pydantic import BaseModel

ANNOUNCE_PREFIX = "IAM:"


class PeerRecord(BaseModel):
    """Represents a discovered device on the LAN, keyed by address."""
    display_name: str
    address: str
    last_seen: float  # Unix timestamp
    secure: bool = False
    last_message: str = "New connection"


def parse_announcement(data: bytes) -> str | None:
    """Return the announced name of an `IAM:<name>` datagram, or None."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if not text.startswith(ANNOUNCE_PREFIX):
        return None
    name = text[len(ANNOUNCE_PREFIX):].strip()
    return name or None


def build_announcement(name: str) -> bytes:
    return f"{ANNOUNCE_PREFIX}{name}".encode("utf-8")
