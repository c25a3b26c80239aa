"""Wire protocol envelope: one newline-terminated UTF-8 header per connection."""

import os
from enum import Enum

from pydantic import BaseModel


class MessageType(str, Enum):
    """All header types a connection can open with."""
    FILE = "FILE"
    EFILE = "EFILE"
    CHAT = "CHAT"
    ECHAT = "ECHAT"
    VERIFY = "VERIFY"


# --- Wire responses ---
ACCEPTED = "ACCEPTED"
VMATCH = "VMATCH"
VNOMATCH = "VNOMATCH"


class Envelope(BaseModel):
    """A parsed header line."""
    type: MessageType
    filename: str = ""  # FILE / EFILE
    sender: str = ""  # CHAT / ECHAT
    text: str = ""  # CHAT plaintext or ECHAT base64 ciphertext
    fingerprint: str = ""  # VERIFY


def _safe_filename(raw: str) -> str:
    # Both separators, whatever the local platform uses
    return os.path.basename(raw.replace("\\", "/")).strip()


def parse_header(line: str) -> Envelope | None:
    """
    Parse a header line into an Envelope.

    Returns None for anything that is not a well-formed header; the
    caller drops the connection without further action.
    """
    line = line.rstrip("\r\n")
    kind, sep, rest = line.partition(":")
    if not sep:
        return None
    try:
        msg_type = MessageType(kind)
    except ValueError:
        return None

    if msg_type in (MessageType.FILE, MessageType.EFILE):
        name = _safe_filename(rest)
        if not name or name in (".", "..") or "\x00" in name:
            return None
        return Envelope(type=msg_type, filename=name)

    if msg_type in (MessageType.CHAT, MessageType.ECHAT):
        sender, sep, text = rest.partition(":")
        if not sep:
            return None
        return Envelope(type=msg_type, sender=sender, text=text.strip())

    return Envelope(type=msg_type, fingerprint=rest.strip())


def format_header(envelope: Envelope) -> bytes:
    """Encode an Envelope as its header line."""
    if envelope.type in (MessageType.FILE, MessageType.EFILE):
        line = f"{envelope.type.value}:{envelope.filename}"
    elif envelope.type in (MessageType.CHAT, MessageType.ECHAT):
        line = f"{envelope.type.value}:{envelope.sender}:{envelope.text}"
    else:
        line = f"{envelope.type.value}:{envelope.fingerprint}"
    return (line + "\n").encode("utf-8")
