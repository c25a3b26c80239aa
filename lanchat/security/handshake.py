"""
Password verification handshake.

The initiator sends its fingerprint, the responder compares it to its own
and answers VMATCH or VNOMATCH. Every failure on the initiator side is a
no-match: the peer simply stays on plaintext.
"""

import asyncio
import logging

from lanchat.config import CONNECT_TIMEOUT, TCP_PORT
from lanchat.security.crypto import fingerprints_match
from lanchat.transfer.models import Envelope, MessageType, VMATCH, VNOMATCH, format_header

logger = logging.getLogger(__name__)


async def verify_peer(
    address: str,
    local_fingerprint: str,
    port: int = TCP_PORT,
    timeout: float = CONNECT_TIMEOUT,
) -> bool:
    """
    Ask the peer at `address` whether it holds the same password.

    Returns True only on an explicit VMATCH. No retry.
    """
    logger.debug(f"Verifying peer {address}...")
    writer: asyncio.StreamWriter | None = None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout=timeout
        )
        writer.write(format_header(Envelope(type=MessageType.VERIFY, fingerprint=local_fingerprint)))
        await writer.drain()
        response = await asyncio.wait_for(reader.readline(), timeout=timeout)
    except (OSError, ValueError, asyncio.TimeoutError) as e:
        logger.debug(f"Verify failed for {address}: {e}")
        return False
    finally:
        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    match = response.decode("utf-8", errors="replace").strip() == VMATCH
    logger.debug(f"Verify result for {address}: match={match}")
    return match


def verify_response(remote_fingerprint: str, local_fingerprint: str) -> str:
    """
    Responder side: the line to send back for a VERIFY header.

    Without a local password the local fingerprint is empty and never
    matches a real peer.
    """
    if local_fingerprint and fingerprints_match(remote_fingerprint, local_fingerprint):
        return VMATCH
    return VNOMATCH
