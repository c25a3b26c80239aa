"""
Outbound chat and file sends.

Whether to encrypt is decided fresh on every send from the registry's
secure flag, so a peer verified mid-session gets encrypted traffic from
the next message on.
"""

import asyncio
import logging
import os

from lanchat.config import CHUNK_SIZE, CONNECT_TIMEOUT, TCP_PORT
from lanchat.discovery.registry import PeerRegistry
from lanchat.events import EventBus, TransferStatus
from lanchat.security.crypto import encrypt
from lanchat.transfer.models import ACCEPTED, Envelope, MessageType, format_header

logger = logging.getLogger(__name__)


class Sender:
    """Sends chat lines and files to peers."""

    def __init__(
        self,
        name: str,
        registry: PeerRegistry,
        bus: EventBus,
        password: str = "",
        port: int = TCP_PORT,
        timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._name = name
        self._registry = registry
        self._bus = bus
        self._password = password
        self._port = port
        self._timeout = timeout

    def is_encrypted(self, address: str) -> bool:
        """True when traffic to `address` would be encrypted right now."""
        return bool(self._password) and self._registry.is_secure(address)

    async def _connect(self, address: str) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(
            asyncio.open_connection(address, self._port), timeout=self._timeout
        )

    def _fail(self, address: str, message: str) -> TransferStatus:
        status = TransferStatus(message=message, address=address)
        self._bus.publish(status)
        return status

    async def send_chat(self, address: str, text: str) -> TransferStatus | None:
        """
        Send one chat line. Returns None on success (chat has no
        acknowledgement), or the error status that was published.
        """
        # Newlines would end the header early
        text = " ".join(text.splitlines())

        if self.is_encrypted(address):
            logger.debug(f"Sending encrypted chat to {address}")
            try:
                payload = await asyncio.to_thread(encrypt, text.encode("utf-8"), self._password)
            except Exception as e:
                logger.error(f"Chat encryption error: {e}")
                return self._fail(address, f"Encryption error: {e}")
            envelope = Envelope(type=MessageType.ECHAT, sender=self._name, text=payload)
        else:
            logger.debug(f"Sending plaintext chat to {address}")
            envelope = Envelope(type=MessageType.CHAT, sender=self._name, text=text)

        writer: asyncio.StreamWriter | None = None
        try:
            _, writer = await self._connect(address)
            writer.write(format_header(envelope))
            await writer.drain()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Chat to {address} failed: {e!r}")
            return self._fail(address, f"Chat error: {str(e) or 'connection timed out'}")
        finally:
            if writer:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

        self._registry.set_last_message(address, text)
        return None

    async def send_file(self, address: str, file_path: str) -> TransferStatus:
        """
        Send a file. The payload runs until this side closes the
        connection; the receiver takes EOF as the end of the file.
        """
        file_name = os.path.basename(file_path)
        encrypted = self.is_encrypted(address)
        msg_type = MessageType.EFILE if encrypted else MessageType.FILE

        writer: asyncio.StreamWriter | None = None
        try:
            with open(file_path, "rb") as f:
                reader, writer = await self._connect(address)
                writer.write(format_header(Envelope(type=msg_type, filename=file_name)))
                await writer.drain()

                response = await asyncio.wait_for(reader.readline(), timeout=self._timeout)
                if response.decode("utf-8", errors="replace").strip() != ACCEPTED:
                    return self._fail(address, f"File error: {file_name} was not accepted")

                if encrypted:
                    logger.debug(f"Sending encrypted file {file_name} to {address}")
                    # Whole file in memory; fine for LAN-sized files
                    content = await asyncio.to_thread(f.read)
                    token = await asyncio.to_thread(encrypt, content, self._password)
                    writer.write(token.encode("ascii"))
                    await writer.drain()
                else:
                    logger.debug(f"Sending plaintext file {file_name} to {address}")
                    while True:
                        chunk = await asyncio.to_thread(f.read, CHUNK_SIZE)
                        if not chunk:
                            break
                        writer.write(chunk)
                        await writer.drain()

                if writer.can_write_eof():
                    writer.write_eof()
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Send error for {file_name}: {e!r}")
            return self._fail(address, f"File error: {str(e) or 'connection timed out'}")
        finally:
            if writer:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

        status = TransferStatus(message=f"Sent: {file_name}", address=address)
        self._registry.set_last_message(address, status.message)
        self._bus.publish(status)
        return status
