"""
TCP connection dispatcher.

Reads one header line per inbound connection and routes it to the file,
chat or verification handler. Unrecognised headers are dropped silently.
"""

import asyncio
import logging
import os
from pathlib import Path

from lanchat.config import (
    CHUNK_SIZE,
    MAX_HEADER_BYTES,
    MAX_RETRIES,
    RECEIVE_DIR,
    RECEIVED_PREFIX,
    RETRY_DELAY,
    TCP_PORT,
)
from lanchat.discovery.registry import PeerRegistry
from lanchat.events import ChatReceived, EventBus, TransferStatus
from lanchat.security.crypto import DecryptionError, decrypt, fingerprint
from lanchat.security.handshake import verify_response
from lanchat.supervisor import supervise_bind
from lanchat.transfer.models import ACCEPTED, Envelope, MessageType, parse_header

logger = logging.getLogger(__name__)

DECRYPT_FAILED_PLACEHOLDER = "[Could not decrypt - password mismatch]"
NO_PASSWORD_PLACEHOLDER = "[Encrypted message - no password set]"


async def _reply(writer: asyncio.StreamWriter, line: str) -> None:
    writer.write(f"{line}\n".encode("utf-8"))
    await writer.drain()


class ConnectionDispatcher:
    """Accepts TCP connections and handles one request per connection."""

    def __init__(
        self,
        registry: PeerRegistry,
        bus: EventBus,
        password: str = "",
        host: str = "0.0.0.0",
        port: int = TCP_PORT,
        receive_dir: str = RECEIVE_DIR,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._password = password
        self._fingerprint = fingerprint(password) if password else ""
        self._host = host
        self._port = port
        self._receive_dir = Path(receive_dir)
        self._server: asyncio.Server | None = None
        self.bind_retries = MAX_RETRIES
        self.bind_delay = RETRY_DELAY

    @property
    def port(self) -> int:
        """The bound port (useful when constructed with port 0)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        self._server = await supervise_bind(
            "TCP", self._bind, self._bus, retries=self.bind_retries, delay=self.bind_delay
        )
        if self._server:
            logger.info(f"Connection dispatcher listening on port {self.port}")

    async def _bind(self) -> asyncio.Server:
        return await asyncio.start_server(
            self._handle_connection,
            self._host,
            self._port,
            limit=MAX_HEADER_BYTES,
        )

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Connection dispatcher stopped")

    def received_path(self, filename: str) -> Path:
        return self._receive_dir / f"{RECEIVED_PREFIX}{filename}"

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        address = peer[0] if peer else ""
        try:
            try:
                header = await reader.readline()
            except ValueError:
                # Line longer than the stream limit
                logger.debug(f"Oversized header from {address}, dropping")
                return

            envelope = parse_header(header.decode("utf-8", errors="replace"))
            if envelope is None:
                logger.debug(f"Unrecognised header from {address}, dropping")
                return

            if envelope.type == MessageType.FILE:
                await self._receive_file(envelope, reader, writer, address)
            elif envelope.type == MessageType.EFILE:
                await self._receive_encrypted_file(envelope, reader, writer, address)
            elif envelope.type == MessageType.CHAT:
                self._publish_chat(address, envelope.sender, envelope.text)
            elif envelope.type == MessageType.ECHAT:
                await self._receive_encrypted_chat(envelope, address)
            elif envelope.type == MessageType.VERIFY:
                await self._answer_verify(envelope, writer, address)
        except OSError as e:
            logger.warning(f"Connection error from {address}: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def _publish_chat(self, address: str, sender: str, text: str) -> None:
        self._registry.set_last_message(address, text)
        self._bus.publish(ChatReceived(address=address, sender=sender, text=text))

    def _publish_status(self, address: str, message: str) -> None:
        self._registry.set_last_message(address, message)
        self._bus.publish(TransferStatus(message=message, address=address))

    async def _receive_file(
        self,
        envelope: Envelope,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        address: str,
    ) -> None:
        """Stream the rest of the connection into received_<name>."""
        await _reply(writer, ACCEPTED)
        path = self.received_path(envelope.filename)
        logger.debug(f"Receiving file {envelope.filename} from {address}")

        try:
            with open(path, "wb") as f:
                while True:
                    chunk = await reader.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    await asyncio.to_thread(f.write, chunk)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save {envelope.filename}: {e}")
            await asyncio.to_thread(self._discard, path)
            self._publish_status(address, f"Failed to save file: {envelope.filename}")
            return

        self._publish_status(address, f"Received: {envelope.filename}")

    async def _receive_encrypted_file(
        self,
        envelope: Envelope,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        address: str,
    ) -> None:
        """Read one base64 blob to EOF; only ever write decrypted content."""
        await _reply(writer, ACCEPTED)
        name = envelope.filename
        logger.debug(f"Receiving encrypted file: {name}")
        encoded = await reader.read()

        if not self._password:
            logger.debug(f"Encrypted file received but no password set: {name}")
            self._publish_status(address, f"Encrypted file received but no password set: {name}")
            return

        try:
            plaintext = await asyncio.to_thread(decrypt, encoded, self._password)
        except DecryptionError as e:
            logger.debug(f"File decryption failed for {name}: {e}")
            self._publish_status(address, f"Failed to decrypt file: {name}")
            return

        path = self.received_path(name)
        try:
            await asyncio.to_thread(path.write_bytes, plaintext)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save {name}: {e}")
            await asyncio.to_thread(self._discard, path)
            self._publish_status(address, f"Failed to save file: {name}")
            return

        logger.debug(f"File decrypted successfully: {name}")
        self._publish_status(address, f"Received (encrypted): {name}")

    async def _receive_encrypted_chat(self, envelope: Envelope, address: str) -> None:
        sender = envelope.sender
        logger.debug(f"Received encrypted chat from {sender}")
        if not self._password:
            self._publish_chat(address, sender, NO_PASSWORD_PLACEHOLDER)
            return

        try:
            plaintext = await asyncio.to_thread(decrypt, envelope.text, self._password)
        except DecryptionError:
            logger.debug(f"Chat decryption failed from {sender}")
            self._publish_chat(address, sender, DECRYPT_FAILED_PLACEHOLDER)
            return

        self._publish_chat(address, sender, plaintext.decode("utf-8", errors="replace"))

    async def _answer_verify(
        self, envelope: Envelope, writer: asyncio.StreamWriter, address: str
    ) -> None:
        response = verify_response(envelope.fingerprint, self._fingerprint)
        logger.debug(f"VERIFY from {address}: {response}")
        await _reply(writer, response)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")
