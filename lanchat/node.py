"""
LAN Chat node: wires discovery, verification, the connection dispatcher
and outbound sends around one peer registry and one event bus.
"""

import asyncio
import logging

from lanchat.config import CONNECT_TIMEOUT, RECEIVE_DIR, TCP_PORT, UDP_PORT
from lanchat.discovery.registry import PeerRegistry
from lanchat.discovery.service import DiscoveryService
from lanchat.events import EventBus, PeerVerified, TransferStatus
from lanchat.security.crypto import fingerprint
from lanchat.security.handshake import verify_peer
from lanchat.transfer.client import Sender
from lanchat.transfer.server import ConnectionDispatcher

logger = logging.getLogger(__name__)


class LanChatNode:
    """One participant on the LAN."""

    def __init__(
        self,
        name: str,
        password: str = "",
        udp_port: int = UDP_PORT,
        tcp_port: int = TCP_PORT,
        receive_dir: str = RECEIVE_DIR,
        host: str = "0.0.0.0",
        connect_timeout: float = CONNECT_TIMEOUT,
        broadcast_addresses: list[str] | None = None,
        peer_port: int | None = None,
    ) -> None:
        self.name = name
        self.registry = PeerRegistry()
        self.bus = EventBus()
        self._password = password
        self._fingerprint = fingerprint(password) if password else ""
        # Port dialled on peers; every node listens on the same one by default
        self._peer_port = tcp_port if peer_port is None else peer_port
        self._connect_timeout = connect_timeout

        self.discovery = DiscoveryService(
            name,
            self.registry,
            self.bus,
            verifier=self.verify if password else None,
            port=udp_port,
            broadcast_addresses=broadcast_addresses,
        )
        self.dispatcher = ConnectionDispatcher(
            self.registry,
            self.bus,
            password=password,
            host=host,
            port=tcp_port,
            receive_dir=receive_dir,
        )
        self.sender = Sender(
            name,
            self.registry,
            self.bus,
            password=password,
            port=self._peer_port,
            timeout=connect_timeout,
        )

    @property
    def encryption_enabled(self) -> bool:
        return bool(self._password)

    async def start(self) -> None:
        logger.info(f"Starting LAN Chat node for {self.name}")
        if self._password:
            logger.info("Encryption ENABLED (password set)")
        else:
            logger.info("Encryption DISABLED (no password)")
        # Independent subsystems: one retrying its bind must not hold up the other
        await asyncio.gather(self.dispatcher.start(), self.discovery.start())

    async def stop(self) -> None:
        await self.discovery.stop()
        await self.dispatcher.stop()

    async def verify(self, address: str) -> bool:
        """
        Run one verification attempt against `address`.

        The registry is updated before PeerVerified is published, so a
        consumer reacting to the event already sees the new flag.
        """
        if not self._password:
            secure = False
        else:
            secure = await verify_peer(
                address, self._fingerprint, port=self._peer_port, timeout=self._connect_timeout
            )
        self.registry.set_secure(address, secure)
        self.bus.publish(PeerVerified(address=address, secure=secure))
        return secure

    async def send_chat(self, address: str, text: str) -> TransferStatus | None:
        return await self.sender.send_chat(address, text)

    async def send_file(self, address: str, file_path: str) -> TransferStatus:
        return await self.sender.send_file(address, file_path)
