"""
UDP-based LAN discovery service.

Broadcasts a periodic `IAM:<name>` heartbeat and listens for the
heartbeats of other nodes on the same LAN.
"""

import asyncio
import logging
import socket
from typing import Awaitable, Callable

from lanchat.config import BROADCAST_INTERVAL, MAX_RETRIES, RETRY_DELAY, UDP_PORT
from lanchat.discovery.models import build_announcement, parse_announcement
from lanchat.discovery.registry import PeerRegistry
from lanchat.events import EventBus, PeerSeen
from lanchat.supervisor import supervise_bind

logger = logging.getLogger(__name__)

Verifier = Callable[[str], Awaitable[object]]


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving heartbeats."""

    def __init__(self, service: "DiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        name = parse_announcement(data)
        if name is None:
            logger.debug(f"Ignoring invalid discovery packet from {addr}")
            return
        self.service.handle_announcement(name, addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class DiscoveryService:
    """Manages LAN device discovery via UDP broadcast."""

    def __init__(
        self,
        name: str,
        registry: PeerRegistry,
        bus: EventBus,
        verifier: Verifier | None = None,
        port: int = UDP_PORT,
        interval: float = BROADCAST_INTERVAL,
        broadcast_addresses: list[str] | None = None,
    ) -> None:
        self._name = name
        self._registry = registry
        self._bus = bus
        # Only set when a password is configured
        self._verifier = verifier
        self._port = port
        self._interval = interval
        self._broadcast_addresses = broadcast_addresses
        self._transport: asyncio.DatagramTransport | None = None
        self._send_transport: asyncio.DatagramTransport | None = None
        self._broadcast_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self.bind_retries = MAX_RETRIES
        self.bind_delay = RETRY_DELAY

    @property
    def name(self) -> str:
        return self._name

    @property
    def listening(self) -> bool:
        return self._transport is not None

    def handle_announcement(self, name: str, address: str) -> None:
        """Register a heartbeat; verify the peer the first time it is seen."""
        if name == self._name:
            return

        record, is_new = self._registry.upsert(address, name)
        if not is_new:
            return

        self._bus.publish(PeerSeen(address=address, name=name, last_seen=record.last_seen))
        if self._verifier is None:
            logger.debug(f"No password set, skipping verification for {name}")
            return

        task = asyncio.ensure_future(self._verifier(address))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def start(self) -> None:
        """Start the heartbeat broadcaster and listener."""
        logger.info(f"Starting discovery on UDP port {self._port}")
        loop = asyncio.get_running_loop()

        self._send_transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol,
            local_addr=("0.0.0.0", 0),
            allow_broadcast=True,
        )
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())

        self._transport = await supervise_bind(
            "UDP", self._bind, self._bus, retries=self.bind_retries, delay=self.bind_delay
        )
        if self._transport:
            logger.info("Discovery service started")

    async def _bind(self) -> asyncio.DatagramTransport:
        loop = asyncio.get_running_loop()

        # SO_REUSEADDR before binding so several instances can share the port
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind(("0.0.0.0", self._port))
        except OSError:
            sock.close()
            raise

        transport, _ = await loop.create_datagram_endpoint(
            lambda: DiscoveryProtocol(self),
            sock=sock,
        )
        return transport

    async def stop(self) -> None:
        """Stop the discovery service."""
        if self._broadcast_task:
            self._broadcast_task.cancel()
        for task in list(self._pending):
            task.cancel()
        if self._transport:
            self._transport.close()
            self._transport = None
        if self._send_transport:
            self._send_transport.close()
            self._send_transport = None
        logger.info("Discovery service stopped")

    def _broadcast_targets(self) -> set[str]:
        if self._broadcast_addresses is not None:
            return set(self._broadcast_addresses)

        targets = {"255.255.255.255"}
        try:
            host_name = socket.gethostname()
            _, _, ips = socket.gethostbyname_ex(host_name)
            for ip in ips:
                if not ip.startswith("127."):
                    # Simple heuristic for /24 subnets
                    parts = ip.split(".")
                    if len(parts) == 4:
                        parts[3] = "255"
                        targets.add(".".join(parts))
        except OSError as e:
            logger.debug(f"Error resolving local IPs: {e}")
        return targets

    async def _broadcast_loop(self) -> None:
        """Send a heartbeat every interval; a failed beat is just skipped."""
        data = build_announcement(self._name)
        while True:
            if self._send_transport:
                for target in self._broadcast_targets():
                    try:
                        self._send_transport.sendto(data, (target, self._port))
                    except OSError as e:
                        logger.debug(f"Heartbeat to {target} failed: {e}")
            await asyncio.sleep(self._interval)
