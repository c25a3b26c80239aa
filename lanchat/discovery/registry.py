"""Thread-safe table of known peers, keyed by IP address."""

import logging
import threading
import time

from lanchat.discovery.models import PeerRecord

logger = logging.getLogger(__name__)


class PeerRegistry:
    """
    The single source of truth for peer identity and secure status.

    Every method takes the same lock, so upsert, set_secure and snapshot
    are linearizable whether called from the event loop or a worker
    thread. Callers only ever receive copies of the stored records.
    """

    def __init__(self) -> None:
        self._peers: dict[str, PeerRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, address: str, name: str) -> tuple[PeerRecord, bool]:
        """
        Record an announcement from `address`.

        Returns (record, is_new). is_new is decided under the same lock
        as the insert, so concurrent duplicate announcements yield
        exactly one True.
        """
        now = time.time()
        with self._lock:
            peer = self._peers.get(address)
            is_new = peer is None
            if is_new:
                peer = PeerRecord(display_name=name, address=address, last_seen=now)
                self._peers[address] = peer
            else:
                peer.display_name = name
                peer.last_seen = now
            record = peer.model_copy()

        if is_new:
            logger.info(f"Discovered peer: {name} ({address})")
        return record, is_new

    def set_secure(self, address: str, secure: bool) -> PeerRecord | None:
        """Store a verification result. Unknown addresses are ignored."""
        with self._lock:
            peer = self._peers.get(address)
            if peer is None:
                return None
            peer.secure = secure
            return peer.model_copy()

    def set_last_message(self, address: str, text: str) -> None:
        with self._lock:
            peer = self._peers.get(address)
            if peer is not None:
                peer.last_message = text

    def get(self, address: str) -> PeerRecord | None:
        with self._lock:
            peer = self._peers.get(address)
            return peer.model_copy() if peer else None

    def is_secure(self, address: str) -> bool:
        with self._lock:
            peer = self._peers.get(address)
            return peer.secure if peer else False

    def snapshot(self) -> list[PeerRecord]:
        """Return copies of all records, most recently discovered first."""
        with self._lock:
            return [peer.model_copy() for peer in reversed(self._peers.values())]

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
