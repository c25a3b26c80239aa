"""
Event bus carrying typed events from background services to one consumer.

Producers call publish(), which never blocks; the queue is unbounded so a
slow consumer cannot stall network I/O.
"""

import asyncio
import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PeerSeen(BaseModel):
    kind: Literal["peer_seen"] = "peer_seen"
    address: str
    name: str
    last_seen: float


class PeerVerified(BaseModel):
    kind: Literal["peer_verified"] = "peer_verified"
    address: str
    secure: bool


class ChatReceived(BaseModel):
    kind: Literal["chat_received"] = "chat_received"
    address: str
    sender: str
    text: str


class TransferStatus(BaseModel):
    """A short user-visible status line (transfers, send errors, listener errors)."""
    kind: Literal["transfer_status"] = "transfer_status"
    message: str
    address: str | None = None


Event = Annotated[
    Union[PeerSeen, PeerVerified, ChatReceived, TransferStatus],
    Field(discriminator="kind"),
]


class EventBus:
    """Single-consumer channel for core events."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()

    def publish(self, event: Event) -> None:
        logger.debug(f"Publishing {event.kind}: {event.model_dump()}")
        self._queue.put_nowait(event)

    async def get(self) -> Event:
        return await self._queue.get()

    def get_nowait(self) -> Event:
        return self._queue.get_nowait()

    def empty(self) -> bool:
        return self._queue.empty()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        return await self._queue.get()
