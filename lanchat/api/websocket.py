"""WebSocket fan-out of event bus events."""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from lanchat.events import Event, EventBus

logger = logging.getLogger(__name__)


def encode_event(event: Event) -> str:
    """The wire form pushed to clients: {"event": kind, "data": {...}}."""
    return json.dumps({"event": event.kind, "data": event.model_dump(exclude={"kind"})})


class EventStream:
    """
    Pushes every bus event to the connected WebSocket clients.

    Clients are send-only subscribers; whatever they send is read and
    ignored so a disconnect is noticed. A client whose send fails is
    dropped on the spot.
    """

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    @property
    def clients(self) -> int:
        return len(self._clients)

    async def serve(self, websocket: WebSocket) -> None:
        """Run one client connection until it goes away."""
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Event stream client joined ({self.clients} connected)")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.discard(websocket)
            logger.info(f"Event stream client left ({self.clients} connected)")

    async def send(self, event: Event) -> None:
        message = encode_event(event)
        clients = list(self._clients)
        results = await asyncio.gather(
            *(ws.send_text(message) for ws in clients), return_exceptions=True
        )
        for ws, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.debug(f"Dropping event stream client: {result!r}")
                self._clients.discard(ws)

    async def pump(self, bus: EventBus) -> None:
        """Drain the bus forever; this is the bus's single consumer."""
        async for event in bus:
            await self.send(event)
