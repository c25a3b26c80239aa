"""Bind supervision for the UDP and TCP listeners."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from lanchat.config import MAX_RETRIES, RETRY_DELAY
from lanchat.events import EventBus, TransferStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def supervise_bind(
    label: str,
    bind: Callable[[], Awaitable[T]],
    bus: EventBus,
    retries: int = MAX_RETRIES,
    delay: float = RETRY_DELAY,
) -> T | None:
    """
    Call `bind` until it succeeds, backing off between attempts.

    Each failure is published as "<label> listen error: ...". Returns the
    bound object, or None once all attempts are exhausted; the subsystem
    then stays down for the life of the process.
    """
    for attempt in range(retries + 1):
        try:
            return await bind()
        except OSError as e:
            logger.error(f"{label} listen error (attempt {attempt + 1}): {e}")
            bus.publish(TransferStatus(message=f"{label} listen error: {e}"))
            if attempt < retries:
                await asyncio.sleep(delay * 2 ** attempt)

    logger.error(f"{label} listener is down after {retries + 1} attempts")
    bus.publish(TransferStatus(message=f"{label} listener stopped"))
    return None
