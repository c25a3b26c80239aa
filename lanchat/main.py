"""
LAN Chat - FastAPI application entry point.

Starts the node (discovery, verification, connection dispatcher) on
startup, serves the REST API and streams node events over WebSocket.
"""

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lanchat.api.routes import init_routes, router
from lanchat.api.websocket import EventStream
from lanchat.config import API_HOST, API_PORT, DEBUG, DEVICE_NAME, PASSWORD
from lanchat.logs import configure_logging
from lanchat.node import LanChatNode

logger = logging.getLogger(__name__)


def _report_start_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception():
        logger.error("Startup failed", exc_info=task.exception())


def create_app(node: LanChatNode) -> FastAPI:
    stream = EventStream()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the node and the event pump."""
        logger.info("Starting LAN Chat services...")
        pump_task = asyncio.create_task(stream.pump(node.bus))
        # Bind retries can take seconds; serve the API meanwhile
        start_task = asyncio.create_task(node.start())
        start_task.add_done_callback(_report_start_failure)
        logger.info(f"LAN Chat API on {API_HOST}:{API_PORT}")
        try:
            yield
        finally:
            logger.info("Shutting down LAN Chat services...")
            start_task.cancel()
            pump_task.cancel()
            await asyncio.gather(start_task, return_exceptions=True)
            await node.stop()

    app = FastAPI(title="LAN Chat", version="1.0.0", lifespan=lifespan)

    init_routes(node)
    app.include_router(router)
    app.add_api_websocket_route("/ws", stream.serve)

    return app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lanchat",
        description="Chat and share files with peers on the local network.",
    )
    parser.add_argument("name", nargs="?", default=DEVICE_NAME, help="your display name")
    parser.add_argument("--pass", dest="password", default=PASSWORD,
                        help="shared password for encrypted communication")
    parser.add_argument("--debug", action="store_true", default=DEBUG,
                        help="enable debug logging to debug.log")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    import uvicorn

    args = parse_args(argv)
    configure_logging(args.debug)
    node = LanChatNode(args.name, password=args.password)

    uvicorn.run(
        create_app(node),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
