"""Call-media websocket server.

The telephony provider opens one websocket per call on ``CALL_MEDIA_PATH``;
each connection becomes one Session. Normally started from the FastAPI
lifespan, but can also run on its own::

    python -m bridge.server --port 10001
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from http import HTTPStatus

from websockets.asyncio.server import Server, ServerConnection, serve

from bridge.legs import WebSocketLeg
from bridge.runtime import BridgeRuntime, get_runtime
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


def _request_path(path: str) -> str:
    return path.split("?", 1)[0].rstrip("/") or "/"


def build_process_request(expected_path: str):
    expected = _request_path(expected_path)

    def process_request(connection: ServerConnection, request):
        if _request_path(request.path) != expected:
            LOGGER.info("Rejecting websocket on unknown path %s", request.path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    return process_request


def build_handler(runtime: BridgeRuntime):
    async def handle_call_leg(connection: ServerConnection) -> None:
        LOGGER.info("[call] websocket connected from %s", connection.remote_address)
        call_leg = WebSocketLeg(connection, label="call")
        session = await runtime.open_session(call_leg)
        call_leg.label = f"call:{session.id}"
        await session.run()

    return handle_call_leg


async def start_call_media_server(
    runtime: BridgeRuntime,
    *,
    host: str | None = None,
    port: int | None = None,
) -> Server:
    settings = runtime.settings
    host = host or settings.call_media_host
    port = port if port is not None else settings.call_media_port
    server = await serve(
        build_handler(runtime),
        host,
        port,
        process_request=build_process_request(settings.call_media_path),
        ping_interval=None,
        max_size=16 * 1024 * 1024,
    )
    LOGGER.info("Call media server listening on ws://%s:%s%s", host, port, settings.call_media_path)
    return server


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Call media websocket bridge")
    parser.add_argument("--host", default=settings.call_media_host)
    parser.add_argument("--port", type=int, default=settings.call_media_port)
    return parser.parse_args()


async def _amain() -> None:
    args = _parse_args()
    runtime = get_runtime()
    runtime.supervisor.start()
    server = await start_call_media_server(runtime, host=args.host, port=args.port)
    await server.serve_forever()


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_amain())


if __name__ == "__main__":
    main()
