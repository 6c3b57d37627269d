"""Socket handles owned by a Session.

A leg wraps one ``websockets`` connection and carries the liveness flag the
heartbeat supervisor works with. Sessions only ever talk to legs, which keeps
them testable with in-memory fakes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from websockets.exceptions import ConnectionClosed

from bridge.errors import BridgeError, PeerClosed, PeerUnresponsive

LOGGER = logging.getLogger(__name__)


class Leg(Protocol):
    label: str
    is_alive: bool

    @property
    def closed(self) -> bool: ...

    def messages(self) -> AsyncIterator[str | bytes]: ...

    def close_cause(self) -> BridgeError: ...

    async def send_json(self, payload: dict[str, Any]) -> bool: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def ping(self) -> None: ...

    def abort(self, cause: BridgeError | None = None) -> None: ...


class WebSocketLeg:
    """A call or agent leg backed by a ``websockets`` asyncio connection."""

    def __init__(self, connection, *, label: str) -> None:
        self._connection = connection
        self.label = label
        self.is_alive = True
        self._closed = False
        self._abort_cause: BridgeError | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yield inbound messages until the peer goes away."""

        try:
            async for message in self._connection:
                yield message
        except ConnectionClosed:
            pass
        finally:
            self._closed = True
            self.is_alive = False

    def close_cause(self) -> BridgeError:
        if self._abort_cause is not None:
            return self._abort_cause
        return PeerClosed(
            getattr(self._connection, "close_code", None),
            getattr(self._connection, "close_reason", None) or "",
        )

    async def send_json(self, payload: dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            await self._connection.send(json.dumps(payload))
        except ConnectionClosed as exc:
            LOGGER.debug("[%s] send after close dropped: %s", self.label, exc)
            self._closed = True
            return False
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._closed = True
        try:
            await self._connection.close(code, reason)
        except ConnectionClosed:
            pass

    async def ping(self) -> None:
        pong_waiter = await self._connection.ping()
        pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.is_alive = True

    def abort(self, cause: BridgeError | None = None) -> None:
        self._abort_cause = cause or PeerUnresponsive()
        self._closed = True
        self.is_alive = False
        transport = getattr(self._connection, "transport", None)
        if transport is not None:
            transport.abort()

    def __repr__(self) -> str:
        return f"<WebSocketLeg {self.label} closed={self._closed}>"
