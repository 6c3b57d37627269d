"""Establish the agent leg by walking the candidate list."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import InvalidHandshake, InvalidStatus, InvalidURI

from bridge.candidates import ConnectionCandidate
from bridge.errors import DialError, DialFailure, DialRejected, DialUnreachable

LOGGER = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


@dataclass(slots=True)
class DialResult:
    connection: Any
    candidate: ConnectionCandidate
    failures: list[DialFailure] = field(default_factory=list)


def websocket_connector(url: str, *, headers: dict[str, str]) -> Awaitable[Any]:
    # Keepalive is owned by the heartbeat supervisor, not the library.
    return connect(
        url,
        additional_headers=headers,
        ping_interval=None,
        open_timeout=None,
        max_size=16 * 1024 * 1024,
    )


class UpstreamDialer:
    """Sequential dialer: the first successful handshake wins."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 8.0,
        connector: Connector = websocket_connector,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._connector = connector

    async def dial(self, candidates: Sequence[ConnectionCandidate]) -> DialResult:
        failures: list[DialFailure] = []
        for candidate in candidates:
            LOGGER.info("[dial] trying %s with auth mode %s", candidate.endpoint, candidate.auth_mode.value)
            try:
                connection = await self._attempt(candidate)
            except (DialRejected, DialUnreachable) as exc:
                LOGGER.warning(
                    "[dial] %s [%s] failed: %s", candidate.endpoint, candidate.auth_mode.value, exc.detail
                )
                failures.append(DialFailure(candidate, exc))
                continue

            LOGGER.info("[dial] connected to %s using %s", candidate.endpoint, candidate.auth_mode.value)
            return DialResult(connection=connection, candidate=candidate, failures=failures)

        raise DialError(failures)

    async def _attempt(self, candidate: ConnectionCandidate) -> Any:
        headers = candidate.headers(self._api_key)
        try:
            return await asyncio.wait_for(
                self._connector(candidate.endpoint, headers=headers),
                timeout=self._timeout,
            )
        except InvalidStatus as exc:
            response = exc.response
            raise DialRejected(
                response.status_code,
                f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            ) from exc
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise DialUnreachable(f"timed out after {self._timeout:g}s") from exc
        except InvalidURI as exc:
            raise DialUnreachable(f"invalid URI: {exc}") from exc
        except (OSError, InvalidHandshake) as exc:
            raise DialUnreachable(f"{type(exc).__name__}: {exc}") from exc
