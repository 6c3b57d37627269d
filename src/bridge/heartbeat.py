from __future__ import annotations

import asyncio
import logging

from websockets.exceptions import ConnectionClosed

from bridge.errors import PeerUnresponsive
from bridge.legs import Leg

LOGGER = logging.getLogger(__name__)


class HeartbeatSupervisor:
    """Process-wide liveness sweep over every tracked leg.

    Each tick aborts legs that did not answer the previous probe and pings the
    rest. A leg therefore survives at most one missed cycle. Aborting closes
    the socket underneath its reader, so the owning Session tears down through
    its usual close path.
    """

    def __init__(self, interval: float = 20.0, *, ping_timeout: float | None = None) -> None:
        self._interval = interval
        self._ping_timeout = ping_timeout if ping_timeout is not None else min(interval / 2, 5.0)
        self._legs: dict[int, Leg] = {}
        self._task: asyncio.Task | None = None

    def track(self, leg: Leg) -> None:
        leg.is_alive = True
        self._legs[id(leg)] = leg
        LOGGER.debug("[heartbeat] tracking %s", leg.label)

    def untrack(self, leg: Leg) -> None:
        self._legs.pop(id(leg), None)

    def is_tracked(self, leg: Leg) -> bool:
        return id(leg) in self._legs

    def __len__(self) -> int:
        return len(self._legs)

    async def sweep(self) -> None:
        pings: list[asyncio.Task] = []
        for key, leg in list(self._legs.items()):
            if key not in self._legs:
                continue
            if leg.closed:
                self._legs.pop(key, None)
                continue
            if not leg.is_alive:
                LOGGER.warning("[heartbeat] terminating unresponsive %s", leg.label)
                self._legs.pop(key, None)
                leg.abort(PeerUnresponsive(f"{leg.label} missed a liveness probe"))
                continue
            leg.is_alive = False
            pings.append(asyncio.create_task(self._ping_leg(key, leg), name=f"ping-{leg.label}"))

        if not pings:
            return
        # A peer that stopped reading blocks its ping on a full write buffer.
        # Such a ping is abandoned and the leg stays marked as not alive.
        pending: set[asyncio.Task] = set(pings)
        try:
            _done, pending = await asyncio.wait(pings, timeout=self._ping_timeout)
        finally:
            for task in pending:
                task.cancel()
        if pending:
            LOGGER.warning("[heartbeat] %d ping(s) still blocked after %ss", len(pending), self._ping_timeout)

    async def _ping_leg(self, key: int, leg: Leg) -> None:
        if key not in self._legs:
            return
        try:
            await leg.ping()
        except ConnectionClosed:
            self._legs.pop(key, None)
        except Exception:
            LOGGER.exception("[heartbeat] ping failed for %s", leg.label)

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.sweep()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="heartbeat-supervisor")
            LOGGER.info("[heartbeat] started, interval=%ss", self._interval)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
