"""Per-call relay state machine.

One Session owns one call leg and at most one agent leg. Every input (call
messages, agent messages, dial outcomes, either leg closing) is funnelled
through ``Session.dispatch`` which holds a per-session lock, so handlers see a
consistent ``state``/``agent_leg`` pair and per-leg ordering is kept.

States::

    AwaitingStart -> Dialing -> Active -> Draining -> Closed
                        |          |                    ^
                        +----------+--------------------+
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from bridge.candidates import ConnectionCandidate
from bridge.errors import BridgeError, DialError, TranslationDropped
from bridge.legs import WebSocketLeg
from bridge.translator import (
    AgentEventKind,
    AgentProtocol,
    CallEventKind,
    call_clear_frame,
    call_media_frame,
    parse_call_event,
)

if TYPE_CHECKING:  # pragma: no cover
    from bridge.dialer import UpstreamDialer
    from bridge.heartbeat import HeartbeatSupervisor
    from bridge.legs import Leg
    from bridge.registry import SessionRegistry

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    AWAITING_START = "AwaitingStart"
    DIALING = "Dialing"
    ACTIVE = "Active"
    DRAINING = "Draining"
    CLOSED = "Closed"


@dataclass(frozen=True, slots=True)
class CallMessage:
    raw: str | bytes


@dataclass(frozen=True, slots=True)
class CallClosed:
    cause: BridgeError


@dataclass(frozen=True, slots=True)
class AgentMessage:
    leg: Any
    raw: str | bytes


@dataclass(frozen=True, slots=True)
class AgentClosed:
    leg: Any
    cause: BridgeError


@dataclass(frozen=True, slots=True)
class DialSucceeded:
    leg: Any
    candidate: ConnectionCandidate


@dataclass(frozen=True, slots=True)
class DialFailed:
    error: DialError


SessionEvent = CallMessage | CallClosed | AgentMessage | AgentClosed | DialSucceeded | DialFailed


class Session:
    def __init__(
        self,
        call_leg: Leg,
        *,
        registry: SessionRegistry,
        dialer: UpstreamDialer,
        candidates: Callable[[], Sequence[ConnectionCandidate]],
        protocol: AgentProtocol,
        supervisor: HeartbeatSupervisor,
        leg_factory: Callable[..., Leg] = WebSocketLeg,
        pre_ready_buffer_frames: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.id = f"pending-{secrets.token_hex(4)}"
        self.state = SessionState.AWAITING_START
        self.call_leg = call_leg
        self.agent_leg: Leg | None = None
        self.agent_ready = False
        self.stream_sid: str | None = None
        self.candidate: ConnectionCandidate | None = None

        self._registry = registry
        self._dialer = dialer
        self._candidates = candidates
        self._protocol = protocol
        self._supervisor = supervisor
        self._leg_factory = leg_factory
        self._clock = clock

        self.created_at = clock()
        self.last_activity_at = self.created_at
        self.frames_to_agent = 0
        self.frames_to_call = 0
        self.frames_dropped = 0

        self._pending: deque[str] | None = (
            deque(maxlen=pre_ready_buffer_frames) if pre_ready_buffer_frames > 0 else None
        )
        self._lock = asyncio.Lock()
        self._dial_task: asyncio.Task | None = None
        self._agent_task: asyncio.Task | None = None

    # ------------------------------------------------------------------ driving

    async def run(self) -> None:
        """Pump call-leg messages into the session until the caller hangs up."""

        async for raw in self.call_leg.messages():
            await self.dispatch(CallMessage(raw))
        await self.dispatch(CallClosed(self.call_leg.close_cause()))

    async def dispatch(self, event: SessionEvent) -> None:
        async with self._lock:
            self.last_activity_at = self._clock()
            try:
                await self._handle(event)
            except Exception:
                LOGGER.exception("[%s] failed handling %s in state %s", self.id, type(event).__name__, self.state.value)

    @property
    def dial_task(self) -> asyncio.Task | None:
        return self._dial_task

    async def _handle(self, event: SessionEvent) -> None:
        if isinstance(event, CallMessage):
            await self._on_call_message(event)
        elif isinstance(event, AgentMessage):
            await self._on_agent_message(event)
        elif isinstance(event, DialSucceeded):
            await self._on_dial_succeeded(event)
        elif isinstance(event, DialFailed):
            await self._on_dial_failed(event)
        elif isinstance(event, AgentClosed):
            await self._on_agent_closed(event)
        elif isinstance(event, CallClosed):
            await self._on_call_closed(event)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        LOGGER.info("[%s] %s -> %s", self.id, self.state.value, state.value)
        self.state = state

    # ---------------------------------------------------------------- call leg

    async def _on_call_message(self, event: CallMessage) -> None:
        try:
            call_event = parse_call_event(event.raw)
        except TranslationDropped as exc:
            LOGGER.debug("[%s] call message dropped: %s", self.id, exc.detail)
            return

        if self.state is SessionState.CLOSED:
            return

        if call_event.kind is CallEventKind.START:
            await self._on_start(call_event.stream_sid or "unknown")
        elif call_event.kind is CallEventKind.MEDIA:
            await self._on_media(call_event.payload or "")
        elif call_event.kind is CallEventKind.STOP:
            await self._on_stop()
        else:
            LOGGER.debug("[%s] ignoring call event %s", self.id, call_event.name)

    async def _on_start(self, stream_sid: str) -> None:
        if self.state is not SessionState.AWAITING_START:
            LOGGER.warning("[%s] duplicate start (%s) ignored in %s", self.id, stream_sid, self.state.value)
            return
        self.stream_sid = stream_sid
        await self._registry.rename(self, stream_sid)
        LOGGER.info("[%s] stream started", self.id)
        self._set_state(SessionState.DIALING)
        self._dial_task = asyncio.create_task(self._dial(), name=f"dial-{self.id}")

    async def _on_media(self, payload: str) -> None:
        agent_leg = self.agent_leg
        if (
            self.state is SessionState.ACTIVE
            and agent_leg is not None
            and not agent_leg.closed
            and self.agent_ready
        ):
            await self._send_to_agent(agent_leg, payload)
            return

        waiting_for_agent = self.state is SessionState.DIALING or (
            self.state is SessionState.ACTIVE and agent_leg is not None and not self.agent_ready
        )
        if waiting_for_agent and self._pending is not None:
            if len(self._pending) == self._pending.maxlen:
                self.frames_dropped += 1
            self._pending.append(payload)
            return
        self.frames_dropped += 1

    async def _on_stop(self) -> None:
        LOGGER.info("[%s] stream stopped", self.id)
        if self.state is SessionState.DIALING:
            self._cancel_dial()
            self._set_state(SessionState.DRAINING)
        elif self.state is SessionState.ACTIVE:
            agent_leg = self.agent_leg
            if agent_leg is not None and not agent_leg.closed:
                await agent_leg.send_json(self._protocol.commit())
                await agent_leg.close(1000, "call stop")
            self._set_state(SessionState.DRAINING)

    async def _on_call_closed(self, event: CallClosed) -> None:
        LOGGER.info("[%s] call leg closed: %s", self.id, event.cause)
        self._supervisor.untrack(self.call_leg)
        if self.state is SessionState.CLOSED:
            return
        self._cancel_dial()
        agent_leg = self.agent_leg
        if agent_leg is not None and not agent_leg.closed:
            await agent_leg.close(1000, "call ended")
        await self._close_session()

    # --------------------------------------------------------------- agent leg

    async def _dial(self) -> None:
        try:
            result = await self._dialer.dial(self._candidates())
        except DialError as exc:
            await self.dispatch(DialFailed(exc))
            return
        except Exception:
            LOGGER.exception("[%s] dialer crashed", self.id)
            await self.dispatch(DialFailed(DialError([])))
            return

        leg = self._leg_factory(result.connection, label=f"agent:{self.id}")
        try:
            await self.dispatch(DialSucceeded(leg, result.candidate))
        except asyncio.CancelledError:
            await leg.close(1000, "call ended")
            raise

    def _cancel_dial(self) -> None:
        task = self._dial_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            LOGGER.info("[%s] abandoning in-flight dial", self.id)
            task.cancel()

    async def _on_dial_succeeded(self, event: DialSucceeded) -> None:
        if self.state is not SessionState.DIALING:
            LOGGER.info("[%s] discarding agent leg dialed after %s", self.id, self.state.value)
            await event.leg.close(1000, "session closed")
            return

        self.agent_leg = event.leg
        self.candidate = event.candidate
        self.agent_ready = False
        self._supervisor.track(event.leg)
        self._agent_task = asyncio.create_task(self._pump_agent(event.leg), name=f"agent-{self.id}")
        LOGGER.info(
            "[%s] upstream established via %s using %s",
            self.id,
            event.candidate.endpoint,
            event.candidate.auth_mode.value,
        )
        self._set_state(SessionState.ACTIVE)

    async def _on_dial_failed(self, event: DialFailed) -> None:
        if self.state is not SessionState.DIALING:
            return
        for failure in event.error.failures:
            LOGGER.warning("[%s] dial failure: %s", self.id, failure.describe())
        LOGGER.error("[%s] upstream unavailable: %s", self.id, event.error.detail)
        # The call leg stays up; it simply never receives agent audio.
        await self._close_session()

    async def _pump_agent(self, leg) -> None:
        async for raw in leg.messages():
            await self.dispatch(AgentMessage(leg, raw))
        await self.dispatch(AgentClosed(leg, leg.close_cause()))

    async def _on_agent_message(self, event: AgentMessage) -> None:
        if event.leg is not self.agent_leg:
            return
        try:
            agent_event = self._protocol.parse(event.raw)
        except TranslationDropped as exc:
            LOGGER.debug("[%s] agent message dropped: %s", self.id, exc.detail)
            return

        if agent_event.kind is AgentEventKind.READY:
            LOGGER.info("[%s] agent session ready (%s)", self.id, agent_event.detail or agent_event.name)
            self.agent_ready = True
            await self._flush_pending()
        elif agent_event.kind is AgentEventKind.AUDIO:
            await self._send_to_call(call_media_frame(self.stream_sid or "unknown", agent_event.payload or ""))
        elif agent_event.kind is AgentEventKind.INTERRUPT:
            if not self.call_leg.closed and self.stream_sid:
                await self.call_leg.send_json(call_clear_frame(self.stream_sid))
        elif agent_event.kind is AgentEventKind.PING:
            pong = self._protocol.pong(agent_event.event_id)
            if pong is not None:
                await event.leg.send_json(pong)
        elif agent_event.kind is AgentEventKind.ERROR:
            LOGGER.warning("[%s] agent reported error: %s", self.id, agent_event.detail)
        else:
            LOGGER.debug("[%s] unhandled agent message %s", self.id, agent_event.name)

    async def _on_agent_closed(self, event: AgentClosed) -> None:
        if event.leg is not self.agent_leg:
            return
        LOGGER.info("[%s] agent leg closed: %s", self.id, event.cause)
        self._supervisor.untrack(event.leg)
        self.agent_leg = None
        self.agent_ready = False
        if self.call_leg.closed:
            await self._close_session()
        elif self.state is SessionState.ACTIVE:
            LOGGER.warning("[%s] agent leg lost mid-call; no re-dial", self.id)

    # ----------------------------------------------------------------- relaying

    async def _send_to_agent(self, leg: Leg, payload: str) -> None:
        if await leg.send_json(self._protocol.append_audio(payload)):
            self.frames_to_agent += 1
        else:
            self.frames_dropped += 1

    async def _send_to_call(self, frame: dict[str, Any]) -> None:
        if self.call_leg.closed or not await self.call_leg.send_json(frame):
            return
        self.frames_to_call += 1

    async def _flush_pending(self) -> None:
        if not self._pending or self.agent_leg is None:
            return
        LOGGER.debug("[%s] flushing %d buffered frames", self.id, len(self._pending))
        while self._pending:
            await self._send_to_agent(self.agent_leg, self._pending.popleft())

    async def _close_session(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self._set_state(SessionState.CLOSED)
        if self.agent_leg is not None:
            self._supervisor.untrack(self.agent_leg)
        task = self._agent_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._pending:
            self.frames_dropped += len(self._pending)
            self._pending.clear()
        await self._registry.remove(self)

    # ------------------------------------------------------------- diagnostics

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "stream_sid": self.stream_sid,
            "created_at": self.created_at,
            "last_activity_at": self.last_activity_at,
            "agent_endpoint": self.candidate.endpoint if self.candidate else None,
            "auth_mode": self.candidate.auth_mode.value if self.candidate else None,
            "agent_ready": self.agent_ready,
            "frames_to_agent": self.frames_to_agent,
            "frames_to_call": self.frames_to_call,
            "frames_dropped": self.frames_dropped,
        }
