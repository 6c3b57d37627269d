"""Process-wide relay state.

Created once at startup (``get_runtime``) and kept for the life of the
process. The registry is the only state shared between Sessions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from bridge.candidates import ConnectionCandidate, candidates_from_settings
from bridge.dialer import UpstreamDialer
from bridge.heartbeat import HeartbeatSupervisor
from bridge.legs import Leg
from bridge.registry import SessionRegistry
from bridge.session import Session
from bridge.translator import AgentProtocol, get_protocol
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BridgeRuntime:
    settings: Settings
    registry: SessionRegistry
    supervisor: HeartbeatSupervisor
    dialer: UpstreamDialer
    protocol: AgentProtocol

    @classmethod
    def from_settings(cls, settings: Settings) -> BridgeRuntime:
        if not settings.has_agent_credentials:
            LOGGER.warning(
                "ELEVENLABS_API_KEY or ELEVENLABS_AGENT_ID missing; upstream dials will fail until set."
            )
        return cls(
            settings=settings,
            registry=SessionRegistry(),
            supervisor=HeartbeatSupervisor(settings.heartbeat_interval_seconds),
            dialer=UpstreamDialer(settings.elevenlabs_api_key, timeout=settings.dial_timeout_seconds),
            protocol=get_protocol(settings.agent_protocol),
        )

    def candidates(self) -> list[ConnectionCandidate]:
        return candidates_from_settings(self.settings)

    async def open_session(self, call_leg: Leg) -> Session:
        """Create and register the Session for a freshly accepted call leg."""

        session = Session(
            call_leg,
            registry=self.registry,
            dialer=self.dialer,
            candidates=self.candidates,
            protocol=self.protocol,
            supervisor=self.supervisor,
            pre_ready_buffer_frames=self.settings.pre_ready_buffer_frames,
        )
        self.supervisor.track(call_leg)
        await self.registry.add(session)
        return session


@lru_cache(maxsize=1)
def get_runtime() -> BridgeRuntime:
    """Return the process-wide runtime."""

    return BridgeRuntime.from_settings(get_settings())
