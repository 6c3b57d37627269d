"""Ordered (endpoint, auth style) pairs to try when dialing the agent service."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


class AuthMode(str, Enum):
    XI_API_KEY = "xi-api-key"
    BEARER = "bearer"


DEFAULT_AUTH_ORDER: tuple[AuthMode, ...] = (AuthMode.XI_API_KEY, AuthMode.BEARER)


@dataclass(frozen=True, slots=True)
class ConnectionCandidate:
    endpoint: str
    auth_mode: AuthMode

    def headers(self, api_key: str) -> dict[str, str]:
        return auth_headers(self.auth_mode, api_key)


def auth_headers(mode: AuthMode, api_key: str) -> dict[str, str]:
    if mode is AuthMode.XI_API_KEY:
        return {"xi-api-key": api_key}
    return {"Authorization": f"Bearer {api_key}"}


def with_agent_id(url: str, agent_id: str) -> str:
    """Merge ``agent_id`` into the query string of ``url``."""

    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "agent_id"]
    if agent_id:
        query.append(("agent_id", agent_id))
    return urlunsplit(parts._replace(query=urlencode(query)))


def auth_order(preferred: AuthMode | str | None = None) -> tuple[AuthMode, ...]:
    if not preferred:
        return DEFAULT_AUTH_ORDER
    first = AuthMode(preferred)
    return (first, *(mode for mode in DEFAULT_AUTH_ORDER if mode is not first))


def resolve_candidates(
    *,
    agent_id: str,
    base_hosts: Sequence[str],
    conversation_path: str = "/v1/convai/conversation",
    override_endpoint: str | None = None,
    preferred_auth: AuthMode | str | None = None,
) -> list[ConnectionCandidate]:
    """Build the dial sequence.

    The override endpoint (when configured) comes first, then each base host in
    the given order. Every endpoint is tried in every auth mode before moving
    on to the next endpoint. Duplicate endpoints are collapsed.
    """

    endpoints: list[str] = []
    if override_endpoint:
        endpoints.append(with_agent_id(override_endpoint, agent_id))
    path = "/" + conversation_path.lstrip("/")
    for host in base_hosts:
        endpoints.append(with_agent_id(f"{host.rstrip('/')}{path}", agent_id))

    modes = auth_order(preferred_auth)
    candidates: list[ConnectionCandidate] = []
    seen: set[str] = set()
    for endpoint in endpoints:
        if endpoint in seen:
            continue
        seen.add(endpoint)
        candidates.extend(ConnectionCandidate(endpoint, mode) for mode in modes)
    return candidates


def candidates_from_settings(settings) -> list[ConnectionCandidate]:
    return resolve_candidates(
        agent_id=settings.elevenlabs_agent_id,
        base_hosts=settings.agent_base_hosts,
        conversation_path=settings.agent_conversation_path,
        override_endpoint=settings.elevenlabs_realtime_url or None,
        preferred_auth=settings.elevenlabs_auth_mode,
    )
