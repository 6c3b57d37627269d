"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = True
    ts: int = Field(description="Server time in epoch milliseconds.")


class SessionSummary(BaseModel):
    id: str
    state: str
    stream_sid: str | None = None
    created_at: float
    last_activity_at: float
    agent_endpoint: str | None = None
    auth_mode: str | None = None
    agent_ready: bool
    frames_to_agent: int
    frames_to_call: int
    frames_dropped: int


class SessionListResponse(BaseModel):
    count: int
    sessions: list[SessionSummary]


class EnvDiagnosticsResponse(BaseModel):
    realtime_url: str | None = Field(default=None, description="Explicit agent websocket override, if any.")
    agent_id: str | None = Field(default=None, description="Truncated agent identifier.")
    has_api_key: bool
    agent_protocol: str
    auth_mode: str | None = None
    candidate_count: int
    call_media_path: str


class AgentDiagnosticsResponse(BaseModel):
    status: int
    body: dict | list | str | None = None
