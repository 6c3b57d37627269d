"""Health, diagnostics and session listing routes."""

from __future__ import annotations

import logging
import time

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from api.schemas import (
    AgentDiagnosticsResponse,
    EnvDiagnosticsResponse,
    HealthResponse,
    SessionListResponse,
    SessionSummary,
)
from bridge.runtime import BridgeRuntime, get_runtime
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return "Bridge is running"


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    return HealthResponse(ok=True, ts=int(time.time() * 1000))


@router.get(get_settings().call_media_path, response_class=PlainTextResponse)
async def call_media_info(runtime: BridgeRuntime = Depends(get_runtime)) -> str:
    """Answer plain GETs on the media path; the websocket itself is served on its own port."""

    settings = runtime.settings
    return f"WS endpoint mounted at {settings.call_media_path} on port {settings.call_media_port}"


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(runtime: BridgeRuntime = Depends(get_runtime)) -> SessionListResponse:
    sessions = [SessionSummary(**session.describe()) for session in runtime.registry.sessions()]
    return SessionListResponse(count=len(sessions), sessions=sessions)


@router.get("/diag/env", response_model=EnvDiagnosticsResponse)
async def diag_env(runtime: BridgeRuntime = Depends(get_runtime)) -> EnvDiagnosticsResponse:
    settings = runtime.settings
    agent_id = settings.elevenlabs_agent_id
    return EnvDiagnosticsResponse(
        realtime_url=settings.elevenlabs_realtime_url or None,
        agent_id=f"{agent_id[:10]}…" if agent_id else None,
        has_api_key=bool(settings.elevenlabs_api_key),
        agent_protocol=settings.agent_protocol,
        auth_mode=settings.elevenlabs_auth_mode,
        candidate_count=len(runtime.candidates()),
        call_media_path=settings.call_media_path,
    )


@router.get("/diag/agent", response_model=AgentDiagnosticsResponse)
async def diag_agent(runtime: BridgeRuntime = Depends(get_runtime)):
    """Check the configured credentials against the agent REST API."""

    settings = runtime.settings
    if not settings.has_agent_credentials:
        raise HTTPException(status_code=400, detail="ELEVENLABS_AGENT_ID or ELEVENLABS_API_KEY missing")

    url = f"{settings.elevenlabs_api_base.rstrip('/')}/v1/convai/agents/{settings.elevenlabs_agent_id}"
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.get(url, headers={"xi-api-key": settings.elevenlabs_api_key})
    except httpx.HTTPError as exc:
        LOGGER.error("Agent diagnostics request failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    try:
        body = response.json()
    except ValueError:
        body = response.text
    payload = AgentDiagnosticsResponse(status=response.status_code, body=body)
    return JSONResponse(status_code=response.status_code, content=payload.model_dump())
