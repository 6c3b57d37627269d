"""Mapping between the call-leg and agent-leg event vocabularies.

Call leg: Twilio Media Streams JSON (``connected``/``start``/``media``/``stop``).
Agent leg: either the ElevenLabs Conversational AI websocket protocol or the
OpenAI-style realtime protocol, selected with ``AGENT_PROTOCOL``.

Every function here is pure. Malformed input raises ``TranslationDropped``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from bridge.errors import TranslationDropped


class CallEventKind(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    OTHER = "other"


class AgentEventKind(str, Enum):
    READY = "ready"
    AUDIO = "audio"
    INTERRUPT = "interrupt"
    PING = "ping"
    ERROR = "error"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class CallEvent:
    kind: CallEventKind
    name: str
    stream_sid: str | None = None
    payload: str | None = None


@dataclass(frozen=True, slots=True)
class AgentEvent:
    kind: AgentEventKind
    name: str
    payload: str | None = None
    event_id: Any = None
    detail: str | None = None


def _load_object(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TranslationDropped("undecodable binary frame") from exc
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise TranslationDropped("not JSON") from exc
    if not isinstance(data, dict):
        raise TranslationDropped("JSON message is not an object")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def parse_call_event(raw: str | bytes) -> CallEvent:
    data = _load_object(raw)
    name = data.get("event")
    if not isinstance(name, str) or not name:
        raise TranslationDropped("call event without 'event'")

    if name == CallEventKind.START.value:
        sid = _section(data, "start").get("streamSid") or data.get("streamSid") or "unknown"
        return CallEvent(CallEventKind.START, name, stream_sid=str(sid))

    if name == CallEventKind.MEDIA.value:
        media = data.get("media")
        if not isinstance(media, dict):
            raise TranslationDropped("media event without media body")
        track = media.get("track")
        if track and track != "inbound":
            return CallEvent(CallEventKind.OTHER, name, stream_sid=data.get("streamSid"))
        payload = media.get("payload")
        if not isinstance(payload, str) or not payload:
            raise TranslationDropped("media event without payload")
        return CallEvent(CallEventKind.MEDIA, name, stream_sid=data.get("streamSid"), payload=payload)

    if name == CallEventKind.STOP.value:
        return CallEvent(CallEventKind.STOP, name, stream_sid=data.get("streamSid"))

    if name == CallEventKind.CONNECTED.value:
        return CallEvent(CallEventKind.CONNECTED, name)

    return CallEvent(CallEventKind.OTHER, name, stream_sid=data.get("streamSid"))


def call_media_frame(stream_sid: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def call_clear_frame(stream_sid: str) -> dict[str, Any]:
    """Ask the call provider to flush audio it has buffered for playback."""

    return {"event": "clear", "streamSid": stream_sid}


class AgentProtocol:
    """One agent-leg vocabulary."""

    name: str = ""

    def append_audio(self, payload: str) -> dict[str, Any]:
        raise NotImplementedError

    def commit(self) -> dict[str, Any]:
        raise NotImplementedError

    def pong(self, event_id: Any) -> dict[str, Any] | None:
        return None

    def parse(self, raw: str | bytes) -> AgentEvent:
        raise NotImplementedError


class ElevenLabsProtocol(AgentProtocol):
    name = "elevenlabs"

    def append_audio(self, payload: str) -> dict[str, Any]:
        return {"user_audio_chunk": payload}

    def commit(self) -> dict[str, Any]:
        # The conversation API has no buffer commit; user_activity marks the end of caller input.
        return {"type": "user_activity"}

    def pong(self, event_id: Any) -> dict[str, Any] | None:
        if event_id is None:
            return None
        return {"type": "pong", "event_id": event_id}

    def parse(self, raw: str | bytes) -> AgentEvent:
        if isinstance(raw, (bytes, bytearray)):
            raise TranslationDropped("binary frame")
        data = _load_object(raw)
        kind = data.get("type")
        if not isinstance(kind, str) or not kind:
            raise TranslationDropped("agent message without 'type'")

        if kind == "conversation_initiation_metadata":
            meta = _section(data, "conversation_initiation_metadata_event")
            return AgentEvent(AgentEventKind.READY, kind, detail=meta.get("conversation_id"))
        if kind == "audio":
            payload = _section(data, "audio_event").get("audio_base_64")
            if not isinstance(payload, str) or not payload:
                raise TranslationDropped("audio message without payload")
            return AgentEvent(AgentEventKind.AUDIO, kind, payload=payload)
        if kind == "interruption":
            return AgentEvent(AgentEventKind.INTERRUPT, kind)
        if kind == "ping":
            ping_event = _section(data, "ping_event")
            return AgentEvent(AgentEventKind.PING, kind, event_id=ping_event.get("event_id"))
        if kind == "error":
            return AgentEvent(AgentEventKind.ERROR, kind, detail=json.dumps(data.get("error"), default=str))
        return AgentEvent(AgentEventKind.OTHER, kind)


class RealtimeProtocol(AgentProtocol):
    name = "realtime"

    _READY = {"session.created", "session.updated"}
    _AUDIO = {"response.audio.delta", "response.output_audio.delta"}

    def append_audio(self, payload: str) -> dict[str, Any]:
        return {"type": "input_audio_buffer.append", "audio": payload}

    def commit(self) -> dict[str, Any]:
        return {"type": "input_audio_buffer.commit"}

    def parse(self, raw: str | bytes) -> AgentEvent:
        if isinstance(raw, (bytes, bytearray)):
            raise TranslationDropped("binary frame")
        data = _load_object(raw)
        kind = data.get("type")
        if not isinstance(kind, str) or not kind:
            raise TranslationDropped("agent message without 'type'")

        if kind in self._READY:
            session = _section(data, "session")
            return AgentEvent(AgentEventKind.READY, kind, detail=session.get("id"))
        if kind in self._AUDIO:
            payload = data.get("delta")
            if not isinstance(payload, str) or not payload:
                raise TranslationDropped("audio delta without payload")
            return AgentEvent(AgentEventKind.AUDIO, kind, payload=payload)
        if kind == "input_audio_buffer.speech_started":
            return AgentEvent(AgentEventKind.INTERRUPT, kind)
        if kind == "error":
            return AgentEvent(AgentEventKind.ERROR, kind, detail=json.dumps(data.get("error"), default=str))
        return AgentEvent(AgentEventKind.OTHER, kind)


_PROTOCOLS: dict[str, type[AgentProtocol]] = {
    ElevenLabsProtocol.name: ElevenLabsProtocol,
    RealtimeProtocol.name: RealtimeProtocol,
}


def get_protocol(name: str) -> AgentProtocol:
    try:
        return _PROTOCOLS[name]()
    except KeyError as exc:
        raise ValueError(f"Unknown agent protocol: {name}") from exc
