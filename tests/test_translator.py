from __future__ import annotations

import json

import pytest

from bridge.errors import TranslationDropped
from bridge.translator import (
    AgentEventKind,
    CallEventKind,
    call_clear_frame,
    call_media_frame,
    get_protocol,
    parse_call_event,
)


def test_start_event_yields_stream_sid():
    event = parse_call_event(json.dumps({"event": "start", "start": {"streamSid": "MZ1", "callSid": "CA1"}}))
    assert event.kind is CallEventKind.START
    assert event.stream_sid == "MZ1"


def test_start_event_falls_back_to_top_level_stream_sid():
    event = parse_call_event(json.dumps({"event": "start", "streamSid": "MZ2"}))
    assert event.stream_sid == "MZ2"


def test_media_event_keeps_payload_verbatim():
    raw = json.dumps({"event": "media", "streamSid": "MZ1", "media": {"track": "inbound", "payload": "//7+/w=="}})
    event = parse_call_event(raw)
    assert event.kind is CallEventKind.MEDIA
    assert event.payload == "//7+/w=="


def test_outbound_track_media_is_not_relayed():
    raw = json.dumps({"event": "media", "media": {"track": "outbound", "payload": "AAAA"}})
    assert parse_call_event(raw).kind is CallEventKind.OTHER


@pytest.mark.parametrize("name", ["mark", "dtmf", "something-new"])
def test_other_call_events_are_ignored(name):
    assert parse_call_event(json.dumps({"event": name})).kind is CallEventKind.OTHER


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"no_event": True}),
        json.dumps({"event": "media"}),
        json.dumps({"event": "media", "media": {"payload": ""}}),
        b"\xff\xfe",
    ],
)
def test_malformed_call_messages_are_dropped(raw):
    with pytest.raises(TranslationDropped):
        parse_call_event(raw)


def test_call_frames():
    assert call_media_frame("MZ1", "QUJD") == {"event": "media", "streamSid": "MZ1", "media": {"payload": "QUJD"}}
    assert call_clear_frame("MZ1") == {"event": "clear", "streamSid": "MZ1"}


def test_elevenlabs_vocabulary():
    protocol = get_protocol("elevenlabs")

    assert protocol.append_audio("P") == {"user_audio_chunk": "P"}
    assert protocol.commit() == {"type": "user_activity"}

    ready = protocol.parse(
        json.dumps(
            {
                "type": "conversation_initiation_metadata",
                "conversation_initiation_metadata_event": {"conversation_id": "conv_1"},
            }
        )
    )
    assert ready.kind is AgentEventKind.READY
    assert ready.detail == "conv_1"

    audio = protocol.parse(json.dumps({"type": "audio", "audio_event": {"audio_base_64": "QQ==", "event_id": 1}}))
    assert audio.kind is AgentEventKind.AUDIO
    assert audio.payload == "QQ=="

    ping = protocol.parse(json.dumps({"type": "ping", "ping_event": {"event_id": 42, "ping_ms": 10}}))
    assert ping.kind is AgentEventKind.PING
    assert protocol.pong(ping.event_id) == {"type": "pong", "event_id": 42}
    assert protocol.pong(None) is None

    assert protocol.parse(json.dumps({"type": "interruption"})).kind is AgentEventKind.INTERRUPT
    assert protocol.parse(json.dumps({"type": "user_transcript"})).kind is AgentEventKind.OTHER


def test_realtime_vocabulary():
    protocol = get_protocol("realtime")

    assert protocol.append_audio("P") == {"type": "input_audio_buffer.append", "audio": "P"}
    assert protocol.commit() == {"type": "input_audio_buffer.commit"}
    assert protocol.parse(json.dumps({"type": "session.updated"})).kind is AgentEventKind.READY

    audio = protocol.parse(json.dumps({"type": "response.audio.delta", "delta": "QQ=="}))
    assert audio.kind is AgentEventKind.AUDIO
    assert audio.payload == "QQ=="
    assert protocol.pong("x") is None


@pytest.mark.parametrize("protocol_name", ["elevenlabs", "realtime"])
@pytest.mark.parametrize(
    "raw",
    [
        "nope",
        b"\x00\x01binary",
        json.dumps({"type": ""}),
        json.dumps(["list"]),
    ],
)
def test_malformed_agent_messages_are_dropped(protocol_name, raw):
    with pytest.raises(TranslationDropped):
        get_protocol(protocol_name).parse(raw)


def test_audio_without_payload_is_dropped():
    with pytest.raises(TranslationDropped):
        get_protocol("elevenlabs").parse(json.dumps({"type": "audio", "audio_event": {}}))


def test_unknown_protocol_is_rejected():
    with pytest.raises(ValueError):
        get_protocol("carrier-pigeon")
