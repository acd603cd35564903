"""
Testes dos protocolos das duas pernas (Twilio Media Streams e ElevenLabs).
"""

import json

import pytest

from callbridge.providers.elevenlabs_conv import (
    build_audio_chunk,
    build_initiation_message,
    build_interrupt,
    build_pong,
    build_user_message,
    parse_server_event,
)
from callbridge.providers.twilio_media import (
    build_clear_frame,
    build_media_frame,
    parse_carrier_frame,
)


class TestElevenLabsServerEvents:
    """Mensagens recebidas do agente."""

    def test_audio_chunk_format(self):
        event = parse_server_event(json.dumps({"type": "audio", "audio": {"chunk": "QUJD"}}))
        assert event.type == "audio"
        assert event.audio == "QUJD"

    def test_audio_event_format(self):
        event = parse_server_event(json.dumps({
            "type": "audio",
            "audio_event": {"audio_base_64": "REVG", "event_id": 3},
        }))
        assert event.audio == "REVG"

    def test_audio_without_payload(self):
        assert parse_server_event('{"type": "audio"}').audio is None

    def test_user_transcript(self):
        event = parse_server_event(json.dumps({
            "type": "user_transcript",
            "user_transcription_event": {"user_transcript": "talk to a human"},
        }))
        assert event.transcript == "talk to a human"

    def test_ping(self):
        event = parse_server_event(json.dumps({"type": "ping", "ping_event": {"event_id": 7, "ping_ms": 50}}))
        assert event.event_id == 7

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"no_type": true}', '{"type": ""}'])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_server_event(raw)

    @pytest.mark.parametrize("message", [
        {"type": "user_transcript", "user_transcription_event": "oops"},
        {"type": "user_transcript", "user_transcription_event": {"user_transcript": 42}},
        {"type": "agent_response", "agent_response_event": ["hi"]},
        {"type": "ping", "ping_event": []},
    ])
    def test_wrong_shape_is_malformed(self, message):
        with pytest.raises(ValueError):
            parse_server_event(json.dumps(message))

    def test_non_string_audio_is_ignored(self):
        assert parse_server_event('{"type": "audio", "audio": {"chunk": 5}}').audio is None


class TestElevenLabsClientMessages:
    """Mensagens enviadas ao agente."""

    def test_initiation_message(self):
        message = json.loads(build_initiation_message("be nice", "hello!"))

        assert message["type"] == "conversation_initiation_client_data"
        agent = message["conversation_config_override"]["agent"]
        assert agent["prompt"] == {"prompt": "be nice"}
        assert agent["first_message"] == "hello!"
        assert message["dynamic_variables"]["user_name"] == "User"
        assert 0 <= message["dynamic_variables"]["user_id"] <= 9999

    def test_initiation_custom_variables(self):
        message = json.loads(build_initiation_message("p", "f", {"user_name": "Ana"}))
        assert message["dynamic_variables"] == {"user_name": "Ana"}

    def test_audio_chunk_is_passthrough(self):
        assert json.loads(build_audio_chunk("AAEC")) == {"user_audio_chunk": "AAEC"}

    def test_control_messages(self):
        assert json.loads(build_pong(7)) == {"type": "pong", "event_id": 7}
        assert json.loads(build_interrupt()) == {"type": "interrupt"}
        assert json.loads(build_user_message("hi")) == {
            "type": "user_message",
            "user_message_event": {"user_message": "hi"},
        }


class TestTwilioMediaFrames:
    """Frames do media stream."""

    def test_start(self):
        event = parse_carrier_frame(json.dumps({
            "event": "start",
            "start": {
                "streamSid": "MZ1",
                "callSid": "CA1",
                "customParameters": {"prompt": "p", "first_message": "f"},
            },
        }))

        assert event.event == "start"
        assert event.stream_sid == "MZ1"
        assert event.call_sid == "CA1"
        assert event.custom_parameters == {"prompt": "p", "first_message": "f"}

    def test_media(self):
        event = parse_carrier_frame('{"event": "media", "streamSid": "MZ1", "media": {"payload": "AAEC"}}')
        assert event.payload == "AAEC"

    def test_media_without_payload_is_malformed(self):
        with pytest.raises(ValueError):
            parse_carrier_frame('{"event": "media", "media": {}}')

    def test_connected_and_mark_pass(self):
        assert parse_carrier_frame('{"event": "connected", "protocol": "Call"}').event == "connected"
        assert parse_carrier_frame('{"event": "mark", "mark": {"name": "x"}}').event == "mark"

    @pytest.mark.parametrize("raw", ["{", "42", '{"streamSid": "MZ1"}'])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_carrier_frame(raw)

    @pytest.mark.parametrize("frame", [
        {"event": "media", "media": "oops"},
        {"event": "start", "start": "x"},
        {"event": "start", "start": {"callSid": "CA1", "customParameters": []}},
        {"event": "stop", "stop": 7},
    ])
    def test_wrong_shape_is_malformed(self, frame):
        with pytest.raises(ValueError):
            parse_carrier_frame(json.dumps(frame))

    def test_outbound_frames(self):
        assert build_media_frame("MZ1", "QUJD") == {
            "event": "media",
            "streamSid": "MZ1",
            "media": {"payload": "QUJD"},
        }
        assert build_clear_frame("MZ1") == {"event": "clear", "streamSid": "MZ1"}
