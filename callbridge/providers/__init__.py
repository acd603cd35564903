# Codecs dos protocolos das duas pernas (Twilio Media Streams e ElevenLabs)

from .elevenlabs_conv import (
    ServerEvent,
    build_audio_chunk,
    build_initiation_message,
    build_interrupt,
    build_pong,
    build_user_message,
    connect_ai_leg,
    extract_audio_payload,
    parse_server_event,
)
from .twilio_media import (
    CarrierEvent,
    build_clear_frame,
    build_media_frame,
    parse_carrier_frame,
)

__all__ = [
    "ServerEvent",
    "parse_server_event",
    "extract_audio_payload",
    "build_initiation_message",
    "build_audio_chunk",
    "build_pong",
    "build_interrupt",
    "build_user_message",
    "connect_ai_leg",
    "CarrierEvent",
    "parse_carrier_frame",
    "build_media_frame",
    "build_clear_frame",
]
