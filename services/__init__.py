"""Clientes de serviços externos (Twilio, ElevenLabs)."""

from .elevenlabs_service import ElevenLabsService, SignedUrlError
from .twilio_service import (
    CallInfo,
    TelephonyError,
    TwilioService,
    build_forward_twiml,
    build_status_callback_url,
    build_stream_twiml,
    build_twiml_url,
)

__all__ = [
    "ElevenLabsService",
    "SignedUrlError",
    "TwilioService",
    "TelephonyError",
    "CallInfo",
    "build_stream_twiml",
    "build_forward_twiml",
    "build_twiml_url",
    "build_status_callback_url",
]
