"""
Twilio Media Streams - protocolo da perna do chamador.

Eventos recebidos: connected, start, media, mark, stop.
Eventos enviados: media (áudio do agente) e clear (descarta o áudio
ainda em buffer no Twilio, usado na interrupção).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class CarrierEvent:
    """Frame do media stream, já normalizado."""
    event: str
    stream_sid: Optional[str] = None
    call_sid: Optional[str] = None
    custom_parameters: Dict[str, str] = field(default_factory=dict)
    payload: Optional[str] = None


def _section(message: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = message.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Carrier frame field '{key}' is not an object")
    return section


def parse_carrier_frame(raw: Union[str, bytes]) -> CarrierEvent:
    """
    Converte frame JSON do Twilio em CarrierEvent.

    Raises:
        ValueError: JSON inválido, sem "event", seção com formato errado
            ou media sem payload
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid JSON from carrier leg: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise ValueError("Carrier frame without event")

    event = CarrierEvent(event=message["event"], stream_sid=message.get("streamSid"))

    if event.event == "start":
        start = _section(message, "start")
        event.stream_sid = start.get("streamSid") or event.stream_sid
        event.call_sid = start.get("callSid")
        params = start.get("customParameters") or {}
        if not isinstance(params, dict):
            raise ValueError("customParameters is not an object")
        event.custom_parameters = {str(k): str(v) for k, v in params.items()}
    elif event.event == "media":
        media = _section(message, "media")
        payload = media.get("payload")
        if not isinstance(payload, str):
            raise ValueError("Media frame without payload")
        event.payload = payload
    elif event.event == "stop":
        stop = _section(message, "stop")
        event.call_sid = stop.get("callSid")

    return event


def build_media_frame(stream_sid: str, payload: str) -> Dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": payload},
    }


def build_clear_frame(stream_sid: str) -> Dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
