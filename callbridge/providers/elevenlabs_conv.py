"""
ElevenLabs Conversational AI - protocolo da perna de IA.

Codec das mensagens JSON trocadas com o WebSocket do agente
(URL assinada obtida via services.elevenlabs_service) e a função de
conexão usada pelo SessionBridge.

Áudio: base64 μ-law 8kHz nos dois sentidos. O payload nunca é
decodificado aqui; ele passa opaco entre Twilio e ElevenLabs.

Tipos de servidor tratados:
- conversation_initiation_metadata
- audio (dois formatos: audio.chunk e audio_event.audio_base_64)
- agent_response
- user_transcript
- interruption
- ping
- conversation_ended
"""

import json
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.protocol import State

from ..config.prompts import DEFAULT_USER_NAME


@dataclass
class ServerEvent:
    """
    Mensagem recebida do agente, já normalizada.

    Attributes:
        type: Campo "type" da mensagem
        audio: Payload base64 (apenas type == "audio")
        transcript: Texto do usuário (user_transcript) ou do agente (agent_response)
        event_id: ID do ping (type == "ping")
        data: Mensagem original
    """
    type: str
    audio: Optional[str] = None
    transcript: Optional[str] = None
    event_id: Optional[Any] = None
    data: Dict[str, Any] = field(default_factory=dict, repr=False)


def _load(raw: Union[str, bytes]) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid JSON from AI leg: {e}") from e
    if not isinstance(message, dict):
        raise ValueError("AI leg message is not a JSON object")
    return message


def _section(message: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = message.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"AI leg field '{key}' is not an object")
    return section


def _text(section: Dict[str, Any], key: str) -> Optional[str]:
    value = section.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"AI leg field '{key}' is not a string")
    return value


def extract_audio_payload(message: Dict[str, Any]) -> Optional[str]:
    """
    Normaliza os dois formatos de áudio do servidor.

    - {"type": "audio", "audio": {"chunk": "..."}}
    - {"type": "audio", "audio_event": {"audio_base_64": "..."}}
    """
    audio = message.get("audio")
    if isinstance(audio, dict) and isinstance(audio.get("chunk"), str) and audio["chunk"]:
        return audio["chunk"]

    audio_event = message.get("audio_event")
    if isinstance(audio_event, dict) and isinstance(audio_event.get("audio_base_64"), str) \
            and audio_event["audio_base_64"]:
        return audio_event["audio_base_64"]

    return None


def parse_server_event(raw: Union[str, bytes]) -> ServerEvent:
    """
    Converte mensagem do agente em ServerEvent.

    Raises:
        ValueError: JSON inválido, sem campo "type" ou com seção em formato
            inesperado
    """
    message = _load(raw)
    etype = message.get("type")
    if not isinstance(etype, str) or not etype:
        raise ValueError("AI leg message without type")

    event = ServerEvent(type=etype, data=message)

    if etype == "audio":
        event.audio = extract_audio_payload(message)
    elif etype == "user_transcript":
        user_event = _section(message, "user_transcription_event")
        event.transcript = _text(user_event, "user_transcript")
    elif etype == "agent_response":
        agent_event = _section(message, "agent_response_event")
        event.transcript = _text(agent_event, "agent_response")
    elif etype == "ping":
        ping_event = _section(message, "ping_event")
        event.event_id = ping_event.get("event_id")

    return event


# =============================================================================
# Mensagens do cliente
# =============================================================================

def build_initiation_message(
    prompt: str,
    first_message: str,
    dynamic_variables: Optional[Dict[str, Any]] = None,
) -> str:
    """
    conversation_initiation_client_data com override de prompt e saudação.

    dynamic_variables padrão: user_name e um user_id aleatório.
    """
    if dynamic_variables is None:
        dynamic_variables = {
            "user_name": DEFAULT_USER_NAME,
            "user_id": random.randint(0, 9999),
        }
    return json.dumps({
        "type": "conversation_initiation_client_data",
        "dynamic_variables": dynamic_variables,
        "conversation_config_override": {
            "agent": {
                "prompt": {"prompt": prompt},
                "first_message": first_message,
            },
        },
    })


def build_audio_chunk(payload: str) -> str:
    """Áudio do chamador, repassado sem alteração."""
    return json.dumps({"user_audio_chunk": payload})


def build_pong(event_id: Any) -> str:
    return json.dumps({"type": "pong", "event_id": event_id})


def build_interrupt() -> str:
    return json.dumps({"type": "interrupt"})


def build_user_message(text: str) -> str:
    """Mensagem de texto injetada como fala do usuário (instrução de sistema)."""
    return json.dumps({
        "type": "user_message",
        "user_message_event": {"user_message": text},
    })


# =============================================================================
# Conexão
# =============================================================================

async def connect_ai_leg(signed_url: str) -> ClientConnection:
    """Abre o WebSocket do agente usando a URL assinada."""
    return await websockets.connect(
        signed_url,
        max_size=None,
        ping_interval=20,
    )


def is_open(ws: Optional[ClientConnection]) -> bool:
    return ws is not None and ws.state is State.OPEN
