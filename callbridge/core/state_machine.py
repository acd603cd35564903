"""
Ciclo de vida de uma chamada.

Status explícitos, tabela de transições permitidas e o mapeamento dos
status reportados pelo Twilio para o nosso modelo.

O status só avança: uma vez terminal, o registro aceita apenas
metadados. O CallRegistry consulta can_transition() antes de aplicar
qualquer mudança.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class CallStatus(str, Enum):
    """Status de uma chamada (valores iguais aos do dashboard)."""

    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    IN_PROGRESS = "in-progress"   # Media stream iniciado (evento 'start')
    FORWARDING = "forwarding"     # Redirect para humano emitido

    # Terminais
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"
    VOICEMAIL = "voicemail"


class CompletionReason(str, Enum):
    """Motivo de encerramento gravado junto com o status terminal."""

    STREAM_ENDED = "stream_ended"
    TWILIO_DISCONNECTED = "twilio_disconnected"
    ELEVENLABS_DISCONNECTED = "elevenlabs_disconnected"
    FORWARDING_FAILED = "forwarding_failed"
    FORWARDED_CALL_ENDED = "forwarded_call_ended"
    TIMED_OUT = "timed_out"
    MANUALLY_ENDED = "manually_ended"
    ANSWERING_MACHINE = "answering_machine"


TERMINAL_STATUSES: FrozenSet[CallStatus] = frozenset({
    CallStatus.COMPLETED,
    CallStatus.BUSY,
    CallStatus.FAILED,
    CallStatus.NO_ANSWER,
    CallStatus.CANCELED,
    CallStatus.VOICEMAIL,
})


# Formato: estado_atual -> estados de destino permitidos
TRANSITIONS: Dict[CallStatus, FrozenSet[CallStatus]] = {
    CallStatus.INITIATED: frozenset({
        CallStatus.RINGING, CallStatus.ANSWERED, CallStatus.IN_PROGRESS,
    }) | TERMINAL_STATUSES,
    CallStatus.RINGING: frozenset({
        CallStatus.ANSWERED, CallStatus.IN_PROGRESS,
    }) | TERMINAL_STATUSES,
    CallStatus.ANSWERED: frozenset({
        CallStatus.IN_PROGRESS,
    }) | TERMINAL_STATUSES,
    CallStatus.IN_PROGRESS: frozenset({
        CallStatus.FORWARDING,
    }) | TERMINAL_STATUSES,
    # Durante a transferência só o encerramento é aceito
    CallStatus.FORWARDING: frozenset({CallStatus.COMPLETED}),
}


def is_terminal(status: CallStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    """
    Verifica se a transição current -> target é permitida.

    Repetir o status atual não é uma transição (retorna False).
    """
    return target in TRANSITIONS.get(current, frozenset())


# Status do Twilio -> nosso status.
# 'in-progress' do Twilio significa "atendida"; o nosso IN_PROGRESS
# só é atingido com o evento 'start' do media stream.
_PROVIDER_STATUS_MAP: Dict[str, CallStatus] = {
    "queued": CallStatus.INITIATED,
    "initiated": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "answered": CallStatus.ANSWERED,
    "in-progress": CallStatus.ANSWERED,
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.BUSY,
    "failed": CallStatus.FAILED,
    "no-answer": CallStatus.NO_ANSWER,
    "canceled": CallStatus.CANCELED,
}

_MACHINE_ANSWERED_BY = ("machine_start", "machine_end_beep", "machine_end_silence",
                        "machine_end_other", "fax")


def is_machine(answered_by: Optional[str]) -> bool:
    """AnsweredBy do AMD indica secretária eletrônica / fax."""
    if not answered_by:
        return False
    value = answered_by.strip().lower()
    return value in _MACHINE_ANSWERED_BY or value.startswith("machine")


def map_provider_status(
    status: Optional[str],
    answered_by: Optional[str] = None,
) -> Tuple[Optional[CallStatus], Optional[CompletionReason]]:
    """
    Converte status do Twilio para (CallStatus, CompletionReason).

    Returns:
        (None, None) para status desconhecido
    """
    if is_machine(answered_by):
        return CallStatus.VOICEMAIL, CompletionReason.ANSWERING_MACHINE

    if not status:
        return None, None

    mapped = _PROVIDER_STATUS_MAP.get(status.strip().lower())
    return mapped, None
