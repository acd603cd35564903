"""
CallRegistry - Registro em memória das chamadas do processo.

Um CallRecord por CallSid. O status só avança conforme a tabela de
transições (core/state_machine.py); registros terminais aceitam apenas
metadados e são removidos após o período de retenção.

Toda mudança é publicada no EventBus como delta no formato do
dashboard (chaves camelCase).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .core.event_bus import EventBus
from .core.events import CallEvent, CallEventType
from .core.state_machine import (
    CallStatus,
    CompletionReason,
    can_transition,
    is_terminal,
)

logger = logging.getLogger(__name__)


# Campo do CallRecord -> chave no JSON do dashboard / REST
_PUBLIC_KEYS: Dict[str, str] = {
    "call_sid": "callSid",
    "number": "number",
    "status": "status",
    "created_at": "startTime",
    "ended_at": "endTime",
    "stream_sid": "streamSid",
    "duration": "duration",
    "completion_reason": "completionReason",
    "forwarding_to": "forwardingTo",
    "forwarding_started_at": "forwardingStartedAt",
    "answered_by": "answeredBy",
    "carrier_disconnected": "twilioDisconnected",
    "ai_disconnected": "elevenLabsDisconnected",
    "stream_ended": "streamEnded",
    "manually_ended": "manuallyEnded",
    "conversation_ended": "conversationEnded",
    "prompt": "prompt",
    "first_message": "first_message",
}

# Campos que update() aceita como metadados
_MUTABLE_FIELDS = frozenset(_PUBLIC_KEYS) - {"call_sid", "status", "created_at", "ended_at"} | {"credential"}


def _public_value(value: Any) -> Any:
    if isinstance(value, (CallStatus, CompletionReason)):
        return value.value
    return value


@dataclass
class CallRecord:
    """Estado de uma chamada rastreada."""
    call_sid: str
    number: Optional[str] = None
    status: CallStatus = CallStatus.INITIATED
    created_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    stream_sid: Optional[str] = None
    duration: Optional[int] = None
    completion_reason: Optional[CompletionReason] = None
    forwarding_to: Optional[str] = None  # Mascarado (***-***-1234)
    forwarding_started_at: Optional[float] = None
    answered_by: Optional[str] = None
    prompt: Optional[str] = None
    first_message: Optional[str] = None

    # Flags de encerramento
    carrier_disconnected: bool = False
    ai_disconnected: bool = False
    stream_ended: bool = False
    manually_ended: bool = False
    conversation_ended: bool = False

    # Signed URL pré-associada na originação (nunca serializada)
    credential: Optional[Any] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def age(self, now: float) -> float:
        return now - self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Formato público (dashboard / REST)."""
        return {
            key: _public_value(getattr(self, attr))
            for attr, key in _PUBLIC_KEYS.items()
        }


class CallRegistry:
    """
    Registro de chamadas do processo.

    Mutado apenas na thread do event loop; sem locks.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional[Any] = None,
    ):
        self.events = event_bus or EventBus()
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._metrics = metrics
        self._records: Dict[str, CallRecord] = {}

    # ========================================
    # CONSULTA
    # ========================================

    def get(self, call_sid: Optional[str]) -> Optional[CallRecord]:
        if not call_sid:
            return None
        return self._records.get(call_sid)

    def __contains__(self, call_sid: object) -> bool:
        return call_sid in self._records

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[CallRecord]:
        return list(self._records.values())

    def active_records(self) -> List[CallRecord]:
        return [r for r in self._records.values() if not r.is_terminal]

    def snapshot(self) -> List[Dict[str, Any]]:
        """Todas as chamadas no formato público (mensagem 'active_calls')."""
        return [r.to_dict() for r in self._records.values()]

    def counts_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self._records.values():
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    # ========================================
    # MUTAÇÃO
    # ========================================

    async def create(
        self,
        call_sid: str,
        number: Optional[str] = None,
        *,
        status: CallStatus = CallStatus.INITIATED,
        prompt: Optional[str] = None,
        first_message: Optional[str] = None,
        credential: Optional[Any] = None,
    ) -> CallRecord:
        """
        Cria o registro de uma chamada.

        Se o CallSid já existe (callback chegou antes do retorno do
        create), o registro existente é mantido e só recebe metadados.
        """
        existing = self._records.get(call_sid)
        if existing is not None:
            await self.update(
                call_sid,
                number=number or existing.number,
                prompt=prompt or existing.prompt,
                first_message=first_message or existing.first_message,
                credential=credential or existing.credential,
            )
            return existing

        record = CallRecord(
            call_sid=call_sid,
            number=number,
            status=status,
            created_at=self._clock(),
            prompt=prompt,
            first_message=first_message,
            credential=credential,
        )
        self._records[call_sid] = record

        logger.info(
            "Call registered",
            extra={"call_sid": call_sid, "status": status.value}
        )
        await self.events.emit(CallEvent(
            type=CallEventType.CALL_CREATED,
            call_sid=call_sid,
            data=record.to_dict(),
        ))
        return record

    async def update(
        self,
        call_sid: str,
        status: Optional[CallStatus] = None,
        reason: Optional[CompletionReason] = None,
        **fields: Any,
    ) -> bool:
        """
        Atualiza status e/ou metadados.

        Metadados são sempre aplicados. O status só é aplicado quando a
        transição é permitida; ao entrar em estado terminal grava
        ended_at e o motivo (se informado).

        Returns:
            True se o status foi aplicado (ou nenhum status foi pedido),
            False se a chamada é desconhecida ou a transição foi recusada
        """
        record = self._records.get(call_sid)
        if record is None:
            logger.debug("Update for unknown call ignored", extra={"call_sid": call_sid})
            return False

        delta: Dict[str, Any] = {}
        for name, value in fields.items():
            if name not in _MUTABLE_FIELDS:
                raise AttributeError(f"CallRecord has no mutable field {name!r}")
            if getattr(record, name) == value:
                continue
            setattr(record, name, value)
            if name in _PUBLIC_KEYS:
                delta[_PUBLIC_KEYS[name]] = _public_value(value)

        applied = True
        if status is not None and status != record.status:
            if can_transition(record.status, status):
                old = record.status
                record.status = status
                delta["status"] = status.value
                if status == CallStatus.FORWARDING and record.forwarding_started_at is None:
                    record.forwarding_started_at = self._clock()
                    delta["forwardingStartedAt"] = record.forwarding_started_at
                if record.is_terminal:
                    record.ended_at = self._clock()
                    delta["endTime"] = record.ended_at
                    if reason is not None:
                        record.completion_reason = reason
                        delta["completionReason"] = reason.value
                    if self._metrics:
                        self._metrics.call_finished(
                            status.value,
                            record.completion_reason.value if record.completion_reason else None,
                        )
                logger.info(
                    f"Call status: {old.value} --> {status.value}",
                    extra={
                        "call_sid": call_sid,
                        "reason": reason.value if reason else None,
                    }
                )
            else:
                applied = False
                logger.debug(
                    f"Call status transition refused: {record.status.value} --> {status.value}",
                    extra={"call_sid": call_sid}
                )
        elif status is not None:
            # Mesmo status repetido (ex.: callback duplicado)
            applied = True

        if delta:
            delta = {"callSid": call_sid, "status": record.status.value, **delta}
            await self.events.emit(CallEvent(
                type=CallEventType.CALL_STATUS_UPDATE,
                call_sid=call_sid,
                data=delta,
            ))
        return applied

    async def purge_expired(self) -> int:
        """
        Remove registros terminais há mais de retention_seconds.

        Returns:
            Número de registros removidos
        """
        now = self._clock()
        expired = [
            sid for sid, record in self._records.items()
            if record.is_terminal
            and record.ended_at is not None
            and now - record.ended_at >= self.retention_seconds
        ]
        for sid in expired:
            del self._records[sid]
            await self.events.emit(CallEvent(
                type=CallEventType.CALL_PURGED,
                call_sid=sid,
            ))

        if expired:
            logger.info("Purged expired call records", extra={"count": len(expired)})
        return len(expired)
