"""
Forwarding Handler - Transferência da chamada para um humano.

Fluxo:
1. Valida o estado da chamada (só in-progress, ou chamada não rastreada)
2. Marca o registro como 'forwarding' ANTES do redirect, para que o
   'stop' do media stream (que chega logo após o redirect) não encerre
   o registro
3. Redireciona via REST com TwiML: anúncio, Dial gravado, anúncio
   final, Hangup
4. Em falha: registro vai para completed/forwarding_failed

O status final vem do status callback do Twilio
(forwarded_call_ended).
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from services.twilio_service import TelephonyError, build_forward_twiml

from ..config.prompts import CLOSING_ANNOUNCEMENT, TRANSFER_ANNOUNCEMENT
from ..config.settings import Settings
from ..core.state_machine import CallStatus, CompletionReason
from ..registry import CallRegistry

logger = logging.getLogger(__name__)

_MASK_DIGITS = re.compile(r"\d(?=\d{4})")


class ForwardingError(Exception):
    """Transferência recusada (estado da chamada) ou redirect falhou."""


class ForwardingRefusedError(ForwardingError):
    """O estado atual da chamada não permite transferência."""


def mask_number(number: Optional[str]) -> Optional[str]:
    """Substitui todos os dígitos exceto os 4 últimos por '*'."""
    if not number:
        return number
    return _MASK_DIGITS.sub("*", number)


@dataclass
class ForwardResult:
    """Resultado de uma transferência."""
    call_sid: str
    forwarding_to: Optional[str]
    tracked: bool
    timestamp: datetime = field(default_factory=datetime.now)


class ForwardingHandler:
    """Executa a transferência para o número de atendimento humano."""

    def __init__(
        self,
        registry: CallRegistry,
        telephony: Any,
        settings: Settings,
        metrics: Optional[Any] = None,
    ):
        self.registry = registry
        self.telephony = telephony
        self.settings = settings
        self._metrics = metrics

    def _count(self, outcome: str) -> None:
        if self._metrics:
            self._metrics.transfer(outcome)

    def build_twiml(self) -> str:
        return build_forward_twiml(
            forward_to=self.settings.forwarding_phone_number,
            caller_id=self.settings.twilio_phone_number,
            announcement=TRANSFER_ANNOUNCEMENT,
            closing=CLOSING_ANNOUNCEMENT,
            dial_timeout=self.settings.forward_dial_timeout_seconds,
        )

    async def forward(self, call_sid: str) -> ForwardResult:
        """
        Transfere a chamada.

        Raises:
            ForwardingError: chamada encerrada, fora de in-progress,
                ou falha no redirect
        """
        record = self.registry.get(call_sid)
        masked = mask_number(self.settings.forwarding_phone_number)

        if record is not None:
            if record.is_terminal:
                self._count("refused")
                raise ForwardingRefusedError(f"Call {call_sid} already ended ({record.status.value})")
            if record.status != CallStatus.IN_PROGRESS:
                self._count("refused")
                raise ForwardingRefusedError(
                    f"Call {call_sid} cannot be forwarded while {record.status.value}"
                )
            await self.registry.update(
                call_sid,
                status=CallStatus.FORWARDING,
                forwarding_to=masked,
            )

        logger.info(
            "Forwarding call to human",
            extra={"call_sid": call_sid, "forwarding_to": masked, "tracked": record is not None}
        )

        try:
            await self.telephony.redirect(call_sid, self.build_twiml())
        except TelephonyError as e:
            logger.error(
                f"Forwarding failed: {e}",
                extra={"call_sid": call_sid}
            )
            self._count("failed")
            if record is not None:
                await self.registry.update(
                    call_sid,
                    status=CallStatus.COMPLETED,
                    reason=CompletionReason.FORWARDING_FAILED,
                )
            raise ForwardingError(f"Failed to forward call {call_sid}: {e}") from e

        self._count("redirected")
        return ForwardResult(call_sid=call_sid, forwarding_to=masked, tracked=record is not None)
