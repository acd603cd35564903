"""
CallOrchestrator - Originação, status callbacks e ações manuais.

Camada fina entre a API HTTP e os componentes do núcleo:
- start_call: cooldown, criação da chamada no Twilio, registro
- attach_carrier: conecta um media stream a um novo SessionBridge
- handle_status_callback: status do Twilio -> registro
- end_call / forward_call / get_call_status: ações do dashboard
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from starlette.websockets import WebSocket

from services.twilio_service import (
    TelephonyError,
    build_status_callback_url,
    build_twiml_url,
)

from .config.settings import Settings
from .cooldown import CooldownTable
from .core.state_machine import (
    TERMINAL_STATUSES,
    CallStatus,
    CompletionReason,
    map_provider_status,
)
from .credentials import CredentialCache
from .handlers.forwarding import ForwardingHandler, ForwardResult
from .handlers.transfer_detector import TransferDetector
from .providers.elevenlabs_conv import connect_ai_leg
from .registry import CallRecord, CallRegistry
from .session import SessionBridge

logger = logging.getLogger(__name__)


class CallRateLimitedError(Exception):
    """Número ainda em cooldown."""

    def __init__(self, number: str, cooldown_remaining: int):
        super().__init__(
            f"Rate limited. Please wait {cooldown_remaining}s before calling {number} again."
        )
        self.number = number
        self.cooldown_remaining = cooldown_remaining


class CallOrchestrator:
    """Coordena originação e ciclo de vida das chamadas."""

    def __init__(
        self,
        registry: CallRegistry,
        cooldowns: CooldownTable,
        credentials: CredentialCache,
        telephony: Any,
        forwarder: ForwardingHandler,
        detector: TransferDetector,
        settings: Settings,
        connector: Callable[[str], Awaitable[Any]] = connect_ai_leg,
        metrics: Optional[Any] = None,
    ):
        self.registry = registry
        self.cooldowns = cooldowns
        self.credentials = credentials
        self.telephony = telephony
        self.forwarder = forwarder
        self.detector = detector
        self.settings = settings
        self._connector = connector
        self._metrics = metrics
        self._bridges: Set[SessionBridge] = set()

    @property
    def active_bridges(self) -> int:
        return len(self._bridges)

    # ========================================
    # ORIGINAÇÃO
    # ========================================

    async def start_call(
        self,
        number: str,
        prompt: Optional[str] = None,
        first_message: Optional[str] = None,
        host: Optional[str] = None,
        *,
        enforce_cooldown: bool = True,
        machine_detection: bool = True,
    ) -> CallRecord:
        """
        Origina uma chamada de saída.

        Raises:
            ValueError: número ou host público ausente
            CallRateLimitedError: número em cooldown
            TelephonyError: falha no Twilio
        """
        if not number:
            raise ValueError("Phone number is required")

        public_host = self.settings.public_host or host
        if not public_host:
            raise ValueError("Public host is required to build callback URLs")

        if enforce_cooldown:
            remaining = self.cooldowns.check_and_record(number)
            if remaining is not None:
                if self._metrics:
                    self._metrics.call_rate_limited()
                raise CallRateLimitedError(number, remaining)

        prompt = prompt or self.settings.default_prompt
        first_message = first_message or self.settings.default_first_message

        call_sid = await self.telephony.create_call(
            number,
            build_twiml_url(public_host, prompt, first_message),
            build_status_callback_url(public_host),
            timeout=self.settings.call_ring_timeout_seconds,
            machine_detection=self.settings.machine_detection if machine_detection else None,
            machine_detection_timeout=(
                self.settings.machine_detection_timeout_seconds if machine_detection else None
            ),
        )

        record = await self.registry.create(
            call_sid,
            number,
            prompt=prompt,
            first_message=first_message,
            credential=self.credentials.peek(),
        )
        if self._metrics:
            self._metrics.call_started("outbound" if enforce_cooldown else "proxy")

        logger.info(
            "Outbound call initiated",
            extra={"call_sid": call_sid, "number": number, "cooldown": enforce_cooldown}
        )
        return record

    # ========================================
    # MEDIA STREAM
    # ========================================

    def create_bridge(self, carrier_ws: WebSocket) -> SessionBridge:
        return SessionBridge(
            carrier_ws=carrier_ws,
            registry=self.registry,
            credentials=self.credentials,
            forwarder=self.forwarder,
            detector=self.detector,
            settings=self.settings,
            connector=self._connector,
            metrics=self._metrics,
        )

    async def attach_carrier(self, carrier_ws: WebSocket) -> SessionBridge:
        """Roda um SessionBridge até o fim do media stream."""
        bridge = self.create_bridge(carrier_ws)
        self._bridges.add(bridge)
        try:
            await bridge.run()
        finally:
            self._bridges.discard(bridge)
        return bridge

    # ========================================
    # STATUS CALLBACK
    # ========================================

    async def handle_status_callback(
        self,
        call_sid: str,
        call_status: Optional[str],
        duration: Optional[int] = None,
        answered_by: Optional[str] = None,
    ) -> Optional[CallRecord]:
        """
        Aplica um status callback do Twilio ao registro.

        Returns:
            Registro atualizado, ou None se a chamada não é rastreada
        """
        record = self.registry.get(call_sid)
        if record is None:
            logger.debug(
                "Status callback for untracked call",
                extra={"call_sid": call_sid, "call_status": call_status}
            )
            return None

        fields: Dict[str, Any] = {}
        if duration is not None:
            fields["duration"] = duration
        if answered_by:
            fields["answered_by"] = answered_by

        if record.status == CallStatus.FORWARDING:
            # AMD do trecho original não se aplica ao trecho transferido
            status, reason = map_provider_status(call_status)
            if status in TERMINAL_STATUSES:
                reason = (
                    CompletionReason.FORWARDED_CALL_ENDED
                    if status == CallStatus.COMPLETED
                    else CompletionReason.FORWARDING_FAILED
                )
                status = CallStatus.COMPLETED
        else:
            status, reason = map_provider_status(call_status, answered_by)

        if status is None:
            logger.warning(
                "Unknown provider call status",
                extra={"call_sid": call_sid, "call_status": call_status}
            )

        await self.registry.update(call_sid, status=status, reason=reason, **fields)

        if status == CallStatus.VOICEMAIL and call_status not in ("completed", "busy", "failed",
                                                                    "no-answer", "canceled"):
            try:
                await self.telephony.end_call(call_sid)
            except TelephonyError as e:
                logger.warning(
                    f"Failed to hang up voicemail call: {e}",
                    extra={"call_sid": call_sid}
                )

        return self.registry.get(call_sid)

    # ========================================
    # AÇÕES MANUAIS
    # ========================================

    async def end_call(self, call_sid: str) -> Optional[CallRecord]:
        """
        Encerra a chamada no Twilio e marca completed/manually_ended.

        Raises:
            TelephonyError: falha no Twilio
        """
        await self.telephony.end_call(call_sid)
        await self.registry.update(
            call_sid,
            status=CallStatus.COMPLETED,
            reason=CompletionReason.MANUALLY_ENDED,
            manually_ended=True,
        )
        return self.registry.get(call_sid)

    async def forward_call(self, call_sid: str) -> ForwardResult:
        """Transferência manual (dashboard). Propaga ForwardingError."""
        return await self.forwarder.forward(call_sid)

    async def get_call_status(self, call_sid: str) -> Dict[str, Any]:
        """
        Registro local primeiro, depois consulta ao Twilio.

        Raises:
            TelephonyError: chamada desconhecida localmente e falha no fetch
        """
        record = self.registry.get(call_sid)
        if record is not None:
            return record.to_dict()

        info = await self.telephony.fetch_call(call_sid)
        return info.to_dict()
