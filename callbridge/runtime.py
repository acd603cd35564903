"""
CallBridgeRuntime - Estado com escopo de processo.

Cria e liga os objetos compartilhados por todas as chamadas (bus,
registro, cooldown, broadcaster, cache de credenciais, Twilio,
transferência, detector, reaper, orquestrador, métricas). Os
colaboradores externos são injetáveis para testes.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from services.elevenlabs_service import ElevenLabsService
from services.twilio_service import TwilioService

from .broadcaster import StatusBroadcaster
from .config.settings import Settings
from .cooldown import CooldownTable
from .core.event_bus import EventBus
from .core.reaper import StalledCallReaper
from .credentials import CredentialCache
from .handlers.forwarding import ForwardingHandler
from .handlers.transfer_detector import TransferDetector
from .orchestrator import CallOrchestrator
from .providers.elevenlabs_conv import connect_ai_leg
from .registry import CallRegistry
from .utils.metrics import BridgeMetrics

logger = logging.getLogger(__name__)


@dataclass
class CallBridgeRuntime:
    """Objetos compartilhados do processo."""
    settings: Settings
    event_bus: EventBus
    registry: CallRegistry
    cooldowns: CooldownTable
    broadcaster: StatusBroadcaster
    credentials: CredentialCache
    telephony: Any
    signed_urls: Any
    forwarder: ForwardingHandler
    detector: TransferDetector
    reaper: StalledCallReaper
    orchestrator: CallOrchestrator
    metrics: BridgeMetrics

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        telephony: Optional[Any] = None,
        signed_urls: Optional[Any] = None,
        connector: Callable[[str], Awaitable[Any]] = connect_ai_leg,
        clock: Callable[[], float] = time.time,
        metrics: Optional[BridgeMetrics] = None,
    ) -> "CallBridgeRuntime":
        metrics = metrics or BridgeMetrics()

        if telephony is None:
            telephony = TwilioService(
                settings.twilio_account_sid,
                settings.twilio_auth_token,
                settings.twilio_phone_number,
            )
        if signed_urls is None:
            signed_urls = ElevenLabsService(
                settings.elevenlabs_api_key,
                settings.elevenlabs_agent_id,
                api_url=settings.elevenlabs_api_url,
            )

        event_bus = EventBus()
        registry = CallRegistry(
            event_bus,
            retention_seconds=settings.call_record_retention_seconds,
            clock=clock,
            metrics=metrics,
        )
        cooldowns = CooldownTable(
            cooldown_seconds=settings.call_cooldown_seconds,
            expiry_seconds=settings.cooldown_expiry_seconds,
            clock=clock,
        )
        broadcaster = StatusBroadcaster(registry, event_bus)
        credentials = CredentialCache(
            signed_urls.get_signed_url,
            validity_seconds=settings.signed_url_validity_seconds,
            safety_margin_seconds=settings.signed_url_safety_margin_seconds,
            refresh_interval_seconds=settings.signed_url_refresh_interval_seconds,
            standby_delay_seconds=settings.signed_url_standby_delay_seconds,
            clock=clock,
            metrics=metrics,
        )
        forwarder = ForwardingHandler(registry, telephony, settings, metrics)
        detector = TransferDetector(settings.transfer_phrases, settings.transfer_patterns)
        reaper = StalledCallReaper(
            registry,
            telephony,
            cooldowns,
            interval=settings.reaper_interval_seconds,
            max_call_duration=settings.max_call_duration_seconds,
            clock=clock,
        )
        orchestrator = CallOrchestrator(
            registry=registry,
            cooldowns=cooldowns,
            credentials=credentials,
            telephony=telephony,
            forwarder=forwarder,
            detector=detector,
            settings=settings,
            connector=connector,
            metrics=metrics,
        )

        return cls(
            settings=settings,
            event_bus=event_bus,
            registry=registry,
            cooldowns=cooldowns,
            broadcaster=broadcaster,
            credentials=credentials,
            telephony=telephony,
            signed_urls=signed_urls,
            forwarder=forwarder,
            detector=detector,
            reaper=reaper,
            orchestrator=orchestrator,
            metrics=metrics,
        )

    async def start(self) -> None:
        """Aquece o cache de credenciais e inicia o reaper."""
        await self.credentials.start()
        await self.reaper.start()
        logger.info("Call bridge runtime started")

    async def stop(self) -> None:
        await self.reaper.stop()
        await self.credentials.stop()
        self.broadcaster.close()
        self.event_bus.close()

        close = getattr(self.signed_urls, "close", None)
        if close is not None:
            await close()
        logger.info("Call bridge runtime stopped")
