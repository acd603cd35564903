"""
StalledCallReaper - Rede de segurança para chamadas presas.

Roda periodicamente. Todo registro não terminal mais velho que
max_call_duration vai para completed/timed_out e a chamada é encerrada
no Twilio (best effort). Também remove registros e entradas de
cooldown expirados.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .state_machine import CallStatus, CompletionReason

logger = logging.getLogger(__name__)


class StalledCallReaper:
    """
    Monitor periódico do registro de chamadas.

    Args:
        registry: CallRegistry
        telephony: TwilioService (end_call)
        cooldowns: CooldownTable opcional (purge)
        interval: Intervalo entre varreduras (segundos)
        max_call_duration: Idade máxima de uma chamada não terminal
        clock: Fonte de tempo (injetável em testes)
    """

    def __init__(
        self,
        registry: Any,
        telephony: Any,
        cooldowns: Optional[Any] = None,
        interval: float = 60.0,
        max_call_duration: float = 900.0,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.telephony = telephony
        self.cooldowns = cooldowns
        self.interval = interval
        self.max_call_duration = max_call_duration
        self._clock = clock

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.sweeps = 0

    # ========================================
    # VARREDURA
    # ========================================

    async def sweep(self) -> int:
        """
        Executa uma varredura.

        Returns:
            Número de chamadas encerradas por timeout
        """
        now = self._clock()
        self.sweeps += 1
        reaped = 0

        for record in self.registry.active_records():
            age = record.age(now)
            if age <= self.max_call_duration:
                continue

            logger.warning(
                f"Auto-completing stalled call after {age:.0f}s",
                extra={"call_sid": record.call_sid, "status": record.status.value}
            )
            applied = await self.registry.update(
                record.call_sid,
                status=CallStatus.COMPLETED,
                reason=CompletionReason.TIMED_OUT,
            )
            if not applied:
                continue
            reaped += 1

            try:
                await self.telephony.end_call(record.call_sid)
            except Exception as e:
                logger.error(
                    f"Error ending stalled call: {e}",
                    extra={"call_sid": record.call_sid}
                )

        await self.registry.purge_expired()
        if self.cooldowns is not None:
            self.cooldowns.purge_expired()

        return reaped

    # ========================================
    # CICLO DE VIDA
    # ========================================

    async def start(self) -> None:
        """Inicia varreduras em background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Stalled call reaper started",
            extra={"interval": self.interval, "max_call_duration": self.max_call_duration}
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Stalled call reaper stopped", extra={"sweeps": self.sweeps})

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Reaper error: {e}", exc_info=True)
