"""
CredentialCache - Signed URLs do ElevenLabs sempre "quentes".

Remove a latência do fetch de signed URL do caminho crítico
atendimento -> primeiro áudio.

Mantém:
- primary: credencial entregue por get()
- standby: buscada logo após cada prefetch/promoção, usada quando a
  primary entra na margem de segurança

Um loop em background renova a primary a cada refresh_interval
(menor que a validade), então na prática get() nunca bloqueia.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Não foi possível obter uma signed URL válida."""


@dataclass(frozen=True)
class CachedCredential:
    """Signed URL com o instante de expiração (epoch)."""
    signed_url: str
    expires_at: float

    def is_usable(self, now: float, margin: float = 0.0) -> bool:
        return now < self.expires_at - margin

    def remaining(self, now: float) -> float:
        return self.expires_at - now


class CredentialCache:
    """
    Cache de signed URLs com standby e refresh periódico.

    Args:
        fetch: Corrotina que retorna uma nova signed URL
            (ElevenLabsService.get_signed_url)
        validity_seconds: Validade de uma signed URL
        safety_margin_seconds: Margem mínima de validade restante para uso
        refresh_interval_seconds: Intervalo do refresh em background
        standby_delay_seconds: Atraso antes de buscar a standby
        clock: Fonte de tempo (injetável em testes)
        metrics: BridgeMetrics opcional
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[str]],
        validity_seconds: float = 900.0,
        safety_margin_seconds: float = 60.0,
        refresh_interval_seconds: float = 600.0,
        standby_delay_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional[Any] = None,
    ):
        self._fetch_url = fetch
        self.validity_seconds = validity_seconds
        self.safety_margin_seconds = safety_margin_seconds
        self.refresh_interval_seconds = refresh_interval_seconds
        self.standby_delay_seconds = standby_delay_seconds
        self._clock = clock
        self._metrics = metrics

        self._primary: Optional[CachedCredential] = None
        self._standby: Optional[CachedCredential] = None
        self._lock = asyncio.Lock()
        self._standby_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

        self.last_error: Optional[str] = None

    # ========================================
    # FETCH
    # ========================================

    async def _fetch(self) -> CachedCredential:
        # Validade contada a partir do início do request (conservador)
        issued_at = self._clock()
        start = time.perf_counter()
        try:
            signed_url = await self._fetch_url()
        except Exception:
            if self._metrics:
                self._metrics.credential_fetch("error", time.perf_counter() - start)
            raise
        if self._metrics:
            self._metrics.credential_fetch("ok", time.perf_counter() - start)
        self.last_error = None
        return CachedCredential(signed_url=signed_url, expires_at=issued_at + self.validity_seconds)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_standby(self) -> None:
        if self._standby_task is not None and not self._standby_task.done():
            return
        self._standby_task = self._track(asyncio.create_task(self._fetch_standby()))

    async def _fetch_standby(self) -> None:
        if self.standby_delay_seconds > 0:
            await asyncio.sleep(self.standby_delay_seconds)
        try:
            self._standby = await self._fetch()
            logger.debug("Standby signed URL refreshed")
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Standby signed URL fetch failed: {e}")

    async def prefetch(self) -> bool:
        """
        Busca nova primary e agenda uma standby.

        Falhas são logadas, nunca propagadas.

        Returns:
            True se a primary foi renovada
        """
        try:
            self._primary = await self._fetch()
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Signed URL prefetch failed: {e}")
            return False

        logger.info(
            "Signed URL prefetched",
            extra={"expires_in": round(self._primary.remaining(self._clock()), 1)}
        )
        self._schedule_standby()
        return True

    # ========================================
    # CONSULTA
    # ========================================

    def is_usable(self, credential: Optional[CachedCredential]) -> bool:
        """Credencial ainda fora da margem de segurança."""
        return credential is not None and credential.is_usable(self._clock(), self.safety_margin_seconds)

    def peek(self) -> Optional[CachedCredential]:
        """Credencial utilizável sem bloquear (ou None)."""
        now = self._clock()
        for credential in (self._primary, self._standby):
            if credential is not None and credential.is_usable(now, self.safety_margin_seconds):
                return credential
        return None

    async def get(self) -> CachedCredential:
        """
        Retorna uma credencial com validade acima da margem.

        Ordem: primary -> standby promovida -> fetch bloqueante.

        Raises:
            CredentialError: se o fetch bloqueante falhar
        """
        now = self._clock()
        margin = self.safety_margin_seconds

        if self._primary is not None and self._primary.is_usable(now, margin):
            return self._primary

        if self._standby is not None and self._standby.is_usable(now, margin):
            logger.info("Promoting standby signed URL to primary")
            self._primary, self._standby = self._standby, None
            self._schedule_standby()
            return self._primary

        async with self._lock:
            # Outro chamador pode ter buscado enquanto esperávamos o lock
            now = self._clock()
            if self._primary is not None and self._primary.is_usable(now, margin):
                return self._primary

            logger.warning("No warm signed URL available, fetching synchronously")
            try:
                credential = await self._fetch()
            except Exception as e:
                self.last_error = str(e)
                raise CredentialError(f"Failed to obtain signed URL: {e}") from e

            self._primary = credential
            return credential

    def status(self) -> Dict[str, Any]:
        """Estado do cache para /diagnostics."""
        now = self._clock()

        def describe(credential: Optional[CachedCredential]) -> Optional[Dict[str, Any]]:
            if credential is None:
                return None
            return {
                "remainingSeconds": round(credential.remaining(now), 1),
                "usable": credential.is_usable(now, self.safety_margin_seconds),
            }

        return {
            "primary": describe(self._primary),
            "standby": describe(self._standby),
            "refreshIntervalSeconds": self.refresh_interval_seconds,
            "running": self._running,
            "lastError": self.last_error,
        }

    # ========================================
    # CICLO DE VIDA
    # ========================================

    async def start(self) -> None:
        """Prefetch inicial e refresh periódico em background."""
        if self._running:
            return
        self._running = True
        await self.prefetch()
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info(
            "Credential cache started",
            extra={"refresh_interval": self.refresh_interval_seconds}
        )

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._refresh_task, *self._tasks) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
        self._standby_task = None
        logger.info("Credential cache stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.refresh_interval_seconds)
                await self.prefetch()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Credential refresh loop error: {e}", exc_info=True)
