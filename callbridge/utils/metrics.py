"""
Métricas Prometheus do call bridge.

Cada instância de BridgeMetrics tem seu próprio CollectorRegistry, para
que testes (e múltiplas apps no mesmo processo) não colidam no registry
global do prometheus_client.
"""

import logging
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class BridgeMetrics:
    """Gerenciador de métricas do serviço."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Chamadas
        self.calls_started = Counter(
            'call_bridge_calls_started_total',
            'Outbound calls placed',
            ['kind'],
            registry=self.registry,
        )
        self.calls_finished = Counter(
            'call_bridge_calls_finished_total',
            'Calls that reached a terminal status',
            ['status', 'reason'],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            'call_bridge_rate_limited_total',
            'Outbound call requests refused by the per-number cooldown',
            registry=self.registry,
        )

        # Transferência
        self.transfers = Counter(
            'call_bridge_transfers_total',
            'Human transfer attempts',
            ['outcome'],
            registry=self.registry,
        )

        # Credenciais
        self.credential_fetches = Counter(
            'call_bridge_credential_fetches_total',
            'Signed URL fetches',
            ['outcome'],
            registry=self.registry,
        )
        self.credential_fetch_latency = Histogram(
            'call_bridge_credential_fetch_seconds',
            'Signed URL fetch latency',
            buckets=[0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 2.0, 5.0],
            registry=self.registry,
        )

        # Bridges
        self.active_bridges = Gauge(
            'call_bridge_active_bridges',
            'Session bridges currently running',
            registry=self.registry,
        )
        self.malformed_frames = Counter(
            'call_bridge_malformed_frames_total',
            'Frames dropped because they could not be parsed',
            ['leg'],
            registry=self.registry,
        )

    # ========================================
    # Registro
    # ========================================

    def call_started(self, kind: str = "outbound") -> None:
        self.calls_started.labels(kind=kind).inc()

    def call_finished(self, status: str, reason: Optional[str]) -> None:
        self.calls_finished.labels(status=status, reason=reason or "none").inc()
        logger.debug("Call finished", extra={"status": status, "reason": reason})

    def call_rate_limited(self) -> None:
        self.rate_limited.inc()

    def transfer(self, outcome: str) -> None:
        """
        Registra tentativa de transferência.

        Args:
            outcome: requested, redirected, failed, refused
        """
        self.transfers.labels(outcome=outcome).inc()

    def credential_fetch(self, outcome: str, latency_seconds: Optional[float] = None) -> None:
        self.credential_fetches.labels(outcome=outcome).inc()
        if latency_seconds is not None:
            self.credential_fetch_latency.observe(latency_seconds)

    def bridge_opened(self) -> None:
        self.active_bridges.inc()

    def bridge_closed(self) -> None:
        self.active_bridges.dec()

    def malformed_frame(self, leg: str) -> None:
        self.malformed_frames.labels(leg=leg).inc()

    def render(self) -> bytes:
        """Exposição no formato texto do Prometheus."""
        return generate_latest(self.registry)


_metrics: Optional[BridgeMetrics] = None


def get_metrics() -> BridgeMetrics:
    global _metrics
    if _metrics is None:
        _metrics = BridgeMetrics()
    return _metrics
