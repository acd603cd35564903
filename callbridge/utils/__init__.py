# Utilitários do call bridge

from .metrics import BridgeMetrics, get_metrics

__all__ = [
    "BridgeMetrics",
    "get_metrics",
]
