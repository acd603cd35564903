# Handlers do bridge: detecção de pedido de humano e transferência

from .forwarding import (
    ForwardingError,
    ForwardingHandler,
    ForwardingRefusedError,
    ForwardResult,
    mask_number,
)
from .transfer_detector import TransferDetector, wants_human

__all__ = [
    "TransferDetector",
    "wants_human",
    "ForwardingHandler",
    "ForwardingError",
    "ForwardingRefusedError",
    "ForwardResult",
    "mask_number",
]
