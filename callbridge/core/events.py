"""
CallEvent - Eventos internos do registro de chamadas.

O registro publica mudanças de ciclo de vida no EventBus; o
StatusBroadcaster (e o que mais precisar) reage a esses eventos sem
que o registro conheça os observadores.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict
import time


class CallEventType(Enum):
    """Tipos de eventos publicados pelo CallRegistry."""

    # ========================================
    # REGISTRO - Ciclo de vida
    # ========================================
    CALL_CREATED = "call_created"               # Registro criado (chamada originada)
    CALL_STATUS_UPDATE = "call_status_update"   # Status ou metadados alterados
    CALL_PURGED = "call_purged"                 # Registro removido após retenção


@dataclass
class CallEvent:
    """
    Evento interno do registro.

    Attributes:
        type: Tipo do evento
        call_sid: SID da chamada no Twilio
        data: Delta publicado (chaves camelCase, formato do dashboard)
        timestamp: Momento do evento
        source: Origem do evento (para debug)
    """

    type: CallEventType
    call_sid: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    source: str = "registry"

    def __repr__(self) -> str:
        data_preview = str(self.data)[:50] if self.data else "{}"
        return f"CallEvent({self.type.value}, call={self.call_sid}, data={data_preview})"
