"""
Core - Infraestrutura de controle do call bridge.

Componentes:
- CallEvent, CallEventType: Eventos do registro
- EventBus: Publicação/assinatura de eventos
- CallStatus, CompletionReason: Ciclo de vida e tabela de transições
- StalledCallReaper: Encerramento de chamadas presas
"""

from .events import CallEvent, CallEventType
from .event_bus import EventBus
from .state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    CallStatus,
    CompletionReason,
    can_transition,
    map_provider_status,
)
from .reaper import StalledCallReaper

__all__ = [
    # Eventos
    'CallEvent',
    'CallEventType',
    'EventBus',

    # Estado
    'CallStatus',
    'CompletionReason',
    'TERMINAL_STATUSES',
    'TRANSITIONS',
    'can_transition',
    'map_provider_status',

    # Monitoramento
    'StalledCallReaper',
]
