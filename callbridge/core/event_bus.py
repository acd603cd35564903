"""
EventBus - Publicação/assinatura de eventos do registro.

Um único bus por processo. Handlers podem ser sync ou async e são
executados em sequência, na ordem de registro.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .events import CallEvent, CallEventType

logger = logging.getLogger(__name__)


class EventBus:
    """
    Event Bus assíncrono.

    Funcionalidades:
    - on(event_type, handler): Registra handler
    - off(event_type, handler): Remove handler
    - emit(event): Emite evento para handlers
    - get_history(): Últimos eventos (debug / diagnostics)
    """

    def __init__(self, max_history: int = 200):
        self._handlers: Dict[CallEventType, List[Callable]] = {}
        self._event_history: List[CallEvent] = []
        self._max_history = max_history
        self._closed = False

    def on(self, event_type: CallEventType, handler: Callable) -> 'EventBus':
        """
        Registra handler para tipo de evento.

        Returns:
            self para permitir chaining: bus.on(A, h1).on(B, h2)
        """
        if self._closed:
            logger.warning(f"EventBus closed, ignoring handler registration for {event_type.value}")
            return self

        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
        return self

    def off(self, event_type: CallEventType, handler: Callable) -> 'EventBus':
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
        return self

    async def emit(self, event: CallEvent) -> None:
        """
        Emite evento para todos os handlers registrados.

        Erros em handlers são logados mas não propagados: um observador
        com defeito não pode interromper uma mudança de estado.
        """
        if self._closed:
            return

        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history.pop(0)

        handlers = self._handlers.get(event.type, []).copy()
        logger.debug(
            f"[EVENT_BUS] {event.type.value}",
            extra={
                "call_sid": event.call_sid,
                "event_type": event.type.value,
                "handlers_count": len(handlers),
            }
        )

        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(
                    f"Error in event handler for {event.type.value}: {e}",
                    extra={"call_sid": event.call_sid},
                    exc_info=True
                )

    def get_history(
        self,
        event_type: Optional[CallEventType] = None,
        limit: int = 10
    ) -> List[CallEvent]:
        """Retorna os eventos mais recentes (filtrados por tipo, se informado)."""
        if event_type:
            filtered = [e for e in self._event_history if e.type == event_type]
        else:
            filtered = self._event_history.copy()
        return filtered[-limit:]

    def close(self) -> None:
        """Fecha o bus. Novos eventos são ignorados."""
        self._closed = True
        handlers_cleared = sum(len(h) for h in self._handlers.values())
        self._handlers.clear()
        logger.info(
            "[EVENT_BUS] Closed",
            extra={
                "events_processed": len(self._event_history),
                "handlers_cleared": handlers_cleared,
            }
        )
