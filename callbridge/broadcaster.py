"""
StatusBroadcaster - Atualizações de chamadas para o dashboard.

Observadores conectam em /call-status-ws, recebem um snapshot
('active_calls') e, a partir daí, um 'call_status_update' por mudança
publicada pelo registro.
"""

import logging
from typing import Any, Dict, Optional, Set

from starlette.websockets import WebSocket, WebSocketState

from .core.event_bus import EventBus
from .core.events import CallEvent, CallEventType
from .registry import CallRegistry

logger = logging.getLogger(__name__)


def websocket_is_open(ws: WebSocket) -> bool:
    """Estado aberto nos dois sentidos (cliente e aplicação)."""
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class StatusBroadcaster:
    """Fan-out de status para os sockets do dashboard."""

    def __init__(self, registry: CallRegistry, event_bus: Optional[EventBus] = None):
        self.registry = registry
        self._observers: Set[WebSocket] = set()
        self._bus = event_bus or registry.events
        self._bus.on(CallEventType.CALL_CREATED, self._on_registry_event)
        self._bus.on(CallEventType.CALL_STATUS_UPDATE, self._on_registry_event)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def on_connect(self, ws: WebSocket) -> None:
        """
        Registra observador e envia o snapshot atual.

        O snapshot é enviado mesmo vazio, para o dashboard saber que
        está sincronizado.
        """
        self._observers.add(ws)
        logger.info("Dashboard observer connected", extra={"observers": len(self._observers)})
        try:
            await ws.send_json({
                "type": "active_calls",
                "calls": self.registry.snapshot(),
            })
        except Exception as e:
            logger.warning(f"Failed to send snapshot to observer: {e}")
            self._observers.discard(ws)

    def on_disconnect(self, ws: WebSocket) -> None:
        self._observers.discard(ws)
        logger.info("Dashboard observer disconnected", extra={"observers": len(self._observers)})

    async def broadcast(self, delta: Dict[str, Any]) -> int:
        """
        Envia {"type": "call_status_update", **delta} a todos os observadores abertos.

        Observadores cujo envio falha são removidos.

        Returns:
            Número de observadores que receberam a mensagem
        """
        message = {"type": "call_status_update", **delta}
        delivered = 0
        for ws in list(self._observers):
            if not websocket_is_open(ws):
                continue
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping dashboard observer after send failure: {e}")
                self._observers.discard(ws)
        return delivered

    async def _on_registry_event(self, event: CallEvent) -> None:
        await self.broadcast(event.data)

    def close(self) -> None:
        self._bus.off(CallEventType.CALL_CREATED, self._on_registry_event)
        self._bus.off(CallEventType.CALL_STATUS_UPDATE, self._on_registry_event)
        self._observers.clear()
