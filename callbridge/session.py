"""
SessionBridge - Ponte entre o media stream do Twilio e o agente ElevenLabs.

Uma instância por conexão em /outbound-media-stream. Dona exclusiva das
duas pernas: nenhum outro componente escreve nos sockets.

Ciclo de vida:
1. Accept da perna do chamador (o CallSid só é conhecido no 'start')
2. Setup da perna de IA (idempotente, guardado por _setup_started)
3. Eventos do Twilio: start / media / stop
4. Eventos do agente: audio / interruption / ping / user_transcript /
   conversation_ended
5. Teardown: uma perna fechando fecha a outra e finaliza o registro

Fases: awaiting_start -> streaming -> transferring -> closed

Flags (cada uma com um invariante):
- _setup_started: conexão com a IA em andamento ou feita; volta a False
  em falha para permitir retry no próximo gatilho
- _init_sent: mensagem de inicialização enviada no máximo uma vez
- _start_seen: evento 'start' recebido (prompt/first_message conhecidos)
- _transfer_requested: sequência de transferência agendada no máximo uma vez
- _forward_done: forward() já foi tentado (sucesso ou falha)
- _carrier_closed / _ai_closed: teardown de cada perna executado uma vez
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from starlette.websockets import WebSocket
from websockets.exceptions import ConnectionClosed

from .broadcaster import websocket_is_open
from .config.prompts import TRANSFER_SYSTEM_INSTRUCTION
from .config.settings import Settings
from .core.state_machine import CallStatus, CompletionReason
from .credentials import CredentialCache, CredentialError
from .handlers.forwarding import ForwardingError, ForwardingHandler
from .handlers.transfer_detector import TransferDetector
from .logging_config import bind_call_context, clear_call_context, get_logger
from .providers.elevenlabs_conv import (
    build_audio_chunk,
    build_initiation_message,
    build_interrupt,
    build_pong,
    build_user_message,
    connect_ai_leg,
    is_open,
    parse_server_event,
)
from .providers.twilio_media import (
    CarrierEvent,
    build_clear_frame,
    build_media_frame,
    parse_carrier_frame,
)
from .registry import CallRegistry

logger = get_logger(__name__)


class BridgePhase(str, Enum):
    AWAITING_START = "awaiting_start"
    STREAMING = "streaming"
    TRANSFERRING = "transferring"
    CLOSED = "closed"


class SessionBridge:
    """Ponte de uma chamada entre Twilio e ElevenLabs."""

    def __init__(
        self,
        carrier_ws: WebSocket,
        registry: CallRegistry,
        credentials: CredentialCache,
        forwarder: ForwardingHandler,
        detector: TransferDetector,
        settings: Settings,
        connector: Callable[[str], Awaitable[Any]] = connect_ai_leg,
        metrics: Optional[Any] = None,
    ):
        self.carrier_ws = carrier_ws
        self.registry = registry
        self.credentials = credentials
        self.forwarder = forwarder
        self.detector = detector
        self.settings = settings
        self._connector = connector
        self._metrics = metrics

        self.ai_ws: Optional[Any] = None
        self.phase = BridgePhase.AWAITING_START

        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.custom_parameters: Dict[str, str] = {}

        self._setup_started = False
        self._init_sent = False
        self._start_seen = False
        self._stream_stopped = False
        self._transfer_requested = False
        self._forward_done = False
        self._conversation_ended = False
        self._carrier_closed = False
        self._ai_closed = False

        self._tasks: Set[asyncio.Task] = set()

    # ========================================
    # ESTADO
    # ========================================

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        """Tasks ainda em execução (setup da IA, receive loop, transferência)."""
        return {t for t in self._tasks if not t.done()}

    @property
    def ai_open(self) -> bool:
        return is_open(self.ai_ws)

    @property
    def init_sent(self) -> bool:
        return self._init_sent

    @property
    def transfer_requested(self) -> bool:
        return self._transfer_requested

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _call_is_terminal(self) -> bool:
        record = self.registry.get(self.call_sid)
        return record is not None and record.is_terminal

    def _transfer_pending(self) -> bool:
        """A chamada está (ou vai ficar) com o atendente humano."""
        if self.phase != BridgePhase.TRANSFERRING:
            return False
        if not self._forward_done:
            return True
        record = self.registry.get(self.call_sid)
        return record is not None and record.status == CallStatus.FORWARDING

    # ========================================
    # LOOP PRINCIPAL
    # ========================================

    async def run(self) -> None:
        """Lê frames do Twilio até o stream terminar, depois faz o teardown."""
        if self._metrics:
            self._metrics.bridge_opened()
        logger.info("carrier_leg_connected")

        if self.settings.eager_ai_connect:
            self._spawn(self.ensure_ai_leg())

        try:
            async for raw in self.carrier_ws.iter_text():
                await self.handle_carrier_message(raw)
                if self._stream_stopped or self.phase == BridgePhase.CLOSED:
                    break
        except Exception as e:
            logger.error("carrier_receive_error", error=str(e), exc_info=True)
        finally:
            await self._on_carrier_closed()
            if self._metrics:
                self._metrics.bridge_closed()
            clear_call_context()

    # ========================================
    # PERNA DE IA
    # ========================================

    async def _obtain_signed_url(self) -> str:
        # Credencial pré-associada na originação, se ainda válida
        record = self.registry.get(self.call_sid)
        credential = record.credential if record is not None else None
        if credential is not None:
            await self.registry.update(self.call_sid, credential=None)
            if self.credentials.is_usable(credential):
                logger.debug("using_preassociated_signed_url")
                return credential.signed_url

        return (await self.credentials.get()).signed_url

    async def ensure_ai_leg(self) -> bool:
        """
        Abre a perna de IA se ainda não foi iniciada.

        Returns:
            True se esta chamada abriu a conexão
        """
        if self._setup_started or self.phase == BridgePhase.CLOSED:
            return False
        self._setup_started = True

        try:
            signed_url = await self._obtain_signed_url()
            ws = await self._connector(signed_url)
        except CredentialError as e:
            self._setup_started = False
            logger.warning("ai_leg_credential_failed", error=str(e))
            return False
        except Exception as e:
            self._setup_started = False
            logger.warning("ai_leg_connect_failed", error=str(e))
            return False

        if self.phase == BridgePhase.CLOSED or self._carrier_closed:
            # Chamador desligou durante o connect
            await ws.close()
            return False

        self.ai_ws = ws
        logger.info("ai_leg_connected")
        self._spawn(self._ai_receive_loop())
        await self._maybe_send_init()
        return True

    async def _maybe_send_init(self) -> None:
        """Envia conversation_initiation_client_data quando IA aberta E 'start' recebido."""
        if self._init_sent or not self._start_seen or not self.ai_open:
            return
        self._init_sent = True

        record = self.registry.get(self.call_sid)
        prompt = (
            self.custom_parameters.get("prompt")
            or (record.prompt if record else None)
            or self.settings.default_prompt
        )
        first_message = (
            self.custom_parameters.get("first_message")
            or (record.first_message if record else None)
            or self.settings.default_first_message
        )
        logger.info("sending_initiation_message", prompt=prompt[:80])
        await self._send_ai(build_initiation_message(prompt, first_message))

    async def _send_ai(self, message: str) -> bool:
        if not self.ai_open:
            return False
        try:
            await self.ai_ws.send(message)
            return True
        except ConnectionClosed as e:
            logger.debug("ai_send_on_closed_leg", error=str(e))
            return False

    async def _ai_receive_loop(self) -> None:
        try:
            async for message in self.ai_ws:
                await self.handle_ai_message(message)
        except ConnectionClosed as e:
            logger.info("ai_leg_closed_abnormally", code=getattr(e.rcvd, "code", None))
        except Exception as e:
            logger.error("ai_receive_error", error=str(e), exc_info=True)
        finally:
            await self._on_ai_closed()

    async def handle_ai_message(self, raw: Any) -> None:
        try:
            event = parse_server_event(raw)
        except ValueError as e:
            logger.warning("ai_frame_dropped", error=str(e))
            if self._metrics:
                self._metrics.malformed_frame("ai")
            return

        etype = event.type
        if etype == "audio":
            if event.audio is None:
                logger.debug("ai_audio_without_payload")
            elif not self.stream_sid:
                logger.debug("ai_audio_before_stream_start_dropped")
            else:
                await self._send_carrier(build_media_frame(self.stream_sid, event.audio))

        elif etype == "interruption":
            if self.stream_sid:
                await self._send_carrier(build_clear_frame(self.stream_sid))

        elif etype == "ping":
            if event.event_id is not None:
                await self._send_ai(build_pong(event.event_id))

        elif etype == "user_transcript":
            logger.info("user_transcript", text=event.transcript)
            await self._on_user_transcript(event.transcript)

        elif etype == "agent_response":
            logger.info("agent_response", text=event.transcript)

        elif etype == "conversation_initiation_metadata":
            logger.info("conversation_initiation_metadata_received")

        elif etype == "conversation_ended":
            logger.info("conversation_ended")
            self._conversation_ended = True
            if self.call_sid:
                await self.registry.update(self.call_sid, conversation_ended=True)

        else:
            logger.debug("ai_event_ignored", type=etype)

    # ========================================
    # TRANSFERÊNCIA
    # ========================================

    async def _on_user_transcript(self, text: Optional[str]) -> None:
        if self._transfer_requested or self.phase == BridgePhase.CLOSED:
            return
        if not self.detector.wants_human(text):
            return

        self._transfer_requested = True
        self.phase = BridgePhase.TRANSFERRING
        if self._metrics:
            self._metrics.transfer("requested")
        logger.info("transfer_requested", text=text)
        self._spawn(self._transfer_sequence())

    async def _transfer_sequence(self) -> None:
        """
        interrupt -> (grace) -> instrução de sistema -> (delay) -> forward.

        O forward acontece mesmo que o agente ignore a instrução. Cada
        passo reconsulta o estado em vez de depender de cancelamento.
        """
        if not self.ai_open:
            logger.info("ai_leg_not_open_forwarding_immediately")
            await self._forward()
            return

        await self._send_ai(build_interrupt())

        await asyncio.sleep(self.settings.transfer_grace_delay_seconds)
        if self.ai_open and not self._call_is_terminal():
            await self._send_ai(build_user_message(TRANSFER_SYSTEM_INSTRUCTION))

        await asyncio.sleep(self.settings.transfer_forward_delay_seconds)
        await self._forward()

    async def _forward(self) -> None:
        try:
            if not self.call_sid:
                logger.warning("transfer_without_call_sid")
                return
            if self._call_is_terminal():
                logger.info("transfer_skipped_call_already_ended")
                return
            await self.forwarder.forward(self.call_sid)
        except ForwardingError as e:
            logger.error("transfer_failed", error=str(e))
        finally:
            self._forward_done = True

        # Redirect falhou e a IA já caiu: nada mais mantém a chamada
        if self._ai_closed and not self._transfer_pending():
            await self._close_carrier()

    # ========================================
    # PERNA DO CHAMADOR
    # ========================================

    async def handle_carrier_message(self, raw: Any) -> None:
        try:
            event = parse_carrier_frame(raw)
        except ValueError as e:
            logger.warning("carrier_frame_dropped", error=str(e))
            if self._metrics:
                self._metrics.malformed_frame("carrier")
            return

        if event.event == "media":
            if self.ai_open:
                await self._send_ai(build_audio_chunk(event.payload))
        elif event.event == "start":
            await self._on_start(event)
        elif event.event == "stop":
            await self._on_stop(event)
        elif event.event in ("connected", "mark"):
            logger.debug("carrier_event", event=event.event)
        else:
            logger.debug("carrier_event_ignored", event=event.event)

    async def _on_start(self, event: CarrierEvent) -> None:
        self.stream_sid = event.stream_sid
        self.call_sid = event.call_sid
        self.custom_parameters = event.custom_parameters
        self._start_seen = True
        if self.phase == BridgePhase.AWAITING_START:
            self.phase = BridgePhase.STREAMING

        bind_call_context(self.call_sid, self.stream_sid)
        logger.info("stream_started", parameters=list(self.custom_parameters))

        if self.call_sid:
            await self.registry.update(
                self.call_sid,
                status=CallStatus.IN_PROGRESS,
                stream_sid=self.stream_sid,
            )

        if not self._setup_started:
            self._spawn(self.ensure_ai_leg())
        await self._maybe_send_init()

    async def _on_stop(self, event: CarrierEvent) -> None:
        logger.info("stream_stopped")
        self._stream_stopped = True
        if self.call_sid:
            await self.registry.update(self.call_sid, stream_ended=True)

    async def _send_carrier(self, frame: Dict[str, Any]) -> bool:
        if not websocket_is_open(self.carrier_ws):
            return False
        try:
            await self.carrier_ws.send_json(frame)
            return True
        except (RuntimeError, OSError) as e:
            logger.debug("carrier_send_failed", error=str(e))
            return False

    # ========================================
    # TEARDOWN
    # ========================================

    async def _finalize(self, reason: CompletionReason, respect_transfer: bool, **flags: Any) -> None:
        """
        Marca o registro como completed (a menos que já seja terminal).

        Em 'forwarding' a chamada segue no atendente: só as flags são
        gravadas e o status callback do Twilio finaliza o registro.
        """
        if not self.call_sid:
            return
        record = self.registry.get(self.call_sid)
        if record is None:
            return

        keep_status = (
            record.is_terminal
            or record.status == CallStatus.FORWARDING
            or (respect_transfer and self._transfer_pending())
        )
        if keep_status:
            await self.registry.update(self.call_sid, **flags)
        else:
            await self.registry.update(
                self.call_sid,
                status=CallStatus.COMPLETED,
                reason=reason,
                **flags,
            )

    async def _on_carrier_closed(self) -> None:
        if self._carrier_closed:
            return
        self._carrier_closed = True

        reason = (
            CompletionReason.STREAM_ENDED
            if self._stream_stopped
            else CompletionReason.TWILIO_DISCONNECTED
        )
        logger.info("carrier_leg_closed", reason=reason.value)
        await self._finalize(reason, respect_transfer=False, carrier_disconnected=True)

        self.phase = BridgePhase.CLOSED
        await self._close_ai_leg()

    async def _on_ai_closed(self) -> None:
        if self._ai_closed:
            return
        self._ai_closed = True
        logger.info("ai_leg_closed")

        await self._finalize(
            CompletionReason.ELEVENLABS_DISCONNECTED,
            respect_transfer=True,
            ai_disconnected=True,
        )

        if self._transfer_pending():
            return
        await self._close_carrier()

    async def _close_ai_leg(self) -> None:
        if self.ai_ws is None:
            return
        try:
            await self.ai_ws.close()
        except Exception as e:
            logger.debug("ai_close_failed", error=str(e))

    async def _close_carrier(self) -> None:
        if not websocket_is_open(self.carrier_ws):
            return
        try:
            await self.carrier_ws.close()
        except RuntimeError as e:
            logger.debug("carrier_close_failed", error=str(e))
