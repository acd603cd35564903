"""
Fixtures e fakes compartilhados.

Nenhum teste abre rede: Twilio, ElevenLabs (signed URL e WebSocket do
agente) e os sockets do Starlette são substituídos por fakes em memória.
"""

import asyncio
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from callbridge.config.settings import Settings  # noqa: E402
from services.elevenlabs_service import SignedUrlError  # noqa: E402
from services.twilio_service import CallInfo, TelephonyError  # noqa: E402


# =============================================================================
# Tempo
# =============================================================================

class FakeClock:
    """Relógio manual (epoch em segundos)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Cede o loop até o predicado ser verdadeiro."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


# =============================================================================
# Sockets
# =============================================================================

class FakeAIConnection:
    """WebSocket do agente: envia o que o teste empurra, grava o que recebe."""

    def __init__(self):
        self.state = State.OPEN
        self.sent: List[Dict[str, Any]] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, message: Any) -> None:
        raw = message if isinstance(message, str) else json.dumps(message)
        self._inbox.put_nowait(raw)

    def sent_types(self) -> List[Optional[str]]:
        return [m.get("type") for m in self.sent]

    async def send(self, message: str) -> None:
        if self.state is not State.OPEN:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        if self.state is State.CLOSED:
            return
        self.state = State.CLOSED
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeCarrierSocket:
    """Media stream do Twilio visto pelo servidor (starlette.WebSocket)."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[Dict[str, Any]] = []
        self.close_calls = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, frame: Any) -> None:
        raw = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait(raw)

    def hang_up(self) -> None:
        """Twilio fecha o socket sem 'stop'."""
        self.client_state = WebSocketState.DISCONNECTED
        self._inbox.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self.application_state == WebSocketState.DISCONNECTED

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("Cannot send on a closed websocket")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_calls += 1
        self.application_state = WebSocketState.DISCONNECTED
        self._inbox.put_nowait(None)

    async def iter_text(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item


class FakeObserverSocket:
    """Socket do dashboard."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)


# =============================================================================
# Serviços externos
# =============================================================================

class FakeSignedUrlSource:
    """Substitui ElevenLabsService.get_signed_url."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    async def get_signed_url(self) -> str:
        self.calls += 1
        if self.fail:
            raise SignedUrlError("Failed to get signed URL: HTTP 500")
        return f"wss://agent.test/convai?token={self.calls}"


class FakeTelephony:
    """Substitui TwilioService."""

    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.redirects: List[Dict[str, str]] = []
        self.ended: List[str] = []
        self.remote_calls: Dict[str, CallInfo] = {}
        self.fail_create: Optional[TelephonyError] = None
        self.fail_redirect: Optional[TelephonyError] = None
        self.fail_end: Optional[TelephonyError] = None
        self._counter = 0

    async def create_call(self, to, twiml_url, status_callback, *, timeout=15,
                          machine_detection=None, machine_detection_timeout=None):
        if self.fail_create:
            raise self.fail_create
        self._counter += 1
        call_sid = f"CA{self._counter:032d}"
        self.created.append({
            "call_sid": call_sid,
            "to": to,
            "url": twiml_url,
            "status_callback": status_callback,
            "timeout": timeout,
            "machine_detection": machine_detection,
            "machine_detection_timeout": machine_detection_timeout,
        })
        return call_sid

    async def redirect(self, call_sid: str, twiml: str) -> None:
        if self.fail_redirect:
            raise self.fail_redirect
        self.redirects.append({"call_sid": call_sid, "twiml": twiml})

    async def end_call(self, call_sid: str) -> None:
        if self.fail_end:
            raise self.fail_end
        self.ended.append(call_sid)

    async def fetch_call(self, call_sid: str) -> CallInfo:
        info = self.remote_calls.get(call_sid)
        if info is None:
            raise TelephonyError("Twilio fetch failed: not found", status=404, code=20404)
        return info


# =============================================================================
# Fixtures
# =============================================================================

def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "elevenlabs_api_key": "xi-test-key",
        "elevenlabs_agent_id": "agent-123",
        "twilio_account_sid": "AC" + "0" * 32,
        "twilio_auth_token": "token",
        "twilio_phone_number": "+15550000000",
        "forwarding_phone_number": "+15551234567",
        "transfer_grace_delay_seconds": 0.0,
        "transfer_forward_delay_seconds": 0.0,
        "signed_url_standby_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


class BridgeHarness:
    """Runtime completo com todos os colaboradores externos falsos."""

    def __init__(self, settings: Settings, clock: FakeClock):
        from callbridge.runtime import CallBridgeRuntime

        self.settings = settings
        self.clock = clock
        self.telephony = FakeTelephony()
        self.signed_urls = FakeSignedUrlSource()
        self.ai_connections: List[FakeAIConnection] = []
        self.connected_urls: List[str] = []
        self.connect_error: Optional[Exception] = None
        self.runtime = CallBridgeRuntime.build(
            settings,
            telephony=self.telephony,
            signed_urls=self.signed_urls,
            connector=self.connect,
            clock=clock,
        )

    async def connect(self, signed_url: str) -> FakeAIConnection:
        self.connected_urls.append(signed_url)
        if self.connect_error is not None:
            raise self.connect_error
        ai = FakeAIConnection()
        self.ai_connections.append(ai)
        return ai

    @property
    def ai(self) -> FakeAIConnection:
        return self.ai_connections[-1]

    @property
    def registry(self):
        return self.runtime.registry

    def open_stream(self):
        """Cria carrier + bridge e roda o bridge numa task."""
        carrier = FakeCarrierSocket()
        bridge = self.runtime.orchestrator.create_bridge(carrier)
        task = asyncio.create_task(bridge.run())
        return carrier, bridge, task


def start_frame(call_sid: str, stream_sid: str = "MZ0001", **parameters: str) -> Dict[str, Any]:
    return {
        "event": "start",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "customParameters": parameters,
        },
    }


def media_frame(payload: str = "AAEC", stream_sid: str = "MZ0001") -> Dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def stop_frame(call_sid: str, stream_sid: str = "MZ0001") -> Dict[str, Any]:
    return {"event": "stop", "streamSid": stream_sid, "stop": {"callSid": call_sid}}


def transcript(text: str) -> Dict[str, Any]:
    return {"type": "user_transcript", "user_transcription_event": {"user_transcript": text}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def harness(settings, clock):
    return BridgeHarness(settings, clock)
