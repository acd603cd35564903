"""
Testes dos clientes externos (Twilio REST/TwiML e signed URL do ElevenLabs).
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import requests
from twilio.base.exceptions import TwilioException, TwilioRestException

from services.elevenlabs_service import ElevenLabsService, SignedUrlError
from services.twilio_service import (
    STATUS_CALLBACK_EVENTS,
    TelephonyError,
    TwilioService,
    build_status_callback_url,
    build_stream_twiml,
    build_twiml_url,
)


def _mock_session(status=200, payload=None, text="", error=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    if error is not None:
        session.get = MagicMock(side_effect=error)
    else:
        session.get = MagicMock(return_value=ctx)
    return session


class TestElevenLabsService:
    """GET /v1/convai/conversation/get_signed_url."""

    @pytest.fixture
    def service(self):
        return ElevenLabsService("xi-key", "agent-1", api_url="https://api.test/")

    @pytest.mark.asyncio
    async def test_signed_url(self, service):
        session = _mock_session(payload={"signed_url": "wss://api.test/convai?token=abc"})
        service._session = session

        assert await service.get_signed_url() == "wss://api.test/convai?token=abc"

        args, kwargs = session.get.call_args
        assert args[0] == "https://api.test/v1/convai/conversation/get_signed_url"
        assert kwargs["params"] == {"agent_id": "agent-1"}
        assert kwargs["headers"] == {"xi-api-key": "xi-key"}

    @pytest.mark.asyncio
    async def test_http_error(self, service):
        service._session = _mock_session(status=401, text="unauthorized")

        with pytest.raises(SignedUrlError):
            await service.get_signed_url()

    @pytest.mark.asyncio
    async def test_missing_field(self, service):
        service._session = _mock_session(payload={"other": 1})

        with pytest.raises(SignedUrlError):
            await service.get_signed_url()

    @pytest.mark.asyncio
    async def test_network_error(self, service):
        service._session = _mock_session(error=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(SignedUrlError):
            await service.get_signed_url()


class TestTwiml:

    def test_twiml_url_encodes_parameters(self):
        url = build_twiml_url("bridge.test", "you are gary", "hey there!")

        assert url.startswith("https://bridge.test/outbound-call-twiml?")
        assert "prompt=you%20are%20gary" in url
        assert "first_message=hey%20there%21" in url

    def test_status_callback_url(self):
        assert build_status_callback_url("bridge.test") == "https://bridge.test/call-status-callback"

    def test_stream_twiml(self):
        twiml = build_stream_twiml("bridge.test", "be nice", "hello")

        assert "<Connect>" in twiml
        assert 'url="wss://bridge.test/outbound-media-stream"' in twiml
        assert 'name="prompt"' in twiml
        assert 'value="be nice"' in twiml
        assert 'name="first_message"' in twiml


class TestTwilioService:
    """REST via SDK (cliente mockado)."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.calls.create.return_value = MagicMock(sid="CA1")
        return client

    @pytest.fixture
    def service(self, client):
        return TwilioService("AC1", "token", "+15550000000", client=client)

    @pytest.mark.asyncio
    async def test_create_call(self, service, client):
        sid = await service.create_call(
            "+15551112222",
            "https://bridge.test/outbound-call-twiml",
            "https://bridge.test/call-status-callback",
            timeout=15,
            machine_detection="DetectMessageEnd",
            machine_detection_timeout=10,
        )

        assert sid == "CA1"
        kwargs = client.calls.create.call_args.kwargs
        assert kwargs["to"] == "+15551112222"
        assert kwargs["from_"] == "+15550000000"
        assert kwargs["status_callback_event"] == STATUS_CALLBACK_EVENTS
        assert kwargs["machine_detection"] == "DetectMessageEnd"
        assert kwargs["machine_detection_timeout"] == 10

    @pytest.mark.asyncio
    async def test_create_call_without_amd(self, service, client):
        await service.create_call("+1555", "https://u", "https://cb")

        assert "machine_detection" not in client.calls.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_rest_error_is_wrapped(self, service, client):
        client.calls.create.side_effect = TwilioRestException(400, "/Calls", msg="invalid number", code=21211)

        with pytest.raises(TelephonyError) as exc:
            await service.create_call("+1", "https://u", "https://cb")

        assert exc.value.status == 400
        assert exc.value.code == 21211

    @pytest.mark.asyncio
    async def test_redirect_and_end(self, service, client):
        await service.redirect("CA1", "<Response/>")
        await service.end_call("CA1")

        client.calls.assert_any_call("CA1")
        client.calls.return_value.update.assert_any_call(twiml="<Response/>")
        client.calls.return_value.update.assert_any_call(status="completed")

    @pytest.mark.asyncio
    async def test_fetch_call(self, service, client):
        client.calls.return_value.fetch.return_value = MagicMock(
            sid="CA1", status="completed", duration="42", to="+1555", from_="+1666",
            answered_by="human", start_time=None, end_time=None,
        )

        info = await service.fetch_call("CA1")

        assert info.to_dict()["status"] == "completed"
        assert info.to_dict()["duration"] == 42
        assert info.to_dict()["from"] == "+1666"

    @pytest.mark.asyncio
    async def test_fetch_unknown_call(self, service, client):
        client.calls.return_value.fetch.side_effect = TwilioRestException(404, "/Calls/CA9", msg="not found")

        with pytest.raises(TelephonyError) as exc:
            await service.fetch_call("CA9")

        assert exc.value.status == 404

    @pytest.mark.asyncio
    async def test_transport_error_on_redirect_is_wrapped(self, service, client):
        client.calls.return_value.update.side_effect = requests.exceptions.ConnectionError("connection reset")

        with pytest.raises(TelephonyError) as exc:
            await service.redirect("CA1", "<Response/>")

        assert exc.value.status is None
        assert "connection reset" in str(exc.value)

    @pytest.mark.asyncio
    async def test_sdk_error_on_create_is_wrapped(self, service, client):
        client.calls.create.side_effect = TwilioException("credentials rejected")

        with pytest.raises(TelephonyError):
            await service.create_call("+1", "https://u", "https://cb")

    @pytest.mark.asyncio
    async def test_timeout_on_end_call_is_wrapped(self, service, client):
        client.calls.return_value.update.side_effect = requests.exceptions.Timeout()

        with pytest.raises(TelephonyError) as exc:
            await service.end_call("CA1")

        assert "Timeout" in str(exc.value)
