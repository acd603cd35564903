"""
Testes unitários para a API HTTP/WebSocket.
"""

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from callbridge.core.state_machine import CallStatus, CompletionReason
from services.twilio_service import TelephonyError

from conftest import BridgeHarness, FakeClock, make_settings


@pytest.fixture
def harness():
    return BridgeHarness(make_settings(), FakeClock())


@pytest.fixture
def client(harness):
    app = create_app(runtime=harness.runtime)
    with TestClient(app) as client:
        yield client


def _start(client, number="+15551112222", **body):
    return client.post("/outbound-call", json={"number": number, **body})


class TestHealthEndpoints:

    def test_root(self, client):
        assert client.get("/").json() == {"message": "Server is running"}

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert "time" in data

    def test_diagnostics(self, client):
        _start(client)

        data = client.get("/diagnostics").json()

        assert data["calls"]["total"] == 1
        assert data["calls"]["byStatus"] == {"initiated": 1}
        assert data["credentials"]["running"] is True
        assert data["activeBridges"] == 0

    def test_metrics(self, client):
        _start(client)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'call_bridge_calls_started_total{kind="outbound"} 1.0' in response.text


class TestOutboundCall:

    def test_success(self, client, harness):
        response = _start(client, prompt="be brief", first_message="hello")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Call initiated"
        assert data["callSid"] == harness.telephony.created[0]["call_sid"]
        assert harness.telephony.created[0]["url"].startswith("https://testserver/outbound-call-twiml?")

    def test_missing_number(self, client, harness):
        response = client.post("/outbound-call", json={"prompt": "x"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Phone number is required"}
        assert harness.telephony.created == []

    def test_rate_limited(self, client, harness):
        _start(client)
        harness.clock.advance(15)

        response = _start(client)

        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["cooldownRemaining"] == 45
        assert len(harness.telephony.created) == 1

    def test_telephony_failure(self, client, harness):
        harness.telephony.fail_create = TelephonyError("Twilio call creation failed: invalid", status=400)

        response = _start(client)

        assert response.status_code == 500
        assert response.json()["success"] is False

    def test_proxy_has_no_cooldown(self, client, harness):
        first = client.post("/proxy-outbound-call", json={"number": "+1555"})
        second = client.post("/proxy-outbound-call", json={"number": "+1555"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert harness.telephony.created[1]["machine_detection"] is None


class TestCallActions:

    def test_call_status_tracked(self, client):
        sid = _start(client).json()["callSid"]

        data = client.get(f"/call-status/{sid}").json()

        assert data["success"] is True
        assert data["call"]["callSid"] == sid
        assert data["call"]["status"] == "initiated"
        assert "credential" not in data["call"]

    def test_call_status_unknown(self, client):
        response = client.get("/call-status/CA404")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_end_call(self, client, harness):
        sid = _start(client).json()["callSid"]

        response = client.post(f"/end-call/{sid}")

        assert response.json() == {"success": True, "message": "Call ended successfully"}
        record = harness.registry.get(sid)
        assert record.completion_reason == CompletionReason.MANUALLY_ENDED

    def test_end_call_failure(self, client, harness):
        harness.telephony.fail_end = TelephonyError("Twilio hangup failed", status=500)

        response = client.post("/end-call/CA1")

        assert response.status_code == 500

    def test_forward_refused_before_stream(self, client, harness):
        sid = _start(client).json()["callSid"]

        response = client.post(f"/forward-call/{sid}")

        assert response.status_code == 409
        assert harness.telephony.redirects == []

    def test_forward_in_progress(self, client, harness):
        sid = _start(client).json()["callSid"]
        harness.registry.get(sid).status = CallStatus.IN_PROGRESS

        response = client.post(f"/forward-call/{sid}")

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["forwardingTo"].endswith("4567")
        assert harness.telephony.redirects[0]["call_sid"] == sid

    def test_forward_failure(self, client, harness):
        harness.telephony.fail_redirect = TelephonyError("Twilio redirect failed", status=500)

        response = client.post("/forward-call/CA-untracked")

        assert response.status_code == 500


class TestTwilioWebhooks:

    def test_twiml(self, client):
        response = client.get("/outbound-call-twiml", params={"prompt": "be nice", "first_message": "hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert 'url="wss://testserver/outbound-media-stream"' in response.text
        assert 'value="be nice"' in response.text

    def test_twiml_post_uses_defaults(self, client, harness):
        response = client.post("/outbound-call-twiml")

        assert response.status_code == 200
        assert harness.settings.default_first_message in response.text

    def test_status_callback(self, client, harness):
        sid = _start(client).json()["callSid"]

        response = client.post("/call-status-callback", data={"CallSid": sid, "CallStatus": "ringing"})

        assert response.json() == {"success": True}
        assert harness.registry.get(sid).status == CallStatus.RINGING

    def test_status_callback_with_duration(self, client, harness):
        sid = _start(client).json()["callSid"]

        client.post("/call-status-callback", data={
            "CallSid": sid, "CallStatus": "completed", "CallDuration": "33",
        })

        record = harness.registry.get(sid)
        assert record.status == CallStatus.COMPLETED
        assert record.duration == 33


class TestDashboardSocket:

    def test_snapshot_then_updates(self, client):
        with client.websocket_connect("/call-status-ws") as ws:
            snapshot = ws.receive_json()
            assert snapshot == {"type": "active_calls", "calls": []}

            sid = _start(client).json()["callSid"]

            update = ws.receive_json()
            assert update["type"] == "call_status_update"
            assert update["callSid"] == sid
            assert update["status"] == "initiated"

    def test_snapshot_lists_existing_calls(self, client):
        sid = _start(client).json()["callSid"]

        with client.websocket_connect("/call-status-ws") as ws:
            snapshot = ws.receive_json()

        assert [c["callSid"] for c in snapshot["calls"]] == [sid]
