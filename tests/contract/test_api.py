"""
Contract tests for the HTTP and WebSocket API.

Requests go through the ASGI app in-process against a controller running on
the fake clock and timer, so countdowns only advance when a test fires them.
"""

import httpx
import pytest
import pytest_asyncio
from datetime import datetime
from fastapi.testclient import TestClient

from crashguard.lib.api_server import create_app, set_controller
from crashguard.models import MonitorConfiguration
from crashguard.services import MonitoringController


@pytest_asyncio.fixture
async def client(controller):
    """HTTP client bound to an app serving the test controller."""
    set_controller(controller)
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    set_controller(None)


@pytest.mark.contract
class TestStatusEndpoints:
    """GET /status, /history and /health."""

    @pytest.mark.asyncio
    async def test_status_schema(self, client):
        response = await client.get("/status")

        assert response.status_code == 200
        data = response.json()
        datetime.fromisoformat(data["timestamp"])
        assert data["status"]["kind"] == "disabled"
        assert data["status"]["text"] == "Status: detection disabled"
        assert data["monitoring"]["detector_state"] == "idle"
        assert data["monitoring"]["threshold"] == 25.0
        assert data["session"] is None

    @pytest.mark.asyncio
    async def test_status_reports_active_session(self, client):
        await client.post("/alert/simulate")

        data = (await client.get("/status")).json()

        assert data["status"]["kind"] == "pending"
        assert data["status"]["seconds_remaining"] == 30
        assert data["session"]["trigger"] == "simulated"
        assert data["session"]["contact"] == "+15551234567"

    @pytest.mark.asyncio
    async def test_history(self, client):
        await client.post("/alert/simulate")
        await client.post("/alert/cancel")

        response = await client.get("/history", params={"count": 2})

        assert response.status_code == 200
        data = response.json()
        assert [s["kind"] for s in data["statuses"]] == ["pending", "canceled"]
        assert [s["status"] for s in data["sessions"]] == ["canceled"]

    @pytest.mark.asyncio
    async def test_health(self, client):
        data = (await client.get("/health")).json()

        assert data["status"] == "healthy"
        assert data["websocket_connections"] == 0

    @pytest.mark.asyncio
    async def test_no_controller(self):
        set_controller(None)
        transport = httpx.ASGITransport(app=create_app())

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/status")).status_code == 503
            assert (await client.get("/health")).json()["status"] == "degraded"


@pytest.mark.contract
class TestConfigEndpoints:
    """GET and POST /config."""

    @pytest.mark.asyncio
    async def test_get_config(self, client):
        response = await client.get("/config")

        assert response.status_code == 200
        data = response.json()
        assert data["contact"] == "+15551234567"
        assert data["contact_configured"] is True
        assert data["detection"]["smoothing_alpha"] == 0.8
        assert data["countdown"]["duration_ms"] == 30000
        assert data["messaging"] == {"provider": "log"}

    @pytest.mark.asyncio
    async def test_update_config(self, client, controller):
        response = await client.post("/config", json={"threshold": 30.0, "countdown_ms": 15000})

        assert response.status_code == 200
        assert controller.detector.threshold == 30.0
        assert controller.configuration.countdown.duration_ms == 15000
        assert (await client.get("/config")).json()["countdown"]["duration_ms"] == 15000

    @pytest.mark.asyncio
    async def test_update_contact(self, client, controller):
        await client.post("/config", json={"contact": "+15557654321"})

        data = (await client.post("/alert/simulate")).json()

        assert data["session"]["contact"] == "+15557654321"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"threshold": -1},
        {"countdown_ms": 10},
        {"contact": "+1" * 20},
    ])
    async def test_update_config_rejects_out_of_range(self, client, payload):
        response = await client.post("/config", json=payload)

        assert response.status_code == 422


@pytest.mark.contract
class TestControlEndpoints:
    """Monitoring and alert controls."""

    @pytest.mark.asyncio
    async def test_enable_and_disable(self, client, sensor):
        response = await client.post("/monitoring/enable")

        assert response.status_code == 200
        assert response.json()["status"]["kind"] == "armed"
        assert sensor.running

        response = await client.post("/monitoring/disable")

        assert response.json()["status"]["kind"] == "disabled"
        assert not sensor.running

    @pytest.mark.asyncio
    async def test_enable_without_sensor(self, client, sensor):
        sensor.available = False

        response = await client.post("/monitoring/enable")

        assert response.status_code == 409
        assert response.json()["detail"] == "Status: accelerometer not available"

    @pytest.mark.asyncio
    async def test_simulate_twice(self, client):
        first = await client.post("/alert/simulate")
        second = await client.post("/alert/simulate")

        assert first.status_code == 200
        assert first.json()["message"] == "Alert countdown started"
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_simulate_without_contact(self, client):
        await client.post("/config", json={"contact": ""})

        response = await client.post("/alert/simulate")

        assert response.status_code == 400
        assert response.json()["detail"] == "Please enter an emergency contact number first."

    @pytest.mark.asyncio
    async def test_cancel(self, client):
        await client.post("/alert/simulate")

        response = await client.post("/alert/cancel")

        assert response.status_code == 200
        assert response.json()["status"]["kind"] == "canceled"

    @pytest.mark.asyncio
    async def test_cancel_without_alert(self, client):
        response = await client.post("/alert/cancel")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel_after_expiry(self, client, controller, clock, timer):
        await client.post("/alert/simulate")
        clock.advance(30000)
        timer.last.expire()

        response = await client.post("/alert/cancel")
        await controller.wait_until_idle()

        assert response.status_code == 409
        assert controller.status.kind == "sent"


@pytest.mark.contract
class TestWebSocket:
    """WS /ws status stream."""

    @pytest.fixture
    def ws_client(self, sensor, location, sender, gate):
        # Not started: the socket handlers only read controller state
        controller = MonitoringController(
            MonitorConfiguration(contact="+15551234567"), sensor, location, sender, gate
        )
        set_controller(controller)
        yield TestClient(create_app())
        set_controller(None)

    def test_connect_sends_current_status(self, ws_client):
        with ws_client.websocket_connect("/ws?client_id=phone") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "current_status"
        assert message["data"]["status"]["kind"] == "disabled"
        assert "samples_processed" in message["data"]["monitoring"]

    def test_ping_and_get_status(self, ws_client):
        with ws_client.websocket_connect("/ws") as websocket:
            websocket.receive_json()

            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_json({"type": "get_status"})
            assert websocket.receive_json()["type"] == "current_status"

    def test_unknown_message(self, ws_client):
        with ws_client.websocket_connect("/ws") as websocket:
            websocket.receive_json()

            websocket.send_json({"type": "reboot"})
            message = websocket.receive_json()

        assert message["type"] == "error"
        assert "reboot" in message["data"]["message"]
