"""HTTP API tests against in-memory stores."""

import asyncio
from decimal import Decimal

import orjson
import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from buspass.api import scans, trips, ws
from buspass.core.errors import StoreUnavailable
from buspass.main import app

from conftest import LAT_A, LON_A


@pytest.fixture
def client(monkeypatch, processor, engine) -> TestClient:
    monkeypatch.setattr(scans, "processor", processor)
    monkeypatch.setattr(trips, "engine", engine)
    # No context manager: the lifespan (database, Redis, scheduler) is not started
    return TestClient(app)


def scan_body(**overrides) -> dict:
    body = {"pass_code": "stu-1", "bus_id": "bus-1", "driver_id": "drv-1", "daily_fare": "60"}
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_scan_charges_fare(client):
    resp = client.post("/api/scans", json=scan_body(route_name="R1 Downtown"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "success"
    assert Decimal(data["fare_deducted"]) == Decimal("60")
    assert Decimal(data["balance_after"]) == Decimal("40")
    assert data["student"]["full_name"] == "Asha Rao"


def test_scan_rejections_are_not_errors(client, fare_store):
    fare_store.holders["stu-1"].wallet_balance = Decimal("30")
    data = client.post("/api/scans", json=scan_body()).json()
    assert data["status"] == "insufficient_balance"
    assert Decimal(data["required"]) == Decimal("60")

    data = client.post("/api/scans", json=scan_body(pass_code="nobody")).json()
    assert data["status"] == "not_found"
    assert data["student"] is None


def test_scan_rejects_non_positive_fare(client):
    assert client.post("/api/scans", json=scan_body(daily_fare="0")).status_code == 422


def test_scan_stats_and_history(client):
    client.post("/api/scans", json=scan_body())
    client.post("/api/scans", json=scan_body())
    client.post("/api/scans", json=scan_body())

    stats = client.get("/api/scans/stats", params={"driver_id": "drv-1"}).json()
    assert stats == {"total": 3, "success": 2, "failed": 1}

    days = client.get("/api/scans/history", params={"driver_id": "drv-1"}).json()
    assert len(days) == 1
    assert days[0]["date"] == "2026-03-02"
    assert len(days[0]["scans"]) == 3


class DownProcessor:
    async def process_scan(self, *args, **kwargs):
        raise StoreUnavailable("scan")


def test_store_outage_is_503(client, monkeypatch):
    monkeypatch.setattr(scans, "processor", DownProcessor())
    resp = client.post("/api/scans", json=scan_body())
    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "1"
    assert resp.json()["operation"] == "scan"


def test_not_ready_is_503(client, monkeypatch):
    monkeypatch.setattr(scans, "processor", None)
    assert client.post("/api/scans", json=scan_body()).status_code == 503


def test_trip_lifecycle(client):
    resp = client.post("/api/trips", json={"bus_id": "bus-1", "driver_id": "drv-1", "route_id": "route-1"})
    assert resp.status_code == 201
    trip_id = resp.json()["id"]

    resp = client.post("/api/trips", json={"bus_id": "bus-1", "driver_id": "drv-2", "route_id": "route-1"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "ALREADY_ACTIVE"
    assert resp.json()["trip_id"] == trip_id

    resp = client.post(f"/api/trips/{trip_id}/stops/stop-a/simulate")
    assert resp.json()["applied"] is True
    assert resp.json()["transition"]["status"] == "arrived"

    resp = client.post(f"/api/trips/{trip_id}/stops/stop-a/status", json={"status": "departed"})
    assert resp.json()["applied"] is True

    progress = client.get(f"/api/trips/{trip_id}/progress").json()
    assert progress["current_stop"] == "En route to Library"
    assert progress["next_stop"]["id"] == "stop-b"
    assert [s["status"] for s in progress["stops"]] == ["departed", "pending", "pending"]

    assert client.get("/api/buses/bus-1/trip").json()["trip"]["id"] == trip_id

    assert client.post(f"/api/trips/{trip_id}/end").json() == {"trip_id": trip_id, "ended": True}
    assert client.post(f"/api/trips/{trip_id}/end").json()["ended"] is False
    assert client.get("/api/buses/bus-1/trip").json() is None


def test_position_updates(client):
    trip_id = client.post(
        "/api/trips", json={"bus_id": "bus-1", "driver_id": "drv-1", "route_id": "route-1"},
    ).json()["id"]

    resp = client.post(f"/api/trips/{trip_id}/position", json={"lat": LAT_A, "lon": LON_A})
    assert resp.json()["transition"]["stop_id"] == "stop-a"
    assert resp.json()["transition"]["automatic"] is True

    resp = client.post(f"/api/trips/{trip_id}/position", json={"lat": 95.0, "lon": LON_A})
    assert resp.status_code == 422


def test_manual_status_must_move_forward(client):
    trip_id = client.post(
        "/api/trips", json={"bus_id": "bus-1", "driver_id": "drv-1", "route_id": "route-1"},
    ).json()["id"]
    resp = client.post(f"/api/trips/{trip_id}/stops/stop-a/status", json={"status": "pending"})
    assert resp.status_code == 422


def test_unknown_trip_progress_is_404(client):
    assert client.get("/api/trips/no-such-trip/progress").status_code == 404


class FinishedSubscription:
    """Subscription that is already over, so the stream ends after the snapshot."""

    cancelled = True

    def cancel(self) -> None:
        pass


class StubBroadcaster:
    def subscribe(self, trip_id):
        return FinishedSubscription()


def test_ws_sends_snapshot(client, monkeypatch, engine):
    monkeypatch.setattr(ws, "engine", engine)
    monkeypatch.setattr(ws, "broadcaster", StubBroadcaster())
    trip_id = client.post(
        "/api/trips", json={"bus_id": "bus-1", "driver_id": "drv-1", "route_id": "route-1"},
    ).json()["id"]

    with client.websocket_connect(f"/ws/trips/{trip_id}") as conn:
        snapshot = orjson.loads(conn.receive_bytes())
    assert snapshot["type"] == "snapshot"
    assert snapshot["trip"]["id"] == trip_id
    assert snapshot["current_stop"] == "Starting from Main Gate"


def test_ws_unknown_trip_is_closed(client, monkeypatch, engine, broadcaster):
    monkeypatch.setattr(ws, "engine", engine)
    monkeypatch.setattr(ws, "broadcaster", broadcaster)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/trips/no-such-trip") as conn:
            conn.receive_bytes()
    assert exc_info.value.code == 4404
    assert broadcaster.subscriber_count("no-such-trip") == 0


class LeavingViewer:
    """Disconnects straight away without ever being sent anything."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []

    async def receive(self) -> dict:
        return {"type": "websocket.disconnect", "code": 1001}

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)


class ListeningViewer:
    """Stays connected and stops listening after the first update."""

    def __init__(self, sub) -> None:
        self.sub = sub
        self.sent: list[bytes] = []

    async def receive(self) -> dict:
        await asyncio.Event().wait()

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)
        self.sub.cancel()


def test_ws_stream_ends_when_viewer_leaves_quiet_trip(broadcaster):
    async def watch():
        sub = broadcaster.subscribe("trip-1")
        try:
            # no updates are ever published, so only the disconnect can end the stream
            await asyncio.wait_for(ws._stream(LeavingViewer(), sub), timeout=1.0)
        finally:
            sub.cancel()

    asyncio.run(watch())
    assert broadcaster.subscriber_count("trip-1") == 0


def test_ws_stream_forwards_updates(broadcaster):
    async def watch():
        sub = broadcaster.subscribe("trip-1")
        viewer = ListeningViewer(sub)
        await broadcaster.publish("trip-1", {"type": "stop_update", "stop_id": "stop-a"})
        await asyncio.wait_for(ws._stream(viewer, sub), timeout=1.0)
        return viewer.sent

    sent = asyncio.run(watch())
    assert [orjson.loads(m)["stop_id"] for m in sent] == ["stop-a"]
    assert broadcaster.subscriber_count("trip-1") == 0
