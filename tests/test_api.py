"""Tests for the FastAPI surface."""

import time

import pytest
from fastapi.testclient import TestClient as ApiClient

from perpwatch.api import create_app
from perpwatch.orchestrator import SnapshotOrchestrator

from fakes import NOW, linear_market


@pytest.fixture
def transport():
    return linear_market()


@pytest.fixture
def orchestrator(transport):
    return SnapshotOrchestrator(transport, ["XUSDT"], clock=lambda: NOW)


@pytest.fixture
def client(orchestrator):
    with ApiClient(create_app(orchestrator)) as c:
        yield c


class TestRoutes:

    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "live" in resp.text

    def test_now_defaults_to_tracked_symbols(self, client):
        body = client.get("/api/now").json()
        assert isinstance(body["checkedAt"], int)
        [snap] = body["data"]
        assert snap["symbol"] == "XUSDT"
        assert snap["fetchedAt"] == NOW
        assert snap["price"] == 104.0
        assert snap["signal"]["signal"] == "BUY"
        assert snap["signal"]["score"] == 5
        assert snap["venues"] == {"spot": False, "linearFutures": True, "inverseContract": None}
        assert snap["deltas"]["priceChange15m"] == pytest.approx(4.0)
        assert snap["deltas"]["oiChange4h"] == pytest.approx(6.0)
        assert snap["deltas"]["fundingPrev"] == 0.0002
        assert len(snap["fundingHistory"]) == 3
        assert snap["error"] is None

    def test_now_with_query_symbols(self, client):
        body = client.get("/api/now", params={"symbols": " xusdt , ghostusdt ,"}).json()
        assert [s["symbol"] for s in body["data"]] == ["XUSDT", "GHOSTUSDT"]
        ghost = body["data"][1]
        assert ghost["price"] is None
        assert ghost["signal"] == {"signal": "NEUTRAL", "score": 0, "reasons": []}

    def test_now_empty_symbols_is_bad_request(self, client):
        assert client.get("/api/now", params={"symbols": " , "}).status_code == 400

    def test_history(self, client):
        client.get("/api/now")
        client.get("/api/now")  # served from cache, no new entry
        body = client.get("/api/history", params={"symbol": "xusdt"}).json()
        assert body["symbol"] == "XUSDT"
        assert len(body["data"]) == 1

    def test_history_unknown_symbol(self, client):
        body = client.get("/api/history", params={"symbol": "NOPE"}).json()
        assert body == {"symbol": "NOPE", "data": []}

    def test_history_requires_symbol(self, client):
        assert client.get("/api/history").status_code == 422

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["ok"] is True
        assert body["symbols"] == ["XUSDT"]
        assert body["cycle"] == 0
        assert body["last_cycle_at"] is None


class TestLifecycle:

    def test_transport_opened_and_closed(self, orchestrator, transport):
        with ApiClient(create_app(orchestrator)):
            assert transport.started
        assert transport.closed

    def test_background_poll_loop(self, orchestrator, transport):
        with ApiClient(create_app(orchestrator, poll_interval=3600)) as c:
            deadline = time.time() + 5
            while time.time() < deadline and c.get("/health").json()["cycle"] < 1:
                time.sleep(0.02)
            body = c.get("/health").json()
            assert body["cycle"] == 1
            assert body["history"]["XUSDT"]["count"] == 1
        assert not orchestrator.running
