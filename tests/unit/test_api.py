"""
Unit Tests for the HTTP Layer

The app is built around a PositionService that was started with fake
connectors; TestClient is used without its context manager so the lifespan
(which would load real accounts) does not run.

Run with:
    pytest tests/unit/test_api.py -v
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from core.config import Settings
from services.position_service import PositionService
from tests.fakes import FakeConnectorFactory, make_config


@pytest.fixture
def factory():
    return FakeConnectorFactory(fail_init={"BAD": RuntimeError("invalid api key")})


@pytest.fixture
def service(factory):
    service = PositionService(
        config=Settings(fetch_interval_ms=3_600_000, accounts=[]),
        connector_factory=factory,
    )

    async def prepare():
        await service.registry.register_all([
            make_config("SF1"),
            make_config("BAD"),
            make_config("BY1", exchange="bybit", account_type="unified"),
        ])
        for name in service.registry.list_names():
            service.cache.add_account(service.registry.get(name))
        service.cache.set_current("SF1")
        await service.refresh()
        service.ready = True

    asyncio.run(prepare())
    return service


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestSystemEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["ready"] is True
        assert data["accounts"] == 3
        assert data["all_healthy"] is True
        assert data["failed_accounts"] == {"BAD": "invalid api key"}

    def test_api_index(self, client):
        assert "data" in client.get("/api").json()["endpoints"]


class TestAccountData:

    def test_data(self, client):
        data = client.get("/api/data").json()
        assert set(data["accounts"]) == {"SF1", "BY1"}
        assert data["current_account"] == "SF1"
        assert data["available_accounts"] == ["SF1", "BAD", "BY1"]
        assert "api_secret" not in data["account_configs"]["SF1"]

    def test_positions_of_current_account(self, client):
        positions = client.get("/api/positions").json()
        assert positions[0]["symbol"] == "BTCUSDT"
        assert positions[0]["account_name"] == "SF1"

    def test_account_summary(self, client):
        summary = client.get("/api/account-summary").json()
        assert summary["account_name"] == "SF1"
        assert summary["base_balance"] == 1000.0

    def test_current_account_without_data(self, client):
        client.post("/api/set-current", json={"account": "BAD"})
        response = client.get("/api/positions")
        assert response.status_code == 404

    def test_available(self, client):
        data = client.get("/api/available").json()
        assert data["exchanges"] == ["binance", "bybit"]
        assert data["accounts"] == {"binance": ["SF1", "BAD"], "bybit": ["BY1"]}
        assert data["currentAccount"] == "SF1"

    def test_accounts_by_exchange(self, client):
        assert client.get("/api/accounts/bybit").json()["accounts"] == ["BY1"]
        assert client.get("/api/accounts/okx").status_code == 404

    def test_health_endpoint(self, client):
        health = client.get("/api/health").json()
        assert set(health) == {"SF1", "BY1"}
        assert health["SF1"]["healthy"] is True
        assert health["SF1"]["config"]["exchange"] == "binance"


class TestSelection:

    def test_set_current(self, client):
        response = client.post("/api/set-current", json={"exchange": "bybit", "account": "BY1"})
        assert response.status_code == 200
        assert client.get("/api/account-summary").json()["account_name"] == "BY1"

    def test_set_current_missing_account(self, client):
        assert client.post("/api/set-current", json={"exchange": "bybit"}).status_code == 400

    def test_set_current_unknown(self, client):
        response = client.post("/api/set-current", json={"account": "NOPE"})
        assert response.status_code == 404
        assert client.get("/api/data").json()["current_account"] == "SF1"


class TestRegistration:

    def test_register_account(self, client, factory):
        body = {"name": "PM1", "exchange": "binance", "accountType": "portfolioMargin", "apiKey": "k", "apiSecret": "s"}

        response = client.post("/api/accounts", json=body)

        assert response.status_code == 201
        assert response.json()["account"]["name"] == "PM1"
        assert "PM1" in factory.connectors
        assert "PM1" in client.get("/api/data").json()["available_accounts"]

    def test_register_duplicate(self, client):
        body = {"name": "SF1", "exchange": "binance", "accountType": "futures"}
        assert client.post("/api/accounts", json=body).status_code == 409

    def test_register_unsupported(self, client):
        body = {"name": "X", "exchange": "kraken", "accountType": "spot"}
        assert client.post("/api/accounts", json=body).status_code == 400

    def test_register_init_failure(self, client, factory):
        factory.fail_init["NEW"] = RuntimeError("timeout")
        body = {"name": "NEW", "exchange": "bybit", "accountType": "unified"}
        assert client.post("/api/accounts", json=body).status_code == 502


class TestGrafanaEndpoints:

    def test_search(self, client):
        assert "positions" in client.get("/search").json()

    def test_annotations(self, client):
        assert client.post("/annotations", json={}).json() == []

    def test_variable_exchanges(self, client):
        response = client.post("/variable", json={"payload": {"target": "/api/available"}})
        assert response.json() == ["binance", "bybit"]

    def test_variable_accounts(self, client):
        response = client.post("/variable", json={"payload": {"target": "/api/accounts/binance"}})
        assert response.json() == ["SF1", "BAD"]

    def test_variable_unknown_target(self, client):
        assert client.post("/variable", json={"payload": {"target": "/nope"}}).status_code == 400

    def test_account_metrics(self, client):
        response = client.post("/api/account-metrics", json={"targets": [{"exchange": "bybit", "account": "BY1"}]})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        metrics = response.json()
        assert metrics["baseBalance"] == 1000.0
        assert metrics["openPositions"] == 1
        assert client.get("/api/data").json()["current_account"] == "BY1"

    def test_account_metrics_invalid(self, client):
        assert client.post("/api/account-metrics", json={"targets": []}).status_code == 400
        assert client.post("/api/account-metrics", json={"targets": [{"account": "NOPE"}]}).status_code == 404
