"""Tests for the OHLC HTTP endpoint using FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from packages.phoenixdex.admission import AdmissionControl, CreditGate, RateLimiter
from packages.phoenixdex.config import Settings
from packages.phoenixdex.decoder import decode
from packages.phoenixdex.ohlc import OhlcQueryService
from packages.phoenixdex.store import ClickHouseStore
from services.api.main import build_query_service, create_app
from tests._phoenix_fakes import (
    BASE_MINT,
    QUOTE_MINT,
    FakeClickhouse,
    header,
    make_metadata,
    raw_fill,
)

T0 = 1_700_000_040


def _client(credits=None, max_requests=10, fills=()):
    clickhouse = FakeClickhouse(credits=credits if credits is not None else {"alice": 5})
    store = ClickHouseStore(clickhouse)
    meta = make_metadata()
    for offset, price in fills:
        [event] = decode("sig", header(timestamp=T0 + offset), [raw_fill(index=0, price=price)], meta)
        store.insert_fill_event(event, meta)
    service = OhlcQueryService(
        store,
        AdmissionControl(
            RateLimiter(max_requests=max_requests, window_seconds=60, clock=lambda: 0.0),
            CreditGate(store),
        ),
    )
    return TestClient(create_app(service)), clickhouse


def _params(**overrides):
    params = {
        "user_id": "alice",
        "base_token_mint": BASE_MINT,
        "quote_token_mint": QUOTE_MINT,
        "start_time": T0 - 40,
        "end_time": T0 + 19,
        "interval": "1m",
    }
    params.update(overrides)
    return params


def test_health():
    client, _ = _client()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "phoenixtool-api"}


def test_ohlc_success():
    client, clickhouse = _client(fills=[(0, 100), (1, 150), (2, 120), (3, 90)])

    response = client.get("/ohlc", params=_params())

    assert response.status_code == 200
    assert response.json() == {"open": 100, "high": 150, "low": 90, "close": 90}
    assert clickhouse.credits["alice"] == 4


@pytest.mark.parametrize(
    "overrides",
    [
        {"start_time": 100, "end_time": 100},
        {"start_time": 200, "end_time": 100},
        {"interval": "15m"},
    ],
)
def test_ohlc_validation_errors_are_400_and_free(overrides):
    client, clickhouse = _client()

    response = client.get("/ohlc", params=_params(**overrides))

    assert response.status_code == 400
    assert clickhouse.credits["alice"] == 5


def test_missing_parameter_is_rejected_by_fastapi():
    client, _ = _client()
    params = _params()
    params.pop("interval")
    assert client.get("/ohlc", params=params).status_code == 422


def test_ohlc_without_credits_is_402():
    client, _ = _client(credits={"alice": 0}, fills=[(0, 100)])
    assert client.get("/ohlc", params=_params()).status_code == 402


def test_ohlc_no_fills_is_404():
    client, _ = _client()
    response = client.get("/ohlc", params=_params())
    assert response.status_code == 404
    assert "No fills found" in response.json()["detail"]


def test_ohlc_rate_limited_is_429_with_retry_after():
    client, _ = _client(max_requests=1, fills=[(0, 100)])

    assert client.get("/ohlc", params=_params()).status_code == 200
    response = client.get("/ohlc", params=_params())

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"


def test_ohlc_store_failure_is_500():
    class _BrokenClickhouse(FakeClickhouse):
        def query(self, query, parameters=None):
            if "trade_fill_events" in query:
                raise RuntimeError("clickhouse down")
            return super().query(query, parameters)

    clickhouse = _BrokenClickhouse(credits={"alice": 5})
    store = ClickHouseStore(clickhouse)
    service = OhlcQueryService(
        store,
        AdmissionControl(RateLimiter(clock=lambda: 0.0), CreditGate(store)),
    )
    client = TestClient(create_app(service))

    response = client.get("/ohlc", params=_params())

    assert response.status_code == 500
    assert response.json()["detail"].startswith("Failed to fetch OHLC data")


def test_build_query_service_uses_settings(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "3")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_SECONDS", "30")

    service = build_query_service(Settings.from_env(), clickhouse_client=FakeClickhouse())

    assert service.admission.rate_limiter.max_requests == 3
    assert service.admission.rate_limiter.window_seconds == 30.0
