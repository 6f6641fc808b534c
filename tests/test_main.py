"""Tests for the HTTP API."""

from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider
from portfolio_valuation import main
from portfolio_valuation.cache_service import TimedCache
from portfolio_valuation.fetcher import PriceFetcher
from portfolio_valuation.holdings_store import HoldingsStore
from portfolio_valuation.models import AssetType
from portfolio_valuation.search_service import AssetSearchService

HOLDING = {
    "asset_type": "stock",
    "asset_key": "aaa",
    "quantity": "2",
    "purchase_timestamp": "2024-01-10T00:00:00Z",
    "purchase_price": "90",
}


@pytest.fixture
def api(monkeypatch, test_settings):
    stocks = FakeProvider("stocks", histories={"AAA": {"2024-01-10": 100}}, current={"AAA": 120})
    monkeypatch.setattr(main, "settings", test_settings)
    monkeypatch.setattr(main, "holdings_store", HoldingsStore())
    monkeypatch.setattr(main, "price_fetcher", PriceFetcher({AssetType.STOCK: stocks}))
    monkeypatch.setattr(main, "_valuators", OrderedDict())
    monkeypatch.setattr(main, "BACKGROUND_REFRESH", False)
    return TestClient(main.app)


class TestHoldingsApi:
    """Tests for the holdings endpoints."""

    def test_create_and_list(self, api):
        response = api.post("/api/holdings", json=HOLDING)

        assert response.status_code == 201
        assert response.json()["asset_key"] == "AAA"
        listed = api.get("/api/holdings").json()
        assert [h["id"] for h in listed] == [response.json()["id"]]

    def test_holdings_are_per_user(self, api):
        api.post("/api/holdings", json=HOLDING, headers={"X-User-Id": "bob"})
        assert api.get("/api/holdings").json() == []
        assert len(api.get("/api/holdings", headers={"X-User-Id": "bob"}).json()) == 1

    def test_blank_asset_key_rejected(self, api):
        response = api.post("/api/holdings", json={**HOLDING, "asset_key": " "})
        assert response.status_code == 422

    def test_update(self, api):
        holding_id = api.post("/api/holdings", json=HOLDING).json()["id"]

        response = api.put(f"/api/holdings/{holding_id}", json={**HOLDING, "quantity": "3"})

        assert response.status_code == 200
        assert Decimal(response.json()["quantity"]) == 3

    def test_update_missing(self, api):
        assert api.put("/api/holdings/nope", json=HOLDING).status_code == 404

    def test_delete(self, api):
        holding_id = api.post("/api/holdings", json=HOLDING).json()["id"]

        assert api.delete(f"/api/holdings/{holding_id}").status_code == 204
        assert api.delete(f"/api/holdings/{holding_id}").status_code == 404


class TestSellApi:
    """Tests for the sell endpoint."""

    def test_partial_sale(self, api):
        holding_id = api.post("/api/holdings", json=HOLDING).json()["id"]

        response = api.post(
            f"/api/holdings/{holding_id}/sell", json={"quantity": "1", "sell_price": "130"}
        )

        assert response.status_code == 201
        assert response.json()["description"] == "Venta de 1 AAA"
        assert len(api.get("/api/transactions").json()) == 1
        assert Decimal(api.get("/api/holdings").json()[0]["quantity"]) == 1

    def test_oversell(self, api):
        holding_id = api.post("/api/holdings", json=HOLDING).json()["id"]

        response = api.post(
            f"/api/holdings/{holding_id}/sell", json={"quantity": "5", "sell_price": "130"}
        )

        assert response.status_code == 400
        assert api.get("/api/transactions").json() == []

    def test_sell_missing(self, api):
        response = api.post("/api/holdings/nope/sell", json={"quantity": "1", "sell_price": "1"})
        assert response.status_code == 404


class TestPortfolioApi:
    """Tests for the valuation endpoints."""

    def test_portfolio(self, api):
        api.post("/api/holdings", json=HOLDING)

        body = api.get("/api/portfolio").json()

        assert Decimal(body["total_value"]) == 240
        assert body["is_loading"] is False
        assert body["period"] == 7
        assert len(body["chart_series"]) == 7
        assert Decimal(body["chart_series"][-1]["total_value"]) == 240
        assert Decimal(body["rows"][0]["pnl"]) == 60

    def test_empty_portfolio(self, api):
        body = api.get("/api/portfolio").json()
        assert body["chart_series"] == []
        assert Decimal(body["total_value"]) == 0

    def test_change_period(self, api):
        api.post("/api/holdings", json=HOLDING)
        body = api.get("/api/portfolio", params={"period": 30}).json()
        assert body["period"] == 30
        assert len(body["chart_series"]) == 30

    def test_invalid_period(self, api):
        assert api.get("/api/portfolio", params={"period": 14}).status_code == 400

    def test_ars_currency(self, api):
        api.post("/api/holdings", json=HOLDING)

        body = api.get("/api/portfolio", params={"currency": "ars"}).json()

        assert body["currency"] == "ARS"
        assert Decimal(body["total_value"]) == 240000

    def test_unsupported_currency(self, api):
        assert api.get("/api/portfolio", params={"currency": "EUR"}).status_code == 400

    def test_refresh(self, api):
        api.post("/api/holdings", json=HOLDING)

        response = api.post("/api/portfolio/refresh")

        assert response.status_code == 202
        assert response.json()["accepted"] is True

    def test_idle_valuators_evicted(self, api, monkeypatch, test_settings):
        """Test that only the most recently used valuators are kept."""
        monkeypatch.setattr(
            main, "settings", test_settings.model_copy(update={"max_valuators": 2})
        )

        for user_id in ("u1", "u2", "u1", "u3"):
            api.get("/api/portfolio", headers={"X-User-Id": user_id})

        assert list(main._valuators) == ["u1", "u3"]
        assert len(main.holdings_store._listeners) == 2

    def test_evicted_user_keeps_holdings(self, api, monkeypatch, test_settings):
        monkeypatch.setattr(
            main, "settings", test_settings.model_copy(update={"max_valuators": 1})
        )
        api.post("/api/holdings", json=HOLDING, headers={"X-User-Id": "u1"})
        api.get("/api/portfolio", headers={"X-User-Id": "u2"})

        body = api.get("/api/portfolio", headers={"X-User-Id": "u1"}).json()

        assert Decimal(body["total_value"]) == 240
        assert list(main._valuators) == ["u1"]


class TestSearchAndCacheApi:
    """Tests for search and cache maintenance endpoints."""

    @pytest.fixture
    def crypto(self, monkeypatch):
        crypto = MagicMock()
        crypto.search.return_value = [{"id": "bitcoin", "symbol": "btc", "name": "Bitcoin"}]
        monkeypatch.setattr(
            main,
            "search_service",
            AssetSearchService(crypto, MagicMock(), TimedCache(timedelta(hours=24))),
        )
        return crypto

    def test_search(self, api, crypto):
        response = api.get("/api/search", params={"q": "bit", "asset_type": "crypto"})

        assert response.status_code == 200
        assert response.json()["results"][0]["id"] == "bitcoin"

    def test_search_error(self, api, crypto):
        crypto.search.side_effect = RuntimeError("boom")
        response = api.get("/api/search", params={"q": "bit", "asset_type": "crypto"})
        assert response.status_code == 500

    def test_cache_stats_and_clear(self, api, crypto):
        api.get("/api/search", params={"q": "bit", "asset_type": "crypto"})

        caches = api.get("/api/cache/stats").json()["caches"]
        assert caches[0]["entries"] == 1
        assert len(caches) == 1

        assert api.post("/api/cache/clear").status_code == 200
        assert api.get("/api/cache/stats").json()["caches"][0]["entries"] == 0
