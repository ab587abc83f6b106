import pytest
from fastapi.testclient import TestClient

import main
from quantdesk.services.terminal import TradingTerminal


@pytest.fixture
def client(monkeypatch, stub_market, engine, settings):
    terminal = TradingTerminal(stub_market, engine=engine, settings=settings)
    monkeypatch.setattr(main, "terminal", terminal)
    monkeypatch.setattr(main, "market_service", stub_market)
    # No lifespan: scheduler and audit store stay off
    return TestClient(main.app)


def test_state(client):
    body = client.get("/api/state").json()
    assert body["symbol"] == "BTCUSDT"
    assert body["account"]["cash"] == 10000.0
    assert body["feed_status"] == "synthetic"


def test_series_and_signal(client):
    series = client.get("/api/series", params={"limit": 5}).json()
    assert len(series["points"]) == 5
    assert set(series["points"][-1]) >= {"close", "sma10", "rsi14"}

    signal = client.get("/api/signal").json()
    assert signal["action"] in ("BUY", "SELL", "HOLD")
    assert signal["strategy"] == "RULE_TABLE"


def test_trade_and_close(client):
    resp = client.post("/api/trade", json={"side": "buy", "amount": 1, "leverage": 10, "price": 100})
    assert resp.status_code == 200
    assert resp.json()["state"]["position"]["size"] == 1.0

    resp = client.post("/api/position/close", json={"price": 110})
    assert resp.status_code == 200
    assert resp.json()["trade"]["pnl"] == pytest.approx(10.0)

    trades = client.get("/api/trades").json()
    assert [t["kind"] for t in trades] == ["close", "open"]


def test_close_when_flat(client):
    assert client.post("/api/position/close").json()["trade"] is None


def test_rejected_trades_map_to_400(client):
    resp = client.post("/api/trade", json={"side": "BUY", "amount": 0.001})
    assert resp.status_code == 400
    assert "Lot Size" in resp.json()["detail"]

    resp = client.post("/api/trade", json={"side": "BUY", "amount": 10000, "leverage": 5})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Insufficient Funds")


def test_funding_endpoints(client):
    assert client.post("/api/account/deposit", json={"amount": 500}).json()["cash"] == 10500.0
    assert client.post("/api/account/withdraw", json={"amount": 20000}).status_code == 400
    assert client.post("/api/account/withdraw", json={"amount": 500}).json()["cash"] == 10000.0


def test_settings_validation(client):
    assert client.patch("/api/settings", json={"leverage": 3}).status_code == 422
    resp = client.patch("/api/settings", json={"leverage": 50, "stop_loss_pct": 10})
    assert resp.status_code == 200
    assert resp.json()["leverage"] == 50
    assert client.get("/api/state").json()["config"]["stop_loss_pct"] == 10


def test_mode_switch(client):
    assert client.post("/api/mode", json={"mode": "auto"}).json()["mode"] == "AUTO"
    assert client.post("/api/mode", json={"mode": "turbo"}).status_code == 422


def test_symbol_switch(client):
    body = client.post("/api/symbol", json={"symbol": "ethusdt", "timeframe": "5m"}).json()
    assert body["symbol"] == "ETHUSDT"
    assert body["timeframe"] == "5m"


def test_csv_stats_equity_and_reset(client):
    client.post("/api/trade", json={"side": "SELL", "amount": 1, "leverage": 10, "price": 100})

    csv_resp = client.get("/api/trades.csv")
    assert csv_resp.headers["content-type"].startswith("text/csv")
    assert csv_resp.text.splitlines()[0] == "Date,Symbol,Type,Price,Amount,Leverage,PnL,Reasoning"

    assert client.get("/api/stats").json()["risk_rating"] == "Pending"
    assert len(client.get("/api/equity").json()) == 1

    client.post("/api/reset")
    assert client.get("/api/trades").json() == []


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["mode"] == "MANUAL"


def test_symbol_switch_rejected_while_position_open(client):
    client.post("/api/trade", json={"side": "BUY", "amount": 1, "leverage": 10})
    resp = client.post("/api/symbol", json={"symbol": "ETHUSDT"})
    assert resp.status_code == 400
    assert "BTCUSDT" in resp.json()["detail"]
    assert client.get("/api/state").json()["symbol"] == "BTCUSDT"
