import sys
from pathlib import Path
from typing import List, Optional

import pytest
import requests

# Make the repo root importable so tests can import top-level packages directly
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from quantdesk.config import RiskConfig, Settings  # noqa: E402
from quantdesk.database import make_session_factory  # noqa: E402
from quantdesk.services.models import PricePoint  # noqa: E402
from quantdesk.services.risk_engine import RiskEngine  # noqa: E402


def make_point(ts: float, close: float, **indicators) -> PricePoint:
    return PricePoint(timestamp=ts, open=close, high=close, low=close, close=close, **indicators)


def make_points(closes, start: float = 0.0, step: float = 60.0) -> List[PricePoint]:
    return [make_point(start + i * step, c) for i, c in enumerate(closes)]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for requests.Session; records every call."""

    def __init__(self, responses=None):
        self.headers = {}
        self.calls = []
        self._responses = list(responses or [])

    def queue(self, response):
        self._responses.append(response)

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if not self._responses:
            raise requests.exceptions.ConnectionError("no route to host")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class StubMarketService:
    """Offline market service for terminal and API tests."""

    def __init__(self, series: Optional[List[PricePoint]] = None):
        self.series = {}
        self.default_series = series if series is not None else make_points([100.0] * 30)
        self.quotes: List[PricePoint] = []
        self.on_load = None

    def load_series(self, symbol, timeframe="1m", limit=200):
        if self.on_load is not None:
            hook, self.on_load = self.on_load, None
            hook(symbol)
        return list(self.series.get(symbol, self.default_series))

    def latest_quote(self, symbol, timeframe="1m", last=None):
        return self.quotes.pop(0)

    def feed_status(self, symbol):
        return "synthetic"

    def health_check(self):
        return {"status": "ok", "consecutive_failures": 0, "feeds": {}}


@pytest.fixture
def risk_config():
    return RiskConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(risk_config, clock):
    counter = iter(range(1, 10_000))
    return RiskEngine(config=risk_config, initial_cash=10000.0, clock=clock,
                      id_factory=lambda: f"t{next(counter)}")


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        default_symbol="BTCUSDT",
        default_timeframe="1m",
        initial_cash=10000.0,
        fyers_app_id="",
        fyers_access_token="",
    )


@pytest.fixture
def stub_market():
    return StubMarketService()


@pytest.fixture
def session_factory():
    return make_session_factory("sqlite://")
