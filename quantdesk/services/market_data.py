"""
Market data service — Binance klines / Fyers history+quotes with synthetic fallback.

Raw fetches (``fetch_series`` / ``fetch_latest``) raise UpstreamUnavailable.
``load_series`` / ``latest_quote`` never raise: they fall back to the
synthetic feed and mark the symbol's feed status as ``synthetic``.
"""
import logging
import time
from typing import Dict, List, Optional

import requests

from quantdesk.config import Settings, get_settings
from quantdesk.services.errors import UpstreamUnavailable
from quantdesk.services.models import PricePoint
from quantdesk.services.normalizer import normalize
from quantdesk.services.synthetic import SyntheticFeed, timeframe_seconds

logger = logging.getLogger(__name__)

FEED_LIVE = "live"
FEED_SYNTHETIC = "synthetic"

FYERS_RESOLUTIONS = {
    "1m": "1", "3m": "3", "5m": "5", "15m": "15", "30m": "30",
    "1h": "60", "4h": "240", "1d": "D",
}


def is_fyers_symbol(symbol: str) -> bool:
    """Exchange-qualified instruments (e.g. ``NSE:SBIN-EQ``) route to Fyers."""
    return ":" in symbol


class MarketDataService:
    """Inbound tick feed for the terminal."""

    def __init__(self, settings: Optional[Settings] = None,
                 synthetic: Optional[SyntheticFeed] = None,
                 session: Optional[requests.Session] = None,
                 max_retries: int = 1):
        self.settings = settings or get_settings()
        self.synthetic = synthetic or SyntheticFeed()
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "QuantDesk/1.0",
        })
        self._max_retries = max(1, max_retries)
        self._consecutive_failures = 0
        self._feed_status: Dict[str, str] = {}

    # ── Core API request with short timeout ───────────────────────────────

    def _api_request(self, url: str, params: dict = None,
                     headers: dict = None):
        timeout = self.settings.upstream_timeout

        for attempt in range(self._max_retries):
            try:
                response = self._session.get(url, params=params, headers=headers,
                                             timeout=timeout)
                response.raise_for_status()
                self._consecutive_failures = 0
                return response.json()
            except requests.exceptions.Timeout:
                logger.warning(f"Upstream timeout {url} (attempt {attempt + 1}/{self._max_retries})")
            except requests.exceptions.ConnectionError:
                logger.warning(f"Upstream connection error {url} (attempt {attempt + 1}/{self._max_retries})")
            except requests.exceptions.HTTPError as e:
                logger.warning(f"Upstream HTTP error: {e} (attempt {attempt + 1}/{self._max_retries})")
            except ValueError as e:
                logger.warning(f"Upstream returned invalid JSON from {url}: {e}")
                break

        self._consecutive_failures += 1
        raise UpstreamUnavailable(
            f"{url} failed after {self._max_retries} attempt(s) "
            f"(consecutive failures: {self._consecutive_failures})"
        )

    def _fyers_headers(self) -> dict:
        if not self.settings.fyers_configured:
            raise UpstreamUnavailable("Fyers credentials missing (FYERS_APP_ID / FYERS_ACCESS_TOKEN)")
        return {"Authorization": f"{self.settings.fyers_app_id}:{self.settings.fyers_access_token}"}

    # ── Raw fetches (may raise UpstreamUnavailable) ───────────────────────

    def fetch_series(self, symbol: str, timeframe: str = "1m",
                     limit: int = 200) -> List[PricePoint]:
        if is_fyers_symbol(symbol):
            now = int(time.time())
            data = self._api_request(
                f"{self.settings.fyers_base_url}/history",
                params={
                    "symbol": symbol,
                    "resolution": FYERS_RESOLUTIONS.get(timeframe, "1"),
                    "date_format": "0",
                    "range_from": now - limit * timeframe_seconds(timeframe),
                    "range_to": now,
                    "cont_flag": "1",
                },
                headers=self._fyers_headers(),
            )
            rows = data.get("candles") if isinstance(data, dict) else None
            source = "fyers_candle"
        else:
            rows = self._api_request(
                f"{self.settings.binance_base_url}/klines",
                params={"symbol": symbol, "interval": timeframe, "limit": limit},
            )
            source = "binance_kline"

        if not isinstance(rows, list):
            raise UpstreamUnavailable(f"Unexpected series payload for {symbol}")

        points = [p for p in (normalize(row, source) for row in rows) if p is not None]
        if not points:
            raise UpstreamUnavailable(f"No usable candles for {symbol}")
        return points[-limit:]

    def fetch_latest(self, symbol: str, timeframe: str = "1m") -> Optional[PricePoint]:
        if is_fyers_symbol(symbol):
            data = self._api_request(
                f"{self.settings.fyers_base_url}/quotes",
                params={"symbols": symbol},
                headers=self._fyers_headers(),
            )
            entries = data.get("d") if isinstance(data, dict) else None
            if not entries:
                raise UpstreamUnavailable(f"Empty quote payload for {symbol}")
            return normalize(entries[0], "fyers_quote")

        rows = self._api_request(
            f"{self.settings.binance_base_url}/klines",
            params={"symbol": symbol, "interval": timeframe, "limit": 1},
        )
        if not isinstance(rows, list) or not rows:
            raise UpstreamUnavailable(f"Empty kline payload for {symbol}")
        return normalize(rows[-1], "binance_kline")

    # ── Fallback-aware accessors ──────────────────────────────────────────

    def load_series(self, symbol: str, timeframe: str = "1m",
                    limit: int = 200) -> List[PricePoint]:
        try:
            points = self.fetch_series(symbol, timeframe, limit)
            self._feed_status[symbol] = FEED_LIVE
            return points
        except UpstreamUnavailable as e:
            logger.warning(f"Series for {symbol} unavailable ({e}) — using synthetic feed")
            self._feed_status[symbol] = FEED_SYNTHETIC
            return self.synthetic.generate(symbol, timeframe, limit)

    def latest_quote(self, symbol: str, timeframe: str = "1m",
                     last: Optional[PricePoint] = None) -> PricePoint:
        try:
            point = self.fetch_latest(symbol, timeframe)
        except UpstreamUnavailable as e:
            logger.warning(f"Quote for {symbol} unavailable ({e}) — using synthetic feed")
            point = None
        if point is None:
            self._feed_status[symbol] = FEED_SYNTHETIC
            return self.synthetic.next_point(symbol, last)
        self._feed_status[symbol] = FEED_LIVE
        return point

    # ── Status ────────────────────────────────────────────────────────────

    def feed_status(self, symbol: str) -> str:
        return self._feed_status.get(symbol, FEED_SYNTHETIC)

    def health_check(self) -> Dict:
        return {
            "status": "ok" if self._consecutive_failures == 0 else "degraded",
            "consecutive_failures": self._consecutive_failures,
            "feeds": dict(self._feed_status),
        }
