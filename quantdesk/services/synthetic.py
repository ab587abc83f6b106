"""
Synthetic price feed — geometric random walk used when no upstream is reachable.

Deterministic per (seed, symbol): the same seed always replays the same
walk, so indicators and the risk engine can be exercised offline.
"""
import hashlib
import logging
import random
import time
from typing import Dict, List, Optional

from quantdesk.services.models import PricePoint

logger = logging.getLogger(__name__)

SEED_PRICES: Dict[str, float] = {
    "BTCUSDT": 98200.50,
    "ETHUSDT": 2750.00,
    "SOLUSDT": 185.00,
    "BNBUSDT": 650.00,
    "XRPUSDT": 2.45,
    "DOGEUSDT": 0.35,
    "ADAUSDT": 1.10,
}

TIMEFRAME_SECONDS: Dict[str, int] = {
    "1m": 60, "3m": 180, "5m": 300, "15m": 900, "30m": 1800,
    "1h": 3600, "4h": 14400, "1d": 86400,
}

DEFAULT_VOLATILITY = 0.002


def timeframe_seconds(timeframe: str) -> int:
    return TIMEFRAME_SECONDS.get(timeframe, 60)


def base_price(symbol: str) -> float:
    """Seed price for a symbol; unknown symbols get a stable hash-derived price."""
    if symbol in SEED_PRICES:
        return SEED_PRICES[symbol]
    digest = hashlib.sha256(symbol.encode("utf-8")).digest()
    bucket = int.from_bytes(digest[:4], "big")
    return round(50 + (bucket % 100000) / 100, 2)   # 50.00 .. 1049.99


class SyntheticFeed:
    """Geometric random walk with small fixed volatility."""

    def __init__(self, seed: Optional[int] = None, volatility: float = DEFAULT_VOLATILITY):
        self.seed = seed
        self.volatility = volatility
        self._rngs: Dict[str, random.Random] = {}

    def _rng(self, symbol: str) -> random.Random:
        rng = self._rngs.get(symbol)
        if rng is None:
            rng = random.Random(f"{self.seed}:{symbol}") if self.seed is not None else random.Random()
            self._rngs[symbol] = rng
        return rng

    def _step(self, rng: random.Random, prev_price: float, ts: float,
              max_volume: float) -> PricePoint:
        change = (rng.random() - 0.5) * self.volatility
        price = prev_price * (1 + change)
        return PricePoint(
            timestamp=ts,
            open=prev_price,
            high=max(price, prev_price) * 1.001,
            low=min(price, prev_price) * 0.999,
            close=price,
            volume=rng.random() * max_volume,
        )

    def generate(self, symbol: str, timeframe: str = "1m", limit: int = 200,
                 now: Optional[float] = None) -> List[PricePoint]:
        """Generate ``limit`` bars ending at the bar containing ``now``."""
        step = timeframe_seconds(timeframe)
        now = time.time() if now is None else now
        last_open = now - (now % step)
        rng = self._rng(symbol)

        prev = base_price(symbol)
        points = []
        for i in range(limit - 1, -1, -1):
            point = self._step(rng, prev, last_open - i * step, 10.0)
            points.append(point)
            prev = point.close
        logger.debug(f"Synthetic: generated {len(points)} {timeframe} bars for {symbol}")
        return points

    def next_point(self, symbol: str, last: Optional[PricePoint],
                   now: Optional[float] = None) -> PricePoint:
        """Next tick after ``last``, stamped at ``now``."""
        now = time.time() if now is None else now
        prev = last.close if last else base_price(symbol)
        return self._step(self._rng(symbol), prev, now, 5.0)
