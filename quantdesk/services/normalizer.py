"""
Tick Normalizer — upstream quote/candle payloads → PricePoint.

Supported sources:
  • ``binance_kline``  — [openTime ms, open, high, low, close, volume, ...]
  • ``binance_ticker`` — 24h ticker object ({lastPrice, volume, closeTime})
  • ``fyers_candle``   — [epoch s, open, high, low, close, volume]
  • ``fyers_quote``    — quote entry ({n, v: {lp, volume, tt, ...}})

Single-quote sources have no bar shape, so open == high == low == close.
Every function returns None when the payload has no usable price.
"""
import logging
import math
import time
from typing import Any, Callable, Dict, Optional

from quantdesk.services.models import PricePoint

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _price(value: Any) -> Optional[float]:
    f = _to_float(value)
    return f if f is not None and f > 0 else None


def _volume(value: Any) -> float:
    f = _to_float(value)
    return f if f is not None and f >= 0 else 0.0


def _build_bar(ts: Optional[float], o, h, l, c, v) -> Optional[PricePoint]:
    close = _price(c)
    if close is None or ts is None:
        return None
    # Missing bar fields degrade to the close
    open_ = _price(o) or close
    high = _price(h) or max(open_, close)
    low = _price(l) or min(open_, close)
    return PricePoint(
        timestamp=ts,
        open=open_,
        high=max(high, open_, close),
        low=min(low, open_, close),
        close=close,
        volume=_volume(v),
    )


def _quote_point(ts: float, price: Optional[float], volume: Any) -> Optional[PricePoint]:
    if price is None:
        return None
    return PricePoint(timestamp=ts, open=price, high=price, low=price,
                      close=price, volume=_volume(volume))


# ── Per-source normalizers ──────────────────────────────────────────────────

def from_binance_kline(row: Any, now: Optional[float] = None) -> Optional[PricePoint]:
    if not isinstance(row, (list, tuple)) or len(row) < 5:
        return None
    open_time = _to_float(row[0])
    ts = open_time / 1000 if open_time is not None else None
    volume = row[5] if len(row) > 5 else 0
    return _build_bar(ts, row[1], row[2], row[3], row[4], volume)


def from_binance_ticker(obj: Any, now: Optional[float] = None) -> Optional[PricePoint]:
    if not isinstance(obj, dict):
        return None
    price = _price(obj.get("lastPrice", obj.get("price")))
    close_time = _to_float(obj.get("closeTime"))
    ts = close_time / 1000 if close_time is not None else (now if now is not None else time.time())
    return _quote_point(ts, price, obj.get("volume"))


def from_fyers_candle(row: Any, now: Optional[float] = None) -> Optional[PricePoint]:
    if not isinstance(row, (list, tuple)) or len(row) < 5:
        return None
    volume = row[5] if len(row) > 5 else 0
    return _build_bar(_to_float(row[0]), row[1], row[2], row[3], row[4], volume)


def from_fyers_quote(obj: Any, now: Optional[float] = None) -> Optional[PricePoint]:
    if not isinstance(obj, dict):
        return None
    values = obj.get("v", obj)
    if not isinstance(values, dict):
        return None
    price = _price(values.get("lp"))
    ts = _to_float(values.get("tt"))
    if ts is None:
        ts = now if now is not None else time.time()
    return _quote_point(ts, price, values.get("volume"))


NORMALIZERS: Dict[str, Callable[..., Optional[PricePoint]]] = {
    "binance_kline": from_binance_kline,
    "binance_ticker": from_binance_ticker,
    "fyers_candle": from_fyers_candle,
    "fyers_quote": from_fyers_quote,
}


def normalize(raw: Any, source: str, now: Optional[float] = None) -> Optional[PricePoint]:
    """Convert one raw upstream record into a canonical PricePoint."""
    fn = NORMALIZERS.get(source)
    if fn is None:
        raise ValueError(f"Unknown tick source '{source}'")
    point = fn(raw, now=now)
    if point is None:
        logger.debug(f"Normalizer: no usable price in {source} payload")
    return point
