"""
Technical Indicator Library.
Stateless computations used by the price series and the signal generator.
"""
from dataclasses import replace
from typing import List, Optional, Sequence

from quantdesk.services.models import PricePoint

SMA_FAST = 10
SMA_SLOW = 20
EMA_FAST = 9
EMA_SLOW = 20
RSI_PERIOD = 14


class Indicators:
    """Stateless library of technical indicator computations."""

    # ── Series helpers ──────────────────────────────────────────────────

    @staticmethod
    def ema_series(prices: Sequence[float], period: int) -> List[float]:
        """Full EMA recurrence, aligned with ``prices``. Seeded at the first close."""
        if not prices:
            return []
        k = 2.0 / (period + 1)
        emas = [prices[0]]
        for price in prices[1:]:
            emas.append(price * k + emas[-1] * (1 - k))
        return emas

    @staticmethod
    def sma_series(prices: Sequence[float], period: int) -> List[Optional[float]]:
        """SMA aligned with ``prices``; None until ``period`` closes exist.

        Each value is the mean of the literal trailing window, not a running
        accumulator, so replacing the last close keeps it exact.
        """
        return [
            sum(prices[i - period + 1:i + 1]) / period if i >= period - 1 else None
            for i in range(len(prices))
        ]

    @staticmethod
    def rsi_series(prices: Sequence[float], period: int = RSI_PERIOD) -> List[Optional[float]]:
        """Simple-window RSI aligned with ``prices``; None until period + 1 closes exist."""
        return [
            Indicators._rsi_at(prices, i, period) if i >= period else None
            for i in range(len(prices))
        ]

    @staticmethod
    def _rsi_at(prices: Sequence[float], index: int, period: int) -> float:
        gains = 0.0
        losses = 0.0
        for i in range(index - period, index):
            diff = prices[i + 1] - prices[i]
            if diff >= 0:
                gains += diff
            else:
                losses -= diff
        avg_gain = gains / period
        # Zero losses divide by 1, not by 0
        avg_loss = (losses / period) or 1
        rs = avg_gain / avg_loss
        return 100 - 100 / (1 + rs)

    # ── Point-value indicators ──────────────────────────────────────────

    @staticmethod
    def sma(prices: Sequence[float], period: int) -> Optional[float]:
        if len(prices) < period:
            return None
        return sum(prices[-period:]) / period

    @staticmethod
    def ema(prices: Sequence[float], period: int) -> Optional[float]:
        # Surfaced only once there are more than ``period`` closes
        if len(prices) <= period:
            return None
        return Indicators.ema_series(prices, period)[-1]

    @staticmethod
    def rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> Optional[float]:
        if len(prices) < period + 1:
            return None
        return Indicators._rsi_at(prices, len(prices) - 1, period)

    # ── Composite decoration ────────────────────────────────────────────

    @staticmethod
    def decorate(points: Sequence[PricePoint]) -> List[PricePoint]:
        """Recompute every indicator field over the full window.

        Returns new PricePoint objects; inputs are never mutated.
        """
        closes = [p.close for p in points]
        sma_fast = Indicators.sma_series(closes, SMA_FAST)
        sma_slow = Indicators.sma_series(closes, SMA_SLOW)
        ema_fast = Indicators.ema_series(closes, EMA_FAST)
        ema_slow = Indicators.ema_series(closes, EMA_SLOW)
        rsi = Indicators.rsi_series(closes, RSI_PERIOD)

        decorated = []
        for i, point in enumerate(points):
            decorated.append(replace(
                point,
                sma10=sma_fast[i],
                sma20=sma_slow[i],
                ema9=ema_fast[i] if i >= EMA_FAST else None,
                ema20=ema_slow[i] if i >= EMA_SLOW else None,
                rsi14=rsi[i],
            ))
        return decorated
