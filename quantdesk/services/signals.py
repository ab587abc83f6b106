"""
Signal Generator — fixed rule table over the latest decorated PricePoint.

Precedence:
  1. RSI < 30                     → BUY  0.85
  2. RSI > 70                     → SELL 0.85
  3. SMA10 > SMA20 and close > SMA10 → BUY  0.68
     SMA10 <= SMA20 and close <= SMA10 → SELL 0.68
     otherwise                     → HOLD 0.50

Missing RSI / SMA10 / SMA20 default to 50 / close / close, so a short
warm-up series degrades to a neutral reading instead of failing.
"""
from dataclasses import dataclass
from typing import Optional

from quantdesk.services.models import PricePoint

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"

RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70
EXTREME_CONFIDENCE = 0.85
TREND_CONFIDENCE = 0.68
NEUTRAL_CONFIDENCE = 0.50

RULE_TABLE = "RULE_TABLE"


@dataclass
class Signal:
    """Trade recommendation. The caller decides whether to act on it."""
    action: str             # "BUY" | "SELL" | "HOLD"
    confidence: float       # 0.0 – 1.0
    reasoning: str          # human-readable explanation
    symbol: str = ""
    price: float = 0.0
    strategy: str = RULE_TABLE

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "symbol": self.symbol,
            "price": self.price,
            "strategy": self.strategy,
        }


class SignalGenerator:
    """Pure and side-effect free."""

    def evaluate(self, point: PricePoint, symbol: str = "") -> Signal:
        close = point.close
        rsi = point.rsi14 if point.rsi14 is not None else 50.0
        sma10 = point.sma10 if point.sma10 is not None else close
        sma20 = point.sma20 if point.sma20 is not None else close

        def _sig(action, confidence, reasoning):
            return Signal(action, confidence, reasoning, symbol=symbol, price=close)

        if rsi < RSI_OVERSOLD:
            return _sig(BUY, EXTREME_CONFIDENCE,
                        f"{symbol} RSI {rsi:.1f} below {RSI_OVERSOLD} — oversold exhaustion")
        if rsi > RSI_OVERBOUGHT:
            return _sig(SELL, EXTREME_CONFIDENCE,
                        f"{symbol} RSI {rsi:.1f} above {RSI_OVERBOUGHT} — overbought climax")

        is_uptrend = sma10 > sma20
        price_above = close > sma10
        if is_uptrend and price_above:
            return _sig(BUY, TREND_CONFIDENCE,
                        f"{symbol} SMA10 {sma10:.2f} > SMA20 {sma20:.2f} with price above SMA10 — trend continuation")
        if not is_uptrend and not price_above:
            return _sig(SELL, TREND_CONFIDENCE,
                        f"{symbol} SMA10 {sma10:.2f} <= SMA20 {sma20:.2f} with price below SMA10 — downtrend continuation")
        return _sig(HOLD, NEUTRAL_CONFIDENCE,
                    f"{symbol} price/SMA compression — no directional bias (RSI {rsi:.1f})")


# ── Autopilot intent ────────────────────────────────────────────────────────

@dataclass
class AutopilotPolicy:
    """Turns a recommendation into an intent: "open", "close" or None."""
    open_confidence: float = 0.7
    close_confidence: float = 0.8

    def decide(self, signal: Signal, position_side: str) -> Optional[str]:
        if signal.action == HOLD or signal.confidence <= self.open_confidence:
            return None
        if position_side == "FLAT":
            return "open"
        opposite = ((position_side == "LONG" and signal.action == SELL) or
                    (position_side == "SHORT" and signal.action == BUY))
        if opposite and signal.confidence > self.close_confidence:
            return "close"
        return None
