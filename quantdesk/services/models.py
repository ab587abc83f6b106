"""
Data models for the terminal core.
PricePoint, Position, Account, TradeRecord, EquitySample and the
forced-exit events emitted by the risk engine.
"""
from dataclasses import dataclass, field
from typing import Optional


# ── Market data ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PricePoint:
    """One bar/tick. Indicator fields stay None until enough history exists."""
    timestamp: float        # seconds
    open: float
    high: float
    low: float
    close: float            # authoritative trade price
    volume: float = 0.0
    sma10: Optional[float] = None
    sma20: Optional[float] = None
    ema9: Optional[float] = None
    ema20: Optional[float] = None
    rsi14: Optional[float] = None

    @property
    def price(self) -> float:
        return self.close

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "sma10": self.sma10,
            "sma20": self.sma20,
            "ema9": self.ema9,
            "ema20": self.ema20,
            "rsi14": self.rsi14,
        }


# ── Account state ───────────────────────────────────────────────────────────

@dataclass
class Position:
    """The account's single net exposure. Signed size: + long, - short, 0 flat."""
    symbol: str = ""
    size: float = 0.0
    avg_entry_price: float = 0.0
    leverage: int = 1

    @property
    def side(self) -> str:
        if self.size > 0:
            return "LONG"
        if self.size < 0:
            return "SHORT"
        return "FLAT"


@dataclass
class Account:
    cash: float
    initial_value: float


@dataclass(frozen=True)
class TradeRecord:
    """Immutable audit entry for every executed or forced trade."""
    id: str
    side: str               # "BUY" | "SELL"
    price: float
    amount: float
    leverage: int
    timestamp: float
    reasoning: str
    symbol: str = ""
    kind: str = "open"      # open, add, close, liquidation, stop_loss, take_profit
    pnl: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "side": self.side,
            "price": self.price,
            "amount": self.amount,
            "leverage": self.leverage,
            "timestamp": self.timestamp,
            "reasoning": self.reasoning,
            "symbol": self.symbol,
            "kind": self.kind,
            "pnl": self.pnl,
        }


@dataclass(frozen=True)
class EquitySample:
    timestamp: float
    equity: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "equity": self.equity}


@dataclass(frozen=True)
class RiskSnapshot:
    """Derived quantities at a given mark price. Never cached."""
    price: float
    cash: float
    size: float
    avg_entry_price: float
    leverage: int
    margin_in_use: float
    unrealized_pnl: float
    equity: float
    maintenance_margin: float
    liquidation_price: Optional[float]
    roi_pct: float

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "cash": self.cash,
            "size": self.size,
            "avg_entry_price": self.avg_entry_price,
            "leverage": self.leverage,
            "margin_in_use": self.margin_in_use,
            "unrealized_pnl": self.unrealized_pnl,
            "equity": self.equity,
            "maintenance_margin": self.maintenance_margin,
            "liquidation_price": self.liquidation_price,
            "roi_pct": self.roi_pct,
        }


# ── Forced exits (not errors: successful, forced state transitions) ─────────

@dataclass(frozen=True)
class ForcedExitEvent:
    kind: str               # liquidation, stop_loss, take_profit
    price: float
    trade: TradeRecord
    snapshot: RiskSnapshot  # state just before the exit
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "price": self.price,
            "trade": self.trade.to_dict(),
            "snapshot": self.snapshot.to_dict(),
            "message": self.message,
        }


@dataclass(frozen=True)
class LiquidationEvent(ForcedExitEvent):
    pass


@dataclass(frozen=True)
class ThresholdExitEvent(ForcedExitEvent):
    roi_pct: float = 0.0


# ── Outbound event envelope ─────────────────────────────────────────────────

@dataclass
class TerminalEvent:
    """Published to subscribers: trade, equity, forced_exit, signal, series, reset."""
    type: str
    payload: dict = field(default_factory=dict)
