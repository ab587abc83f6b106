"""
Position & Risk Engine — single-account, single-net-position margin model.
=========================================================================
States: FLAT (size == 0) ⇄ OPEN (size != 0, long or short).

  • open_or_add  — open from FLAT, re-enter on the same side (overwrites the
                   average entry), or close-then-open on the opposite side
  • close_all    — realize PnL, release margin, go FLAT
  • check_forced_exit — liquidation first, then stop-loss / take-profit by ROI

Derived quantities (margin in use, unrealized PnL, equity, liquidation
price) are recomputed from the current state on every call, never cached.
The engine does no locking; callers serialize access (see terminal.py).
"""
import logging
import math
import time
import uuid
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from quantdesk.config import MAX_LEVERAGE, MIN_LEVERAGE, MIN_LOT_SIZE, RiskConfig
from quantdesk.services.errors import InsufficientFundsError, ValidationError
from quantdesk.services.models import (
    Account,
    EquitySample,
    ForcedExitEvent,
    LiquidationEvent,
    Position,
    RiskSnapshot,
    TerminalEvent,
    ThresholdExitEvent,
    TradeRecord,
)

logger = logging.getLogger(__name__)

FLAT_EPSILON = 1e-6
MAX_EQUITY_SAMPLES = 100
DEFAULT_INITIAL_CASH = 10000.0

BUY = "BUY"
SELL = "SELL"

Listener = Callable[[TerminalEvent], None]


def _is_finite_positive(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value) and value > 0)


# ── ROI ↔ price helpers (leveraged ROI, in percent) ────────────────────────

def price_from_roi(roi: float, entry: float, leverage: int, side: str) -> float:
    change_pct = roi / leverage
    if side == "LONG":
        return entry * (1 + change_pct / 100)
    return entry * (1 - change_pct / 100)


def roi_from_price(price: float, entry: float, leverage: int, side: str) -> float:
    if side == "LONG":
        change_pct = (price - entry) / entry * 100
    else:
        change_pct = (entry - price) / entry * 100
    return change_pct * leverage


class RiskEngine:
    """Owns cash, the single net position, the trade log and equity history."""

    def __init__(self, config: Optional[RiskConfig] = None,
                 initial_cash: float = DEFAULT_INITIAL_CASH,
                 clock: Callable[[], float] = time.time,
                 id_factory: Callable[[], str] = None):
        self.config = config or RiskConfig()
        self.initial_cash = initial_cash
        self.account = Account(cash=initial_cash, initial_value=initial_cash)
        self.position = Position()
        self._clock = clock
        self._new_id = id_factory or (lambda: uuid.uuid4().hex[:9])
        self._trades: List[TradeRecord] = []
        self._equity: Deque[EquitySample] = deque(maxlen=MAX_EQUITY_SAMPLES)
        self._listeners: List[Listener] = []

    # ── Subscribers (outbound audit stream) ─────────────────────────────

    def subscribe(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def _emit(self, event_type: str, payload: dict) -> None:
        event = TerminalEvent(event_type, payload)
        for cb in list(self._listeners):
            try:
                cb(event)
            except Exception as e:
                logger.error(f"Risk engine listener error ({event_type}): {e}")

    # ── Read-only views ─────────────────────────────────────────────────

    @property
    def is_flat(self) -> bool:
        return abs(self.position.size) < FLAT_EPSILON

    @property
    def trades(self) -> Tuple[TradeRecord, ...]:
        """Newest first."""
        return tuple(reversed(self._trades))

    @property
    def equity_history(self) -> Tuple[EquitySample, ...]:
        return tuple(self._equity)

    # ── Derived quantities ──────────────────────────────────────────────

    def margin_in_use(self) -> float:
        if self.is_flat:
            return 0.0
        pos = self.position
        return abs(pos.size * pos.avg_entry_price) / pos.leverage

    def unrealized_pnl(self, price: Optional[float]) -> float:
        if self.is_flat:
            return 0.0
        mark = price if _is_finite_positive(price) else self.position.avg_entry_price
        return (mark - self.position.avg_entry_price) * self.position.size

    def equity(self, price: Optional[float]) -> float:
        return self.account.cash + self.margin_in_use() + self.unrealized_pnl(price)

    def liquidation_price(self) -> Optional[float]:
        """Price at which equity falls to exactly the maintenance floor.

        Solves cash + M + (p - entry) * size == M * mm for p. The signed
        size covers both sides; a long that can never be liquidated
        reports 0.
        """
        if self.is_flat:
            return None
        pos = self.position
        margin = self.margin_in_use()
        mm = self.config.maintenance_margin_pct
        liq = pos.avg_entry_price + (margin * (mm - 1) - self.account.cash) / pos.size
        return max(liq, 0.0)

    def snapshot(self, price: Optional[float]) -> RiskSnapshot:
        pos = self.position
        margin = self.margin_in_use()
        pnl = self.unrealized_pnl(price)
        mark = price if _is_finite_positive(price) else pos.avg_entry_price
        return RiskSnapshot(
            price=mark,
            cash=self.account.cash,
            size=pos.size,
            avg_entry_price=pos.avg_entry_price,
            leverage=pos.leverage,
            margin_in_use=margin,
            unrealized_pnl=pnl,
            equity=self.account.cash + margin + pnl,
            maintenance_margin=margin * self.config.maintenance_margin_pct,
            liquidation_price=self.liquidation_price(),
            roi_pct=(pnl / margin * 100) if margin > 0 else 0.0,
        )

    # ── Trade execution ─────────────────────────────────────────────────

    def _validate_order(self, side: str, price: float, amount, leverage) -> None:
        if side not in (BUY, SELL):
            raise ValidationError(f"Unknown order side '{side}'")
        if not _is_finite_positive(price):
            raise ValidationError(f"Invalid price: {price}")
        if (isinstance(amount, bool) or not isinstance(amount, (int, float))
                or not math.isfinite(amount) or amount < MIN_LOT_SIZE):
            raise ValidationError(f"Invalid Lot Size: minimum is {MIN_LOT_SIZE}")
        if (isinstance(leverage, bool) or not isinstance(leverage, int)
                or not MIN_LEVERAGE <= leverage <= MAX_LEVERAGE):
            raise ValidationError(
                f"Invalid leverage {leverage}: must be an integer in {MIN_LEVERAGE}..{MAX_LEVERAGE}"
            )

    def _close_proceeds(self, price: float) -> float:
        """Cash returned if the open position were closed at ``price``."""
        return self.margin_in_use() + self.unrealized_pnl(price)

    def open_or_add(self, side: str, price: float, amount: Optional[float] = None,
                    leverage: Optional[int] = None, reasoning: str = "",
                    symbol: str = "") -> TradeRecord:
        """Open, re-enter, or flip the position.

        Raises ValidationError / InsufficientFundsError before any mutation.
        """
        amount = self.config.lot_size if amount is None else amount
        leverage = self.config.leverage if leverage is None else leverage
        self._validate_order(side, price, amount, leverage)

        direction = 1 if side == BUY else -1
        margin = price * amount / leverage
        flipping = not self.is_flat and direction * self.position.size < 0

        if not self.is_flat and symbol and self.position.symbol and symbol != self.position.symbol:
            raise ValidationError(
                f"Close the open {self.position.symbol} position before trading {symbol}"
            )

        # Funds are checked against the cash that would exist after the flip
        available = self.account.cash + (self._close_proceeds(price) if flipping else 0.0)
        if available < margin:
            raise InsufficientFundsError(f"Insufficient Funds. Need ${margin:.2f}")

        if flipping:
            self.close_all(price)

        symbol = symbol or self.position.symbol
        if self.is_flat:
            kind = "open"
            self.position = Position(symbol=symbol, size=direction * amount,
                                     avg_entry_price=price, leverage=leverage)
        else:
            # Same-side re-entry overwrites the entry price, no volume weighting
            kind = "add"
            self.position.size += direction * amount
            self.position.avg_entry_price = price
            self.position.leverage = leverage
        self.account.cash -= margin

        trade = TradeRecord(
            id=self._new_id(),
            side=side,
            price=price,
            amount=amount,
            leverage=leverage,
            timestamp=self._clock(),
            reasoning=reasoning or ("Manual Long" if side == BUY else "Manual Short"),
            symbol=symbol,
            kind=kind,
        )
        self._record(trade, price)
        logger.info(
            f"{side} {symbol} {amount} @ {price:.2f} × {leverage}x — "
            f"margin ${margin:.2f}, cash ${self.account.cash:.2f} ({kind})"
        )
        return trade

    def close_all(self, price: float, reasoning: str = "",
                  kind: str = "close") -> Optional[TradeRecord]:
        """Close the whole position at ``price``. No-op when FLAT."""
        if self.is_flat:
            return None
        if not _is_finite_positive(price):
            raise ValidationError(f"Invalid price: {price}")

        pos = self.position
        pnl = (price - pos.avg_entry_price) * pos.size
        released = self.margin_in_use()
        cash_return = released + pnl
        self.account.cash += cash_return

        trade = TradeRecord(
            id=self._new_id(),
            side=SELL if pos.size > 0 else BUY,
            price=price,
            amount=abs(pos.size),
            leverage=pos.leverage,
            timestamp=self._clock(),
            reasoning=reasoning or f"Close Position (PnL: {pnl:.2f})",
            symbol=pos.symbol,
            kind=kind,
            pnl=pnl,
        )
        self.position = Position(leverage=pos.leverage)
        self._record(trade, price)
        logger.info(
            f"CLOSE {pos.side} {pos.symbol} @ {price:.2f} — PnL ${pnl:.2f} "
            f"(margin ${released:.2f} → returned ${cash_return:.2f}) | {trade.reasoning}"
        )
        return trade

    def _record(self, trade: TradeRecord, price: float) -> None:
        self._trades.append(trade)
        self._emit("trade", trade.to_dict())
        self.sample_equity(price)

    # ── Forced-exit monitor ─────────────────────────────────────────────

    def check_forced_exit(self, price: float, symbol: str = "") -> Optional[ForcedExitEvent]:
        """Evaluate liquidation, then stop-loss / take-profit, at ``price``."""
        if self.is_flat or not _is_finite_positive(price):
            return None
        if symbol and self.position.symbol and symbol != self.position.symbol:
            return None

        snap = self.snapshot(price)

        if snap.equity < snap.maintenance_margin:
            trade = self.close_all(price, reasoning=f"Liquidated @ {price:.2f}",
                                   kind="liquidation")
            logger.warning(
                f"LIQUIDATED {snap.size:+g} {trade.symbol} @ {price:.2f} — "
                f"equity ${snap.equity:.2f} < maintenance ${snap.maintenance_margin:.2f}"
            )
            event = LiquidationEvent(
                kind="liquidation", price=price, trade=trade, snapshot=snap,
                message=f"Position liquidated at {price:.2f}",
            )
            self._emit("forced_exit", event.to_dict())
            return event

        roi = snap.roi_pct
        if roi <= -self.config.stop_loss_pct:
            kind, label = "stop_loss", "Stop Loss Hit"
        elif roi >= self.config.take_profit_pct:
            kind, label = "take_profit", "Take Profit Hit"
        else:
            return None

        trade = self.close_all(price, reasoning=f"{label} (ROI: {roi:.2f}%)", kind=kind)
        logger.info(f"{label} for {trade.symbol} @ {price:.2f} (ROI {roi:.2f}%)")
        event = ThresholdExitEvent(
            kind=kind, price=price, trade=trade, snapshot=snap,
            message=f"{label} for {trade.symbol}", roi_pct=roi,
        )
        self._emit("forced_exit", event.to_dict())
        return event

    # ── Equity history ──────────────────────────────────────────────────

    def sample_equity(self, price: Optional[float] = None,
                      timestamp: Optional[float] = None) -> EquitySample:
        sample = EquitySample(
            timestamp=self._clock() if timestamp is None else timestamp,
            equity=round(self.equity(price), 2),
        )
        self._equity.append(sample)
        self._emit("equity", sample.to_dict())
        return sample

    # ── Funding & reset ─────────────────────────────────────────────────

    def deposit(self, amount: float) -> float:
        if not _is_finite_positive(amount):
            raise ValidationError(f"Invalid deposit amount: {amount}")
        self.account.cash += amount
        self.account.initial_value += amount
        logger.info(f"DEPOSIT ${amount:.2f} — cash ${self.account.cash:.2f}")
        return self.account.cash

    def withdraw(self, amount: float) -> float:
        if not _is_finite_positive(amount):
            raise ValidationError(f"Invalid withdrawal amount: {amount}")
        if amount > self.account.cash:
            raise InsufficientFundsError("Insufficient cash")
        self.account.cash -= amount
        self.account.initial_value -= amount
        logger.info(f"WITHDRAW ${amount:.2f} — cash ${self.account.cash:.2f}")
        return self.account.cash

    def reset(self) -> None:
        """Full system reset: the only path that clears the trade log."""
        self.account = Account(cash=self.initial_cash, initial_value=self.initial_cash)
        self.position = Position()
        self._trades.clear()
        self._equity.clear()
        logger.warning("System reset complete")
        self._emit("reset", {"cash": self.initial_cash})
