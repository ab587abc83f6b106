"""
Trading Terminal — single serialized entry point over series + risk engine.
==========================================================================
Three recurring stimuli drive it:

  price poll (2s)      → fetch quote → merge into series → forced-exit check
  autopilot (30s)      → signal on latest point → act if AUTO and still current
  equity sampler (2s)  → append an equity sample

Every mutation of the account or the series happens under one lock
(single writer). Network fetches run outside the lock; their results are
tagged with the symbol generation they were requested for and discarded
if the active symbol/timeframe changed while they were in flight.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from quantdesk.config import RiskConfig, Settings, get_settings
from quantdesk.services.errors import ValidationError
from quantdesk.services.market_data import MarketDataService
from quantdesk.services.models import ForcedExitEvent, PricePoint, TerminalEvent, TradeRecord
from quantdesk.services.price_series import MAX_POINTS, PriceSeries
from quantdesk.services.risk_engine import BUY, SELL, RiskEngine
from quantdesk.services.signals import AutopilotPolicy, Signal, SignalGenerator

logger = logging.getLogger(__name__)

MODE_MANUAL = "MANUAL"
MODE_AUTO = "AUTO"

Subscriber = Callable[[TerminalEvent], None]


class TradingTerminal:
    """Process-owned account/series state with a subscription interface."""

    def __init__(self, market_service: MarketDataService,
                 engine: Optional[RiskEngine] = None,
                 settings: Optional[Settings] = None,
                 generator: Optional[SignalGenerator] = None,
                 policy: Optional[AutopilotPolicy] = None):
        self.settings = settings or get_settings()
        self.market_service = market_service
        self.engine = engine or RiskEngine(initial_cash=self.settings.initial_cash)
        self.generator = generator or SignalGenerator()
        self.policy = policy or AutopilotPolicy()

        self.symbol = self.settings.default_symbol
        self.timeframe = self.settings.default_timeframe
        self.mode = MODE_MANUAL
        self.series = PriceSeries(self.symbol, self.timeframe)
        self.last_signal: Optional[Signal] = None

        self._lock = threading.RLock()
        self._generation = 0
        self._loaded = False
        self._subscribers: List[Subscriber] = []

        self.engine.subscribe(self._publish)

    # ── Subscribers ─────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def _publish(self, event: TerminalEvent) -> None:
        for cb in list(self._subscribers):
            try:
                cb(event)
            except Exception as e:
                logger.error(f"Terminal subscriber error ({event.type}): {e}")

    @property
    def config(self) -> RiskConfig:
        return self.engine.config

    # ── Symbol / timeframe ──────────────────────────────────────────────

    def switch_symbol(self, symbol: Optional[str] = None,
                      timeframe: Optional[str] = None) -> int:
        """Activate a symbol/timeframe and load its history.

        Bumps the generation so any in-flight fetch for the previous
        symbol is discarded when it lands. Switching away from the symbol
        of an open position is rejected, so marks, closes and forced exits
        always price the position against its own series.
        """
        with self._lock:
            target = symbol or self.symbol
            held = self.engine.position.symbol
            if not self.engine.is_flat and held and target != held:
                raise ValidationError(
                    f"Close the open {held} position before switching to {target}"
                )
            self._generation += 1
            generation = self._generation
            self.symbol = symbol or self.symbol
            self.timeframe = timeframe or self.timeframe
            self.series = PriceSeries(self.symbol, self.timeframe)
            self.last_signal = None
            self._loaded = True
            target_symbol, target_tf = self.symbol, self.timeframe

        points = self.market_service.load_series(target_symbol, target_tf, MAX_POINTS)

        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale history for {target_symbol}")
                return self._generation
            self.series.load(points)
            logger.info(
                f"Switched to {target_symbol} {target_tf}: {len(self.series)} points "
                f"({self.market_service.feed_status(target_symbol)})"
            )
        self._publish(TerminalEvent("series", {"symbol": target_symbol, "timeframe": target_tf}))
        return generation

    def ensure_loaded(self) -> None:
        if not self._loaded:
            self.switch_symbol()

    # ── Price poll ──────────────────────────────────────────────────────

    def poll_price(self) -> Optional[ForcedExitEvent]:
        """Fetch the latest quote and merge it, then run the forced-exit check."""
        self.ensure_loaded()
        with self._lock:
            generation = self._generation
            symbol, timeframe = self.symbol, self.timeframe
            last = self.series.latest

        quote = self.market_service.latest_quote(symbol, timeframe, last)
        return self.on_quote(quote, generation)

    def on_quote(self, quote: PricePoint, generation: Optional[int] = None) -> Optional[ForcedExitEvent]:
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Discarding quote for stale symbol generation {generation}")
                return None
            self.series.merge(quote)
            latest = self.series.latest
            if latest is None:
                return None
            return self.engine.check_forced_exit(latest.close, self.symbol)

    # ── Signals / autopilot ─────────────────────────────────────────────

    def current_signal(self) -> Optional[Signal]:
        self.ensure_loaded()
        with self._lock:
            latest = self.series.latest
            symbol = self.symbol
        if latest is None:
            return None
        return self.generator.evaluate(latest, symbol)

    def run_autopilot(self) -> Optional[Signal]:
        """Generate a signal and, in AUTO mode, act on it if still current."""
        self.ensure_loaded()
        with self._lock:
            generation = self._generation
            latest = self.series.latest
            symbol = self.symbol
        if latest is None:
            return None

        signal = self.generator.evaluate(latest, symbol)

        with self._lock:
            if generation != self._generation or symbol != self.symbol:
                logger.debug(f"Discarding stale recommendation for {symbol}")
                return None
            self.last_signal = signal
            self._publish(TerminalEvent("signal", signal.to_dict()))
            if self.mode != MODE_AUTO:
                return signal

            intent = self.policy.decide(signal, self.engine.position.side)
            price = self.series.latest.close
            if intent == "open":
                self.engine.open_or_add(
                    signal.action, price,
                    reasoning=f"[AUTO] {signal.reasoning}",
                    symbol=symbol,
                )
            elif intent == "close":
                self.engine.close_all(price)
        return signal

    def set_mode(self, mode: str) -> None:
        if mode not in (MODE_MANUAL, MODE_AUTO):
            raise ValueError(f"Unknown trading mode '{mode}'")
        with self._lock:
            self.mode = mode
        logger.info(f"Trading mode: {mode}")

    # ── Manual operations ───────────────────────────────────────────────

    def _mark_price(self) -> Optional[float]:
        latest = self.series.latest
        return latest.close if latest else None

    def execute_trade(self, side: str, price: Optional[float] = None,
                      amount: Optional[float] = None, leverage: Optional[int] = None,
                      reasoning: str = "") -> TradeRecord:
        self.ensure_loaded()
        with self._lock:
            price = price if price is not None else self._mark_price()
            default = "Manual Long" if side == BUY else "Manual Short" if side == SELL else ""
            return self.engine.open_or_add(side, price, amount, leverage,
                                           reasoning=reasoning or default,
                                           symbol=self.symbol)

    def close_position(self, price: Optional[float] = None) -> Optional[TradeRecord]:
        self.ensure_loaded()
        with self._lock:
            price = price if price is not None else self._mark_price()
            return self.engine.close_all(price)

    def sample_equity(self):
        with self._lock:
            return self.engine.sample_equity(self._mark_price())

    def deposit(self, amount: float) -> float:
        with self._lock:
            return self.engine.deposit(amount)

    def withdraw(self, amount: float) -> float:
        with self._lock:
            return self.engine.withdraw(amount)

    def reset(self) -> None:
        with self._lock:
            self.engine.reset()
            self.last_signal = None

    def update_settings(self, **changes) -> RiskConfig:
        """Apply validated config changes atomically; nothing changes on error."""
        with self._lock:
            updated = self.engine.config.model_validate(
                {**self.engine.config.model_dump(), **changes}
            )
            self.engine.config = updated
            return updated

    # ── Snapshot ────────────────────────────────────────────────────────

    def snapshot(self) -> Dict:
        self.ensure_loaded()
        with self._lock:
            price = self._mark_price()
            risk = self.engine.snapshot(price)
            pos = self.engine.position
            return {
                "symbol": self.symbol,
                "timeframe": self.timeframe,
                "mode": self.mode,
                "feed_status": self.market_service.feed_status(self.symbol),
                "price": price,
                "account": {
                    "cash": self.engine.account.cash,
                    "initial_value": self.engine.account.initial_value,
                },
                "position": {
                    "symbol": pos.symbol,
                    "side": pos.side,
                    "size": pos.size,
                    "avg_entry_price": pos.avg_entry_price,
                    "leverage": pos.leverage,
                },
                "risk": risk.to_dict(),
                "config": self.engine.config.model_dump(),
                "last_signal": self.last_signal.to_dict() if self.last_signal else None,
            }
