"""
Services Package — re-exports the terminal core.

    from quantdesk.services import TradingTerminal, RiskEngine, PriceSeries, ...
"""
from quantdesk.services.errors import (
    TradeRejected,
    ValidationError,
    InsufficientFundsError,
    UpstreamUnavailable,
)
from quantdesk.services.models import (
    PricePoint,
    Position,
    Account,
    TradeRecord,
    EquitySample,
    RiskSnapshot,
    ForcedExitEvent,
    LiquidationEvent,
    ThresholdExitEvent,
    TerminalEvent,
)
from quantdesk.services.indicators import Indicators
from quantdesk.services.normalizer import normalize
from quantdesk.services.price_series import PriceSeries
from quantdesk.services.synthetic import SyntheticFeed
from quantdesk.services.market_data import MarketDataService
from quantdesk.services.signals import Signal, SignalGenerator, AutopilotPolicy
from quantdesk.services.risk_engine import RiskEngine
from quantdesk.services.terminal import TradingTerminal

__all__ = [
    "TradeRejected",
    "ValidationError",
    "InsufficientFundsError",
    "UpstreamUnavailable",
    "PricePoint",
    "Position",
    "Account",
    "TradeRecord",
    "EquitySample",
    "RiskSnapshot",
    "ForcedExitEvent",
    "LiquidationEvent",
    "ThresholdExitEvent",
    "TerminalEvent",
    "Indicators",
    "normalize",
    "PriceSeries",
    "SyntheticFeed",
    "MarketDataService",
    "Signal",
    "SignalGenerator",
    "AutopilotPolicy",
    "RiskEngine",
    "TradingTerminal",
]
