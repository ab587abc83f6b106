"""
Configuration — environment settings and the risk configuration surface.
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()

MAINTENANCE_MARGIN_PCT = 0.05
MIN_LOT_SIZE = 0.01
MIN_LEVERAGE = 5
MAX_LEVERAGE = 100


class RiskConfig(BaseModel):
    """Account-wide risk settings. Assignments are validated too."""
    model_config = ConfigDict(validate_assignment=True)

    leverage: int = Field(20, ge=MIN_LEVERAGE, le=MAX_LEVERAGE)
    stop_loss_pct: int = Field(15, ge=1, le=50)
    take_profit_pct: int = Field(45, ge=5, le=200)
    lot_size: float = Field(MIN_LOT_SIZE, ge=MIN_LOT_SIZE, allow_inf_nan=False)

    @property
    def maintenance_margin_pct(self) -> float:
        return MAINTENANCE_MARGIN_PCT


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


@dataclass
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./quantdesk.db"))
    binance_base_url: str = field(
        default_factory=lambda: os.getenv("BINANCE_BASE_URL", "https://api.binance.com/api/v3"))
    fyers_base_url: str = field(
        default_factory=lambda: os.getenv("FYERS_BASE_URL", "https://api-t1.fyers.in/data"))
    fyers_app_id: str = field(default_factory=lambda: os.getenv("FYERS_APP_ID", ""))
    fyers_access_token: str = field(default_factory=lambda: os.getenv("FYERS_ACCESS_TOKEN", ""))
    upstream_timeout: float = field(default_factory=lambda: _env_float("UPSTREAM_TIMEOUT", 5))
    default_symbol: str = field(default_factory=lambda: os.getenv("DEFAULT_SYMBOL", "BTCUSDT"))
    default_timeframe: str = field(default_factory=lambda: os.getenv("DEFAULT_TIMEFRAME", "5m"))
    initial_cash: float = field(default_factory=lambda: _env_float("INITIAL_CASH", 10000))
    price_poll_seconds: float = field(default_factory=lambda: _env_float("PRICE_POLL_SECONDS", 2))
    autopilot_seconds: float = field(default_factory=lambda: _env_float("AUTOPILOT_SECONDS", 30))
    equity_sample_seconds: float = field(
        default_factory=lambda: _env_float("EQUITY_SAMPLE_SECONDS", 2))

    @property
    def fyers_configured(self) -> bool:
        return bool(self.fyers_app_id and self.fyers_access_token)


def get_settings() -> Settings:
    return Settings()
