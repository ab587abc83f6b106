"""
Database models for the external audit store.
Trade log, equity history and published signals.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class TradeLog(Base):
    """Append-only trade log"""
    __tablename__ = "trade_log"

    id = Column(Integer, primary_key=True, index=True)
    trade_id = Column(String, unique=True, index=True)
    symbol = Column(String)
    side = Column(String)            # BUY, SELL
    kind = Column(String)            # open, add, close, liquidation, stop_loss, take_profit
    price = Column(Float)
    amount = Column(Float)
    leverage = Column(Integer, default=1)
    pnl = Column(Float, nullable=True)
    reasoning = Column(String)
    executed_at = Column(Float)      # epoch seconds from the engine clock
    recorded_at = Column(DateTime, default=datetime.utcnow)


class EquityHistory(Base):
    """Equity curve samples"""
    __tablename__ = "equity_history"

    id = Column(Integer, primary_key=True, index=True)
    equity = Column(Float)
    sampled_at = Column(Float)
    recorded_at = Column(DateTime, default=datetime.utcnow)


class SignalLog(Base):
    """Published recommendations"""
    __tablename__ = "signal_log"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String)
    action = Column(String)          # BUY, SELL, HOLD
    confidence = Column(Float)
    reasoning = Column(String)
    strategy = Column(String)
    price = Column(Float)
    recorded_at = Column(DateTime, default=datetime.utcnow)
