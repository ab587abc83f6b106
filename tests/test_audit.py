from quantdesk.models.database import EquityHistory, SignalLog, TradeLog
from quantdesk.services.audit import SqlAuditSink
from quantdesk.services.models import TerminalEvent
from quantdesk.services.risk_engine import BUY


def _count(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


def test_trades_and_equity_are_persisted(engine, session_factory):
    sink = SqlAuditSink(session_factory)
    engine.subscribe(sink)

    engine.open_or_add(BUY, 100.0, 1.0, 10, symbol="BTCUSDT")
    engine.close_all(110.0)

    assert _count(session_factory, TradeLog) == 2
    assert _count(session_factory, EquityHistory) == 2

    db = session_factory()
    try:
        latest = db.query(TradeLog).order_by(TradeLog.executed_at.desc()).first()
        assert latest.kind == "close"
        assert latest.pnl == 10.0
        assert latest.symbol == "BTCUSDT"
    finally:
        db.close()


def test_signal_events_are_persisted(session_factory):
    sink = SqlAuditSink(session_factory)
    sink(TerminalEvent("signal", {
        "action": "BUY", "confidence": 0.85, "reasoning": "oversold",
        "symbol": "ETHUSDT", "price": 2750.0, "strategy": "RULE_TABLE",
    }))
    assert _count(session_factory, SignalLog) == 1


def test_reset_clears_the_store(engine, session_factory):
    sink = SqlAuditSink(session_factory)
    engine.subscribe(sink)
    engine.open_or_add(BUY, 100.0, 1.0, 10)
    sink(TerminalEvent("signal", {"action": "HOLD", "confidence": 0.5}))

    engine.reset()

    assert _count(session_factory, TradeLog) == 0
    assert _count(session_factory, EquityHistory) == 0
    assert _count(session_factory, SignalLog) == 0


def test_unrelated_events_are_ignored(session_factory):
    sink = SqlAuditSink(session_factory)
    sink(TerminalEvent("series", {"symbol": "BTCUSDT"}))
    assert _count(session_factory, TradeLog) == 0
