"""
SQL audit sink — persists the terminal's outbound event stream.

Subscribes to TradingTerminal/RiskEngine events; each event gets its own
short-lived session. The engine never reads back from the store.
"""
import logging
from typing import Callable

from sqlalchemy.orm import Session

from quantdesk.models.database import EquityHistory, SignalLog, TradeLog
from quantdesk.services.models import TerminalEvent

logger = logging.getLogger(__name__)


class SqlAuditSink:
    """Writes trade, equity and signal events to the audit tables."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def __call__(self, event: TerminalEvent) -> None:
        handler = {
            "trade": self._on_trade,
            "equity": self._on_equity,
            "signal": self._on_signal,
            "reset": self._on_reset,
        }.get(event.type)
        if handler is None:
            return

        db = self._session_factory()
        try:
            handler(db, event.payload)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ── Handlers ────────────────────────────────────────────────────────

    def _on_trade(self, db: Session, t: dict) -> None:
        db.add(TradeLog(
            trade_id=t["id"],
            symbol=t.get("symbol", ""),
            side=t["side"],
            kind=t.get("kind", "open"),
            price=t["price"],
            amount=t["amount"],
            leverage=t["leverage"],
            pnl=t.get("pnl"),
            reasoning=t.get("reasoning", ""),
            executed_at=t["timestamp"],
        ))

    def _on_equity(self, db: Session, s: dict) -> None:
        db.add(EquityHistory(equity=s["equity"], sampled_at=s["timestamp"]))

    def _on_signal(self, db: Session, s: dict) -> None:
        db.add(SignalLog(
            symbol=s.get("symbol", ""),
            action=s["action"],
            confidence=s["confidence"],
            reasoning=s.get("reasoning", ""),
            strategy=s.get("strategy", ""),
            price=s.get("price", 0.0),
        ))

    def _on_reset(self, db: Session, _payload: dict) -> None:
        deleted = (db.query(TradeLog).delete()
                   + db.query(EquityHistory).delete()
                   + db.query(SignalLog).delete())
        logger.info(f"Audit store cleared ({deleted} rows)")
