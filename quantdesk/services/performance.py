"""
Performance reporting over the trade log and equity history.
"""
import csv
import io
from datetime import datetime, timezone
from typing import Dict, Sequence

from quantdesk.services.models import EquitySample, TradeRecord

CSV_HEADERS = ["Date", "Symbol", "Type", "Price", "Amount", "Leverage", "PnL", "Reasoning"]


def trade_stats(trades: Sequence[TradeRecord]) -> Dict:
    """Win rate over exits (records carrying a realized PnL)."""
    if not trades:
        return {"win_rate": 0.0, "total": 0, "exits": 0}
    exits = [t for t in trades if t.pnl is not None]
    if not exits:
        return {"win_rate": 0.0, "total": len(trades), "exits": 0}
    wins = [t for t in exits if t.pnl > 0]
    return {
        "win_rate": len(wins) / len(exits) * 100,
        "total": len(trades),
        "exits": len(exits),
        "realized_pnl": sum(t.pnl for t in exits),
    }


def max_drawdown(samples: Sequence[EquitySample]) -> float:
    """Largest peak-to-trough equity drop, in percent."""
    if len(samples) < 2:
        return 0.0
    peak = float("-inf")
    max_dd = 0.0
    for s in samples:
        if s.equity > peak:
            peak = s.equity
        if peak > 0:
            max_dd = max(max_dd, (peak - s.equity) / peak)
    return max_dd * 100


def risk_rating(win_rate: float, total: int, drawdown: float) -> str:
    if total < 3:
        return "Pending"
    if win_rate > 70 and drawdown < 10:
        return "Tier 1"
    if win_rate > 50 and drawdown < 20:
        return "Tier 2"
    return "Tier 3"


def summarize(trades: Sequence[TradeRecord], samples: Sequence[EquitySample]) -> Dict:
    stats = trade_stats(trades)
    dd = max_drawdown(samples)
    stats["max_drawdown"] = dd
    stats["risk_rating"] = risk_rating(stats["win_rate"], stats["total"], dd)
    return stats


def trades_to_csv(trades: Sequence[TradeRecord]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for t in trades:
        writer.writerow([
            datetime.fromtimestamp(t.timestamp, tz=timezone.utc).isoformat(),
            t.symbol,
            t.side,
            t.price,
            t.amount,
            t.leverage,
            t.pnl or 0,
            t.reasoning,
        ])
    return buf.getvalue()
