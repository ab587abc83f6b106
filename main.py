"""
Main FastAPI application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from typing import Optional
from datetime import datetime
import pydantic
import logging
import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from quantdesk.config import get_settings
from quantdesk.database import make_session_factory
from quantdesk.services.audit import SqlAuditSink
from quantdesk.services.errors import TradeRejected
from quantdesk.services.market_data import MarketDataService
from quantdesk.services.models import TerminalEvent
from quantdesk.services.performance import summarize, trades_to_csv
from quantdesk.services.terminal import TradingTerminal
from pydantic import BaseModel

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Initialize services
settings = get_settings()
market_service = MarketDataService(settings)
terminal = TradingTerminal(market_service, settings=settings)
audit_sink: Optional[SqlAuditSink] = None

# Scheduler for background tasks
scheduler = AsyncIOScheduler()

# Event loop that owns the WebSocket connections (set at startup)
_loop: Optional[asyncio.AbstractEventLoop] = None


# WebSocket connections manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast(self, message: dict):
        """Send message to all live connections, pruning dead ones."""
        dead = []
        for ws in list(self.active_connections):
            try:
                if ws.client_state.name != "CONNECTED":
                    dead.append(ws)
                    continue
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.active_connections.discard(ws)

manager = ConnectionManager()


def _forward_event(event: TerminalEvent):
    """Terminal subscriber: hand events to the event loop for broadcast.

    Terminal events fire on worker threads, so the coroutine is scheduled
    thread-safely and never awaited here.
    """
    if _loop is None or not manager.active_connections:
        return
    message = {
        "type": event.type,
        "data": event.payload,
        "timestamp": datetime.utcnow().isoformat(),
    }
    asyncio.run_coroutine_threadsafe(manager.broadcast(message), _loop)


# Pydantic models for API
class TradeRequest(BaseModel):
    side: str
    amount: Optional[float] = None
    leverage: Optional[int] = None
    price: Optional[float] = None
    reasoning: str = ""


class ClosePositionRequest(BaseModel):
    price: Optional[float] = None


class FundsRequest(BaseModel):
    amount: float


class SettingsUpdate(BaseModel):
    leverage: Optional[int] = None
    stop_loss_pct: Optional[int] = None
    take_profit_pct: Optional[int] = None
    lot_size: Optional[float] = None


class SymbolRequest(BaseModel):
    symbol: str
    timeframe: Optional[str] = None


class ModeRequest(BaseModel):
    mode: str


# ── Lifespan (replaces deprecated @app.on_event) ───────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup → yield → shutdown."""
    global audit_sink, _loop

    # ── Startup ─────────────────────────────────────────────────────
    logger.info("Starting QuantDesk terminal...")
    _loop = asyncio.get_running_loop()

    audit_sink = SqlAuditSink(make_session_factory(settings.database_url))
    terminal.subscribe(audit_sink)
    terminal.subscribe(_forward_event)

    await asyncio.to_thread(terminal.switch_symbol)

    scheduler.add_job(run_price_poll, 'interval', seconds=settings.price_poll_seconds,
                      id='price_poll', max_instances=1, coalesce=True)
    scheduler.add_job(run_autopilot, 'interval', seconds=settings.autopilot_seconds,
                      id='autopilot', max_instances=1, coalesce=True)
    scheduler.add_job(run_equity_sampler, 'interval', seconds=settings.equity_sample_seconds,
                      id='equity_sampler', max_instances=1, coalesce=True)
    scheduler.start()

    logger.info(
        f"Application started — Price poll: {settings.price_poll_seconds}s | "
        f"Autopilot: {settings.autopilot_seconds}s | "
        f"Equity sampler: {settings.equity_sample_seconds}s"
    )

    yield

    # ── Shutdown ────────────────────────────────────────────────────
    logger.info("Shutting down...")
    scheduler.shutdown()
    _loop = None


# Initialize FastAPI app with lifespan
app = FastAPI(title="QuantDesk - Leveraged Trading Terminal", version="1.0.0", lifespan=lifespan)


def _rejected(e: TradeRejected):
    logger.info(f"Rejected: {e.reason}")
    return HTTPException(status_code=400, detail=e.reason)


# API Endpoints

@app.get("/api/state")
def get_state():
    """Account, position, risk metrics, config and feed status"""
    return terminal.snapshot()


@app.get("/api/series")
def get_series(limit: int = 200):
    terminal.ensure_loaded()
    points = terminal.series.points[-limit:] if limit > 0 else ()
    return {
        "symbol": terminal.symbol,
        "timeframe": terminal.timeframe,
        "feed_status": market_service.feed_status(terminal.symbol),
        "points": [p.to_dict() for p in points],
    }


@app.get("/api/signal")
def get_signal():
    signal = terminal.current_signal()
    if signal is None:
        raise HTTPException(status_code=404, detail="No price data yet")
    return signal.to_dict()


@app.post("/api/trade")
def execute_trade(req: TradeRequest):
    try:
        trade = terminal.execute_trade(req.side.upper(), price=req.price, amount=req.amount,
                                       leverage=req.leverage, reasoning=req.reasoning)
    except TradeRejected as e:
        raise _rejected(e)
    return {"trade": trade.to_dict(), "state": terminal.snapshot()}


@app.post("/api/position/close")
def close_position(req: Optional[ClosePositionRequest] = None):
    try:
        trade = terminal.close_position(req.price if req else None)
    except TradeRejected as e:
        raise _rejected(e)
    if trade is None:
        return {"message": "No open position", "trade": None}
    return {"message": trade.reasoning, "trade": trade.to_dict()}


@app.post("/api/account/deposit")
def deposit(req: FundsRequest):
    try:
        cash = terminal.deposit(req.amount)
    except TradeRejected as e:
        raise _rejected(e)
    return {"cash": cash}


@app.post("/api/account/withdraw")
def withdraw(req: FundsRequest):
    try:
        cash = terminal.withdraw(req.amount)
    except TradeRejected as e:
        raise _rejected(e)
    return {"cash": cash}


@app.post("/api/reset")
def reset():
    terminal.reset()
    return {"message": "System reset complete", "state": terminal.snapshot()}


@app.patch("/api/settings")
def update_settings(update: SettingsUpdate):
    changes = update.model_dump(exclude_none=True)
    try:
        config = terminal.update_settings(**changes)
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()])
    logger.info(f"Risk settings updated: {changes}")
    return config.model_dump()


@app.post("/api/mode")
def set_mode(req: ModeRequest):
    try:
        terminal.set_mode(req.mode.upper())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"mode": terminal.mode}


@app.post("/api/symbol")
def switch_symbol(req: SymbolRequest):
    try:
        terminal.switch_symbol(req.symbol.upper(), req.timeframe)
    except TradeRejected as e:
        raise _rejected(e)
    return terminal.snapshot()


@app.get("/api/trades")
def get_trades(limit: int = 50):
    return [t.to_dict() for t in terminal.engine.trades[:limit]]


@app.get("/api/trades.csv")
def export_trades():
    return PlainTextResponse(
        trades_to_csv(terminal.engine.trades),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=trades.csv"},
    )


@app.get("/api/equity")
def get_equity():
    return [s.to_dict() for s in terminal.engine.equity_history]


@app.get("/api/stats")
def get_stats():
    engine = terminal.engine
    return summarize(engine.trades, engine.equity_history)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket for real-time terminal events"""
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except (WebSocketDisconnect, Exception):
        pass
    finally:
        manager.disconnect(websocket)


# Background tasks

async def run_price_poll():
    """Fetch the latest quote, merge it and run the forced-exit check."""
    def _sync_poll():
        try:
            return terminal.poll_price()
        except Exception as e:
            logger.error(f"Price poll error: {e}")
            return None

    event = await asyncio.to_thread(_sync_poll)
    if event is not None:
        logger.info(f"Forced exit: {event.message}")


async def run_autopilot():
    """Signal on the latest point; acts only in AUTO mode."""
    def _sync_autopilot():
        try:
            return terminal.run_autopilot()
        except TradeRejected as e:
            logger.warning(f"Autopilot order rejected: {e.reason}")
        except Exception as e:
            logger.error(f"Autopilot error: {e}")
        return None

    await asyncio.to_thread(_sync_autopilot)


async def run_equity_sampler():
    def _sync_sample():
        try:
            terminal.sample_equity()
        except Exception as e:
            logger.error(f"Equity sampler error: {e}")

    await asyncio.to_thread(_sync_sample)


@app.get("/api/health")
def health_check():
    """Check API and service health"""
    return {
        "status": "ok",
        "symbol": terminal.symbol,
        "mode": terminal.mode,
        "market_service": market_service.health_check(),
        "websocket_clients": len(manager.active_connections),
        "timestamp": datetime.utcnow().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
