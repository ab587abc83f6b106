import pydantic
import pytest

from conftest import StubMarketService, make_point, make_points
from quantdesk.services.errors import ValidationError
from quantdesk.services.risk_engine import BUY
from quantdesk.services.signals import SignalGenerator
from quantdesk.services.terminal import MODE_AUTO, MODE_MANUAL, TradingTerminal


@pytest.fixture
def terminal(stub_market, engine, settings):
    return TradingTerminal(stub_market, engine=engine, settings=settings)


def test_snapshot_loads_default_symbol(terminal):
    snap = terminal.snapshot()
    assert snap["symbol"] == "BTCUSDT"
    assert snap["mode"] == MODE_MANUAL
    assert snap["price"] == 100.0
    assert snap["position"]["side"] == "FLAT"
    assert snap["risk"]["equity"] == pytest.approx(10000.0)
    assert snap["config"]["leverage"] == 20


def test_switch_discards_history_that_arrives_after_a_newer_switch(stub_market, terminal):
    stub_market.series["ETHUSDT"] = make_points([2000.0] * 10)
    stub_market.series["BTCUSDT"] = make_points([100.0] * 30)
    # While BTC history is in flight, the user switches to ETH
    stub_market.on_load = lambda symbol: terminal.switch_symbol("ETHUSDT")

    terminal.switch_symbol("BTCUSDT")

    assert terminal.symbol == "ETHUSDT"
    assert len(terminal.series) == 10
    assert terminal.series.latest.close == 2000.0


def test_quote_for_stale_generation_is_discarded(stub_market, terminal):
    first = terminal.switch_symbol("BTCUSDT")
    terminal.switch_symbol("ETHUSDT")
    before = terminal.series.points

    assert terminal.on_quote(make_point(99_999.0, 1.0), first) is None
    assert terminal.series.points == before


def test_poll_price_merges_and_triggers_stop_loss(stub_market, terminal):
    terminal.ensure_loaded()
    terminal.execute_trade(BUY, price=100.0, amount=1.0, leverage=20)
    last_ts = terminal.series.latest.timestamp
    stub_market.quotes.append(make_point(last_ts + 60, 99.0))

    event = terminal.poll_price()

    assert event.kind == "stop_loss"
    assert terminal.engine.is_flat
    assert terminal.series.latest.close == 99.0


def test_execute_trade_uses_mark_price_and_manual_reasoning(terminal):
    trade = terminal.execute_trade(BUY, amount=1.0, leverage=10)
    assert trade.price == 100.0
    assert trade.reasoning == "Manual Long"
    assert trade.symbol == "BTCUSDT"


def test_close_position_when_flat_returns_none(terminal):
    assert terminal.close_position() is None


def _falling_market():
    return StubMarketService(make_points([100.0 - i for i in range(30)]))


def test_autopilot_in_manual_mode_only_publishes(engine, settings):
    terminal = TradingTerminal(_falling_market(), engine=engine, settings=settings)
    events = []
    terminal.subscribe(events.append)

    signal = terminal.run_autopilot()

    assert signal.action == BUY
    assert signal.confidence == 0.85
    assert terminal.engine.is_flat
    assert terminal.last_signal is signal
    assert "signal" in [e.type for e in events]


def test_autopilot_in_auto_mode_opens_with_tag(engine, settings):
    terminal = TradingTerminal(_falling_market(), engine=engine, settings=settings)
    terminal.set_mode(MODE_AUTO)

    terminal.run_autopilot()

    trade = terminal.engine.trades[0]
    assert trade.reasoning.startswith("[AUTO] ")
    assert trade.amount == terminal.config.lot_size
    assert trade.leverage == terminal.config.leverage
    assert terminal.engine.position.side == "LONG"

    # A second BUY recommendation does not pyramid
    terminal.run_autopilot()
    assert len(terminal.engine.trades) == 1


def test_autopilot_closes_on_strong_opposite_signal(engine, settings):
    terminal = TradingTerminal(_falling_market(), engine=engine, settings=settings)
    terminal.ensure_loaded()
    terminal.execute_trade("SELL", amount=1.0, leverage=10)
    terminal.set_mode(MODE_AUTO)

    terminal.run_autopilot()

    assert terminal.engine.is_flat
    assert terminal.engine.trades[0].kind == "close"


def test_set_mode_rejects_unknown(terminal):
    with pytest.raises(ValueError):
        terminal.set_mode("TURBO")
    assert terminal.mode == MODE_MANUAL


def test_update_settings_is_atomic(terminal):
    with pytest.raises(pydantic.ValidationError):
        terminal.update_settings(leverage=50, stop_loss_pct=999)
    assert terminal.config.leverage == 20
    assert terminal.config.stop_loss_pct == 15

    updated = terminal.update_settings(leverage=50, take_profit_pct=60)
    assert updated.leverage == 50
    assert terminal.config.take_profit_pct == 60


@pytest.mark.parametrize("changes", [
    {"leverage": 4},
    {"leverage": 101},
    {"stop_loss_pct": 0},
    {"take_profit_pct": 201},
    {"lot_size": 0.001},
])
def test_update_settings_rejects_out_of_range(terminal, changes):
    with pytest.raises(pydantic.ValidationError):
        terminal.update_settings(**changes)


def test_reset_clears_signal_and_account(terminal):
    terminal.run_autopilot()
    terminal.execute_trade(BUY, amount=1.0, leverage=10)
    terminal.reset()
    assert terminal.last_signal is None
    assert terminal.engine.trades == ()
    assert terminal.engine.account.cash == 10000.0


def test_switch_away_from_open_position_is_rejected(terminal):
    terminal.ensure_loaded()
    terminal.execute_trade(BUY, amount=1.0, leverage=20)

    with pytest.raises(ValidationError):
        terminal.switch_symbol("ETHUSDT")
    assert terminal.symbol == "BTCUSDT"

    trade = terminal.close_position()
    assert trade.price == 100.0
    assert trade.pnl == pytest.approx(0.0)

    terminal.switch_symbol("ETHUSDT")
    assert terminal.symbol == "ETHUSDT"


def test_timeframe_change_keeps_open_position(terminal):
    terminal.ensure_loaded()
    terminal.execute_trade(BUY, amount=1.0, leverage=20)
    terminal.switch_symbol(timeframe="5m")
    assert terminal.timeframe == "5m"
    assert terminal.engine.position.symbol == "BTCUSDT"


class SwitchingGenerator(SignalGenerator):
    """Simulates a symbol switch landing while a recommendation is computed."""

    terminal = None

    def evaluate(self, point, symbol=""):
        signal = super().evaluate(point, symbol)
        self.terminal.switch_symbol("ETHUSDT")
        return signal


def test_recommendation_for_replaced_symbol_is_not_executed(engine, settings):
    generator = SwitchingGenerator()
    terminal = TradingTerminal(_falling_market(), engine=engine, settings=settings,
                               generator=generator)
    generator.terminal = terminal
    terminal.set_mode(MODE_AUTO)

    assert terminal.run_autopilot() is None
    assert terminal.engine.trades == ()
    assert terminal.engine.is_flat
    assert terminal.last_signal is None
    assert terminal.symbol == "ETHUSDT"
