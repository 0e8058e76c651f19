# tests/test_decision_cycle.py
from __future__ import annotations

from decimal import Decimal as D

import pytest

from arbguard.core.errors import EmergencyStopFailed, FatalError
from arbguard.core.types import CycleState, FillConfirmation, PositionStatus, PriceSnapshot
from arbguard.cycle.decision import DecisionCycle
from arbguard.risk.engine import DAILY_LIMIT

from conftest import make_cfg

S = CycleState


def fill(pid, price, success=True, error=None):
    return FillConfirmation(order_intent_id=pid, executed_price=D(price), timestamp=2.0,
                            success=success, error=error)


@pytest.fixture(name="cycle")
def cycle_fixture(cfg):
    return DecisionCycle(cfg)


def test_scenario_a_executes(cycle, profitable):
    out = cycle.run(profitable)

    assert out.action == "EXECUTE"
    assert out.transitions == [S.IDLE, S.DETECTING, S.SIZING, S.VALIDATING, S.EXECUTING, S.SETTLING]
    assert out.sizing.size == 160
    assert out.validation.valid is True
    assert out.position.value == 160
    assert out.intent.id == out.position.id
    assert len(out.intent.legs) == 3
    assert out.intent.legs[0].quantity == 160
    assert cycle.state == S.SETTLING
    assert cycle.portfolio.balance == 840
    assert out.position.id in cycle.pending


def test_scenario_b_monitors(cycle, parity):
    out = cycle.run(parity)

    assert out.action == "MONITOR"
    assert out.reason.startswith("no actionable opportunity")
    assert out.transitions == [S.IDLE, S.DETECTING, S.IDLE]
    assert out.opportunity.net_profit_ratio == D("-0.003")
    assert cycle.portfolio.balance == 1000


def test_settle_returns_to_idle(cycle, profitable):
    out = cycle.run(profitable)
    res = cycle.settle(fill(out.position.id, "1.007"))

    # (1.007 - 1) * 160
    assert res.profit == D("1.12")
    assert cycle.state == S.IDLE
    assert cycle.pending == {}
    assert cycle.portfolio.balance == D("1001.12")


def test_scenario_c_via_cycle(cycle, profitable):
    out = cycle.run(profitable)
    # 160 * (1 - 0.88125) = 19
    cycle.settle(fill(out.position.id, "0.88125"))
    assert cycle.portfolio.daily_loss == 19

    out = cycle.run(profitable)
    assert out.action == "MONITOR"
    assert out.reason == DAILY_LIMIT
    assert out.transitions == [S.IDLE, S.DETECTING, S.SIZING, S.IDLE]


def test_validation_failure_reports_errors(profitable):
    cyc = DecisionCycle(make_cfg(max_open_positions=1))
    cyc.run(profitable)

    out = cyc.run(profitable)
    assert out.action == "MONITOR"
    assert out.reason == "too many open positions"
    assert out.validation.valid is False
    assert out.transitions[-2:] == [S.VALIDATING, S.IDLE]


def test_failed_fill_releases_capital_at_entry(cycle, profitable):
    out = cycle.run(profitable)
    res = cycle.settle(fill(out.position.id, "0.5", success=False, error="rejected"))

    assert res.profit == 0
    assert cycle.portfolio.balance == 1000
    assert cycle.portfolio.daily_loss == 0


def test_missing_pair_in_strict_mode_monitors():
    cyc = DecisionCycle(make_cfg(strict_pairs=True))
    snap = PriceSnapshot.from_rates({"USDC/USDT": "1.01", "USDT/DAI": "1.01"}, ts=1.0)

    out = cyc.run(snap)
    assert out.action == "MONITOR"
    assert out.reason.startswith("detection failed")
    assert "DAI/USDC" in out.reason


def test_auto_emergency_stop_on_daily_breach(cycle, profitable):
    first = cycle.run(profitable)
    second = cycle.run(profitable)
    assert second.action == "EXECUTE"

    # 160 * 0.125 = 20 hits the daily limit while the second position is open
    cycle.settle(fill(first.position.id, "0.875"))

    assert cycle.portfolio.open_positions == ()
    assert cycle.halted == "daily loss limit breached"
    assert cycle.portfolio.trade_history[-1].status == PositionStatus.EMERGENCY_CLOSED
    assert cycle.pending == {}

    # the second position was liquidated; its fill arrives late and is ignored
    assert cycle.settle(fill(second.position.id, "1.01")) is None

    out = cycle.run(profitable)
    assert out.action == "MONITOR"
    assert out.reason == "engine halted: daily loss limit breached"


def test_auto_emergency_stop_can_be_disabled(profitable):
    cyc = DecisionCycle(make_cfg(auto_emergency_stop=False))
    first = cyc.run(profitable)
    cyc.run(profitable)
    cyc.settle(fill(first.position.id, "0.875"))

    assert cyc.halted is None
    assert len(cyc.portfolio.open_positions) == 1


def test_operator_halt_and_resume(cycle, profitable):
    cycle.run(profitable)
    res = cycle.emergency_stop()

    assert res.closed_positions == 1
    assert cycle.halted == "operator request"
    assert cycle.run(profitable).action == "MONITOR"

    cycle.resume()
    assert cycle.halted is None
    assert cycle.run(profitable).action == "EXECUTE"


def test_fatal_emergency_blocks_resume(cycle, profitable, monkeypatch):
    cycle.run(profitable)

    def fail(_portfolio):
        raise EmergencyStopFailed("venue unreachable")

    monkeypatch.setattr(cycle.risk, "emergency_stop", fail)
    with pytest.raises(EmergencyStopFailed):
        cycle.emergency_stop()

    assert cycle.fatal is not None
    assert cycle.halted.startswith("FATAL")
    with pytest.raises(FatalError):
        cycle.resume()


def test_volatility_window(cycle, profitable):
    path = ("USDC", "USDT", "DAI", "USDC")
    assert cycle.volatility(path) == pytest.approx(0.1)

    cycle.run(profitable)
    cycle.run(profitable)
    assert cycle.volatility(path) == pytest.approx(0.0)


def test_reset_daily_limits_reopens_trading(cycle, profitable):
    out = cycle.run(profitable)
    cycle.settle(fill(out.position.id, "0.88125"))
    assert cycle.run(profitable).reason == DAILY_LIMIT

    cycle.reset_daily_limits()
    assert cycle.run(profitable).action == "EXECUTE"
    assert cycle.portfolio_risk().daily_loss == 0
