# tests/conftest.py
"""Shared fixtures: the reference risk limits ($1000 start, $10/trade, $20/day, 20% cap, 20% reserve)."""

import pytest
from decimal import Decimal as D

from arbguard.core.config import build_runtime
from arbguard.core.types import PriceSnapshot, TradeRequest
from arbguard.risk.engine import RiskEngine
from arbguard.risk.portfolio import Portfolio

STABLE_PATH = ("USDC", "USDT", "DAI", "USDC")

RISK = {
    "max_loss_per_trade": "10",
    "max_daily_loss": "20",
    "max_position_size_fraction": "0.2",
    "reserve_fraction": "0.2",
    "max_open_positions": 5,
    "max_stop_loss_fraction": "0.02",
}

RUNTIME = {
    "starting_balance": "1000",
    "fee_per_leg": "0.001",
    "profit_threshold": "0.001",
    "paper_trading": True,
    "paths": [list(STABLE_PATH)],
    "settle_delay_ms": 0,
}


def make_cfg(**overrides):
    runtime = dict(RUNTIME)
    risk = dict(RISK)
    for k, v in overrides.items():
        (risk if k in RISK or k in ("emergency_slippage", "default_volatility") else runtime)[k] = v
    return build_runtime(runtime, risk)


def make_trade(value="100", stop="0.01", volatility=0.1, quantity=None, entry_price="1"):
    return TradeRequest(
        path=STABLE_PATH, value=D(value), quantity=D(quantity or value),
        entry_price=D(entry_price), stop_loss_fraction=D(stop), volatility=volatility,
    )


@pytest.fixture(name="cfg")
def cfg_fixture():
    return make_cfg()


@pytest.fixture(name="engine")
def engine_fixture(cfg):
    return RiskEngine(cfg.risk)


@pytest.fixture(name="portfolio")
def portfolio_fixture(cfg):
    return Portfolio(cfg.starting_balance, cfg.risk.reserve_fraction)


@pytest.fixture(name="profitable")
def profitable_fixture():
    """Scenario A prices."""
    return PriceSnapshot.from_rates({"USDC/USDT": "1.005", "USDT/DAI": "1.003", "DAI/USDC": "1.002"}, ts=1.0)


@pytest.fixture(name="parity")
def parity_fixture():
    """Scenario B prices."""
    return PriceSnapshot.from_rates({"USDC/USDT": "1.0000", "USDT/DAI": "1.0000", "DAI/USDC": "1.0000"}, ts=1.0)
