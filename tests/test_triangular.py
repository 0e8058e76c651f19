# tests/test_triangular.py
from __future__ import annotations

from decimal import Decimal as D

import pytest

from arbguard.arb.triangular import TriDetector, check_path, confidence_for, detect, rank
from arbguard.core.errors import InvalidPathError, MissingPairError
from arbguard.core.types import PriceSnapshot

from conftest import STABLE_PATH, make_cfg

FEE = D("0.001")
THRESHOLD = D("0.001")


def snap(**rates):
    return PriceSnapshot.from_rates({k.replace("_", "/"): v for k, v in rates.items()}, ts=1.0)


def test_scenario_a_is_actionable(profitable):
    opp = detect(profitable, STABLE_PATH, FEE, THRESHOLD)

    # 1.005 * 1.003 * 1.002 = 1.01003103
    assert opp.gross_rate == D("1.010031030")
    assert opp.net_profit_ratio == D("0.007031030")
    assert float(opp.net_profit_ratio) == pytest.approx(0.00701, abs=5e-5)
    assert opp.is_actionable is True
    assert opp.leg_count == 3
    assert [leg.pair for leg in opp.legs] == ["USDC/USDT", "USDT/DAI", "DAI/USDC"]


def test_scenario_b_parity_costs_only_fees(parity):
    opp = detect(parity, STABLE_PATH, FEE, THRESHOLD)

    assert opp.gross_rate == 1
    assert opp.net_profit_ratio == D("-0.003")
    assert opp.is_actionable is False
    assert opp.confidence == 0.0


@pytest.mark.parametrize("rates", [
    ("1.25", "0.8", "1"),
    ("2", "0.5", "1"),
    ("0.5", "4", "0.5"),
])
def test_unit_cross_rate_yields_exactly_negative_fees(rates):
    p1, p2, p3 = rates
    opp = detect(snap(USDC_USDT=p1, USDT_DAI=p2, DAI_USDC=p3), STABLE_PATH, FEE, THRESHOLD)

    assert opp.gross_rate == 1
    assert opp.net_profit_ratio == -FEE * 3
    assert opp.is_actionable is False


def test_threshold_is_strict():
    at = detect(snap(USDC_USDT="1.004", USDT_DAI="1", DAI_USDC="1"), STABLE_PATH, FEE, THRESHOLD)
    above = detect(snap(USDC_USDT="1.0040000001", USDT_DAI="1", DAI_USDC="1"), STABLE_PATH, FEE, THRESHOLD)

    assert at.net_profit_ratio == THRESHOLD
    assert at.is_actionable is False
    assert above.net_profit_ratio > THRESHOLD
    assert above.is_actionable is True


def test_confidence_is_bounded_and_monotonic():
    assert confidence_for(D("-0.01")) == 0.0
    assert confidence_for(D(0)) == 0.0
    assert confidence_for(D("0.002")) == pytest.approx(0.2)
    assert confidence_for(D("0.005")) < confidence_for(D("0.006"))
    assert confidence_for(D("0.5")) == 0.95


def test_detect_is_deterministic(profitable):
    a = detect(profitable, STABLE_PATH, FEE, THRESHOLD)
    b = detect(profitable, STABLE_PATH, FEE, THRESHOLD)
    assert a == b


def test_missing_pair_falls_back_to_neutral_rate():
    opp = detect(snap(USDC_USDT="1.01", USDT_DAI="1"), STABLE_PATH, FEE, THRESHOLD)

    assert opp.missing_pairs == ("DAI/USDC",)
    assert opp.legs[2].missing is True
    assert opp.gross_rate == D("1.01")


def test_missing_pair_is_fatal_when_strict():
    with pytest.raises(MissingPairError) as exc:
        detect(snap(USDC_USDT="1.01", USDT_DAI="1"), STABLE_PATH, FEE, THRESHOLD, strict=True)
    assert exc.value.pairs == ("DAI/USDC",)


@pytest.mark.parametrize("path", [
    ("USDC", "USDT", "USDC"),             # two assets
    ("USDC", "USDT", "DAI"),              # not closed
    ("USDC", "USDT", "USDT", "USDC"),     # repeated asset
])
def test_bad_paths_are_rejected(path):
    with pytest.raises(InvalidPathError):
        check_path(path)


def test_rank_prefers_net_then_shorter_path():
    s = snap(USDC_USDT="1.011", USDT_DAI="1", DAI_USDC="1", DAI_BUSD="1", BUSD_USDC="1", USDT_USDC="1")
    three = detect(snap(USDC_USDT="1.010", USDT_DAI="1", DAI_USDC="1"), STABLE_PATH, FEE, THRESHOLD)
    four = detect(s, ("USDC", "USDT", "DAI", "BUSD", "USDC"), FEE, THRESHOLD)
    worse = detect(snap(USDC_USDT="1.002", USDT_DAI="1", DAI_USDC="1"), STABLE_PATH, FEE, THRESHOLD)

    assert three.net_profit_ratio == four.net_profit_ratio == D("0.007")
    ranked = rank([worse, four, three])
    assert ranked == [three, four, worse]


def test_detector_enumerates_triangles_from_base():
    cfg = make_cfg(paths=[])
    s = snap(USDC_USDT="1", USDT_DAI="1", DAI_USDC="1", USDC_DAI="1.006", DAI_USDT="1", USDT_USDC="1")

    opps = TriDetector(cfg).scan(s)

    assert {o.path for o in opps} == {("USDC", "USDT", "DAI", "USDC"), ("USDC", "DAI", "USDT", "USDC")}
    assert opps[0].path == ("USDC", "DAI", "USDT", "USDC")
    assert opps[0].is_actionable


def test_detector_without_base_currency_finds_nothing():
    cfg = make_cfg(paths=[])
    assert TriDetector(cfg).scan(snap(BTC_ETH="15", ETH_SOL="10", SOL_BTC="0.0066")) == []


def test_detector_attaches_configured_stop(profitable):
    cfg = make_cfg(stop_loss_fraction="0.015")
    (opp,) = TriDetector(cfg).scan(profitable)
    assert opp.stop_loss_fraction == D("0.015")
