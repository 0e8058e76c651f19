from __future__ import annotations
import logging
from decimal import Decimal as D
from typing import List, Optional
from arbguard.core.types import (
    CloseResult, EmergencyResult, ExecutionResult, Opportunity, RiskConfig,
    RiskLevel, RiskSnapshot, SizingResult, TradeRequest, ValidationResult,
)
from arbguard.core.errors import EmergencyStopFailed, PositionNotFound
from arbguard.core.utils import UNIT, floor_units
from arbguard.risk.portfolio import Portfolio

log = logging.getLogger(__name__)

# rejection / violation reasons
DAILY_LIMIT = "daily loss limit reached"
TOO_SMALL = "position too small"
OVERSIZED = "position size exceeds maximum"
RESERVE_BREACH = "would breach reserve fund"
BAD_STOP = "stop loss not set or too high"
TOO_MANY = "too many open positions"

# (upper bound, level); bands are [lo, hi)
RISK_BANDS = (
    (D("0.2"), RiskLevel.LOW),
    (D("0.5"), RiskLevel.MEDIUM),
    (D("0.8"), RiskLevel.HIGH),
)


def risk_level_for(exposure_ratio: D) -> RiskLevel:
    for hi, level in RISK_BANDS:
        if exposure_ratio < hi:
            return level
    return RiskLevel.CRITICAL


class RiskEngine:
    """
    Decides whether a trade may happen and how large it may be.
    Sizing and validation never mutate; execute/close/emergency_stop are the
    only paths that touch the Portfolio, and each one validates first.
    """
    def __init__(self, config: RiskConfig):
        self.cfg = config

    # --- sizing ---
    def size_position(self, opp: Opportunity, portfolio: Portfolio) -> SizingResult:
        cfg = self.cfg
        if portfolio.daily_loss >= cfg.max_daily_loss:
            log.info("sizing rejected: %s (%s / %s)", DAILY_LIMIT, portfolio.daily_loss, cfg.max_daily_loss)
            return SizingResult(allowed=False, reason=DAILY_LIMIT)

        available = portfolio.balance * (1 - cfg.reserve_fraction)
        by_risk = cfg.max_loss_per_trade / opp.stop_loss_fraction    # wider stop -> smaller size
        by_capital = available * cfg.max_position_size_fraction
        size = floor_units(min(by_risk, by_capital, available))
        if size < UNIT:
            log.info("sizing rejected: %s (risk cap %s, capital cap %s)", TOO_SMALL, by_risk, by_capital)
            return SizingResult(allowed=False, reason=TOO_SMALL, available_capital=available)

        # a stop-out on this trade must not carry the day past the limit
        worst = size * opp.stop_loss_fraction
        if portfolio.daily_loss + worst > cfg.max_daily_loss:
            log.info("sizing rejected: %s (%s lost, stop-out would add %s)", DAILY_LIMIT, portfolio.daily_loss, worst)
            return SizingResult(allowed=False, reason=DAILY_LIMIT, max_risk=worst, available_capital=available)

        return SizingResult(allowed=True, size=size, max_risk=cfg.max_loss_per_trade,
                            available_capital=available)

    # --- validation ---
    def risk_score(self, trade: TradeRequest, portfolio: Portfolio) -> float:
        """0-100 heuristic; advisory only."""
        cfg = self.cfg
        ratio = float(trade.value / portfolio.balance) if portfolio.balance > 0 else 1.0
        score = min(30.0, ratio * 150)
        score += min(30.0, float(portfolio.daily_loss / cfg.max_daily_loss) * 30)
        score += len(portfolio.open_positions) * 4
        score += min(20.0, trade.volatility * 200)
        return min(100.0, score)

    def validate_trade(self, trade: TradeRequest, portfolio: Portfolio) -> ValidationResult:
        cfg = self.cfg
        balance = portfolio.balance
        errors: List[str] = []

        if trade.value > balance * cfg.max_position_size_fraction:
            errors.append(OVERSIZED)
        if portfolio.daily_loss >= cfg.max_daily_loss:
            errors.append(DAILY_LIMIT)
        after = balance - trade.value
        if after < balance * cfg.reserve_fraction or after < portfolio.starting_balance * cfg.reserve_fraction:
            errors.append(RESERVE_BREACH)
        if trade.stop_loss_fraction is None or trade.stop_loss_fraction <= 0 \
                or trade.stop_loss_fraction > cfg.max_stop_loss_fraction:
            errors.append(BAD_STOP)
        if len(portfolio.open_positions) >= cfg.max_open_positions:
            errors.append(TOO_MANY)

        result = ValidationResult(valid=not errors, errors=errors,
                                  risk_score=self.risk_score(trade, portfolio))
        if errors:
            log.warning("trade %s value=%s failed validation: %s",
                        "->".join(trade.path), trade.value, "; ".join(errors))
        return result

    # --- state transitions ---
    def execute_trade(self, trade: TradeRequest, portfolio: Portfolio,
                      position_id: Optional[str] = None) -> ExecutionResult:
        v = self.validate_trade(trade, portfolio)
        if not v.valid:
            return ExecutionResult(success=False, errors=v.errors, risk_score=v.risk_score)
        pos = portfolio.open_position(trade, position_id)
        log.info("opened %s %s value=%s balance=%s risk=%.1f",
                 pos.id, "->".join(pos.path), pos.value, portfolio.balance, v.risk_score)
        return ExecutionResult(success=True, position=pos, new_balance=portfolio.balance,
                               risk_score=v.risk_score)

    def close_trade(self, position_id: str, exit_price: D, portfolio: Portfolio) -> CloseResult:
        try:
            rec = portfolio.close_position(position_id, exit_price)
        except PositionNotFound:
            log.error("close requested for unknown position %s", position_id)
            raise
        log.info("closed %s exit=%s profit=%s balance=%s daily_loss=%s",
                 rec.id, rec.exit_price, rec.profit, portfolio.balance, portfolio.daily_loss)
        return CloseResult(position_id=rec.id, profit=rec.profit, new_balance=portfolio.balance,
                           daily_loss=portfolio.daily_loss, record=rec)

    def reset_daily_limits(self, portfolio: Portfolio) -> None:
        prev = portfolio.reset_daily_loss()
        log.info("daily limits reset (was %s)", prev)

    # --- portfolio-level ---
    def portfolio_risk(self, portfolio: Portfolio) -> RiskSnapshot:
        exposure = portfolio.total_exposure
        denom = portfolio.balance + exposure
        ratio = exposure / denom if denom > 0 else D(0)
        return RiskSnapshot(
            balance=portfolio.balance,
            total_exposure=exposure,
            exposure_ratio=ratio,
            open_positions=len(portfolio.open_positions),
            daily_loss=portfolio.daily_loss,
            daily_loss_used=portfolio.daily_loss / self.cfg.max_daily_loss,
            reserve_intact=portfolio.balance >= portfolio.starting_balance * self.cfg.reserve_fraction,
            risk_level=risk_level_for(ratio),
        )

    def emergency_stop(self, portfolio: Portfolio) -> EmergencyResult:
        n = len(portfolio.open_positions)
        log.warning("EMERGENCY STOP: liquidating %d open positions", n)
        try:
            records = portfolio.liquidate_all(self.cfg.emergency_slippage)
        except EmergencyStopFailed as e:
            log.critical("emergency stop failed, operator intervention required: %s", e)
            raise
        log.warning("emergency stop complete: %d closed, balance=%s", len(records), portfolio.balance)
        return EmergencyResult(closed_positions=len(records), final_balance=portfolio.balance,
                               records=records)
