from __future__ import annotations
import logging, statistics
from collections import deque
from decimal import Decimal as D
from typing import Deque, Dict, List, Optional, Set, Tuple
from arbguard.arb.triangular import TriDetector
from arbguard.core.types import (
    CloseResult, CycleOutcome, CycleState, EmergencyResult, FillConfirmation, Opportunity,
    PriceSnapshot, RiskSnapshot, RuntimeConfig, SizingResult, TradeRequest,
)
from arbguard.core.errors import EmergencyStopFailed, FatalError, InvalidPathError, MissingPairError
from arbguard.execution.executor import intent_for
from arbguard.risk.engine import RiskEngine
from arbguard.risk.portfolio import Portfolio

log = logging.getLogger(__name__)

ENTRY_PRICE = D(1)   # a cycle is priced as notional in / notional out


class DecisionCycle:
    """
    One decision per price snapshot:
      IDLE -> DETECTING -> SIZING -> VALIDATING -> EXECUTING -> SETTLING -> IDLE
    Any failed step drops back to IDLE with a MONITOR outcome.

    Owns the Portfolio. Not thread-safe; EngineRunner serializes every call.
    """
    def __init__(self, cfg: RuntimeConfig, detector: Optional[TriDetector] = None,
                 risk: Optional[RiskEngine] = None, portfolio: Optional[Portfolio] = None):
        self.cfg = cfg
        self.detector = detector or TriDetector(cfg)
        self.risk = risk or RiskEngine(cfg.risk)
        self.portfolio = portfolio or Portfolio(cfg.starting_balance, cfg.risk.reserve_fraction)
        self.state = CycleState.IDLE
        self.halted: Optional[str] = None
        self.fatal: Optional[FatalError] = None
        self.pending: Dict[str, Opportunity] = {}
        self.liquidated: Set[str] = set()
        self._cycle_id = 0
        self._gross: Dict[Tuple[str, ...], Deque[float]] = {}

    # --- per-tick pipeline ---
    def run(self, snapshot: PriceSnapshot) -> CycleOutcome:
        self._cycle_id += 1
        trail: List[CycleState] = [self.state]

        def go(s: CycleState):
            self.state = s
            trail.append(s)

        def monitor(reason: str, **kw) -> CycleOutcome:
            go(CycleState.IDLE)
            log.info("cycle %d MONITOR: %s", self._cycle_id, reason)
            return CycleOutcome(cycle_id=self._cycle_id, ts=snapshot.ts, action="MONITOR",
                                reason=reason, transitions=trail, **kw)

        if self.halted:
            return monitor(f"engine halted: {self.halted}")

        go(CycleState.DETECTING)
        try:
            opps = self.detector.scan(snapshot)
        except (MissingPairError, InvalidPathError) as e:
            return monitor(f"detection failed: {e}")
        self._observe(opps)
        actionable = [o for o in opps if o.is_actionable]
        if not actionable:
            best = opps[0] if opps else None
            reason = "no actionable opportunity"
            if best is not None:
                reason += f" (best {'->'.join(best.path)} net {best.net_profit_ratio:.6f})"
            return monitor(reason, opportunity=best)
        opp = actionable[0]

        go(CycleState.SIZING)
        sizing = self.risk.size_position(opp, self.portfolio)
        if not sizing.allowed:
            return monitor(sizing.reason, opportunity=opp, sizing=sizing)

        go(CycleState.VALIDATING)
        trade = self.trade_for(opp, sizing)
        validation = self.risk.validate_trade(trade, self.portfolio)
        if not validation.valid:
            return monitor("; ".join(validation.errors), opportunity=opp, sizing=sizing,
                           validation=validation)

        go(CycleState.EXECUTING)
        res = self.risk.execute_trade(trade, self.portfolio)
        if not res.success:
            return monitor("; ".join(res.errors), opportunity=opp, sizing=sizing, validation=validation)
        intent = intent_for(res.position, opp, self.cfg.max_slippage)
        self.pending[res.position.id] = opp

        go(CycleState.SETTLING)
        log.info("cycle %d EXECUTE: %s net=%s size=%s conf=%.2f",
                 self._cycle_id, "->".join(opp.path), opp.net_profit_ratio, sizing.size, opp.confidence)
        return CycleOutcome(cycle_id=self._cycle_id, ts=snapshot.ts, action="EXECUTE",
                            transitions=trail, opportunity=opp, sizing=sizing,
                            validation=validation, position=res.position, intent=intent)

    def trade_for(self, opp: Opportunity, sizing: SizingResult) -> TradeRequest:
        return TradeRequest(
            path=opp.path, value=sizing.size, quantity=sizing.size / ENTRY_PRICE,
            entry_price=ENTRY_PRICE, stop_loss_fraction=opp.stop_loss_fraction,
            volatility=self.volatility(opp.path), expected_profit_ratio=opp.net_profit_ratio,
        )

    # --- volatility estimate ---
    def _observe(self, opps: List[Opportunity]) -> None:
        for o in opps:
            w = self._gross.get(o.path)
            if w is None:
                w = self._gross[o.path] = deque(maxlen=self.cfg.volatility_window)
            w.append(float(o.gross_rate))

    def volatility(self, path: Tuple[str, ...]) -> float:
        """Std-dev of the path's recent gross rates; configured default until two samples exist."""
        w = self._gross.get(tuple(path))
        if not w or len(w) < 2:
            return self.cfg.risk.default_volatility
        return statistics.pstdev(w)

    # --- settlement ---
    def settle(self, fill: FillConfirmation) -> Optional[CloseResult]:
        pid = fill.order_intent_id
        if pid in self.liquidated:
            log.info("late fill for liquidated position %s ignored", pid)
            return None
        self.pending.pop(pid, None)
        exit_price = fill.executed_price
        if not fill.success:
            pos = self.portfolio.get(pid)
            if pos is not None:
                log.warning("fill for %s failed (%s); releasing capital at entry", pid, fill.error)
                exit_price = pos.entry_price
        res = self.risk.close_trade(pid, exit_price, self.portfolio)
        if not self.pending and self.state == CycleState.SETTLING:
            self.state = CycleState.IDLE

        if (self.cfg.auto_emergency_stop and self.portfolio.open_positions
                and self.portfolio.daily_loss >= self.cfg.risk.max_daily_loss):
            self.emergency_stop(reason="daily loss limit breached")
        return res

    # --- operator surface ---
    def emergency_stop(self, reason: str = "operator request") -> EmergencyResult:
        try:
            result = self.risk.emergency_stop(self.portfolio)
        except EmergencyStopFailed as e:
            self.fatal = e
            self.halted = f"FATAL: {e}"
            raise
        self.pending.clear()
        self.liquidated.update(r.id for r in result.records)
        self.halted = reason
        self.state = CycleState.IDLE
        return result

    def resume(self) -> None:
        if self.fatal is not None:
            raise FatalError(f"cannot resume after fatal error: {self.fatal}")
        if self.halted:
            log.warning("resuming after halt: %s", self.halted)
        self.halted = None

    def reset_daily_limits(self) -> None:
        self.risk.reset_daily_limits(self.portfolio)

    def portfolio_risk(self) -> RiskSnapshot:
        return self.risk.portfolio_risk(self.portfolio)
