from __future__ import annotations
import logging, uuid
from decimal import Decimal as D
from typing import Dict, List, Optional, Tuple
from arbguard.core.types import ClosedTrade, Position, PositionStatus, TradeRequest
from arbguard.core.errors import EmergencyStopFailed, PositionNotFound
from arbguard.core.utils import money, now_s

log = logging.getLogger(__name__)


class Portfolio:
    """
    Cash, open positions and realized history for one engine.

    Fields are read-only from outside. The four mutators below are the only
    way state changes; the RiskEngine calls them after its checks pass.
    """
    def __init__(self, starting_balance: D, reserve_fraction: D):
        if starting_balance <= 0:
            raise ValueError("starting_balance must be positive")
        self._starting = D(starting_balance)
        self._reserve_fraction = D(reserve_fraction)
        self._balance = D(starting_balance)
        self._daily_loss = D(0)
        self._realized = D(0)
        self._open: Dict[str, Position] = {}
        self._history: List[ClosedTrade] = []

    # --- read side ---
    @property
    def starting_balance(self) -> D:
        return self._starting

    @property
    def reserve_fraction(self) -> D:
        return self._reserve_fraction

    @property
    def balance(self) -> D:
        return self._balance

    @property
    def daily_loss(self) -> D:
        return self._daily_loss

    @property
    def realized_pnl(self) -> D:
        return self._realized

    @property
    def open_positions(self) -> Tuple[Position, ...]:
        return tuple(self._open.values())

    @property
    def trade_history(self) -> Tuple[ClosedTrade, ...]:
        return tuple(self._history)

    @property
    def total_exposure(self) -> D:
        return sum((p.value for p in self._open.values()), D(0))

    def get(self, position_id: str) -> Optional[Position]:
        return self._open.get(position_id)

    # --- mutators ---
    def open_position(self, trade: TradeRequest, position_id: Optional[str] = None) -> Position:
        if trade.value > self._balance:
            raise ValueError(f"trade value {trade.value} exceeds balance {self._balance}")
        pid = position_id or uuid.uuid4().hex[:12]
        if pid in self._open:
            raise ValueError(f"duplicate position id {pid}")
        pos = Position(
            id=pid, path=trade.path, value=trade.value, quantity=trade.quantity,
            entry_price=trade.entry_price, stop_loss_fraction=trade.stop_loss_fraction,
            opened_at=now_s(),
        )
        self._balance -= trade.value
        self._open[pid] = pos
        return pos

    def close_position(self, position_id: str, exit_price: D) -> ClosedTrade:
        pos = self._open.get(position_id)
        if pos is None:
            raise PositionNotFound(position_id)
        profit = money((exit_price - pos.entry_price) * pos.quantity)
        record = ClosedTrade(
            id=pos.id, path=pos.path, value=pos.value, quantity=pos.quantity,
            entry_price=pos.entry_price, exit_price=exit_price, profit=profit,
            opened_at=pos.opened_at, closed_at=now_s(), status=PositionStatus.CLOSED,
        )
        # realized losses only; open drawdown never counts toward the daily limit
        if profit < 0:
            self._daily_loss += -profit
        self._balance += pos.value + profit
        self._realized += profit
        del self._open[position_id]
        self._history.append(record)
        return record

    def liquidate_all(self, slippage: D) -> List[ClosedTrade]:
        """Close everything at value * (1 - slippage). All or nothing."""
        try:
            closed_at = now_s()
            records = []
            credit = D(0)
            for pos in self._open.values():
                proceeds = money(pos.value * (1 - slippage))
                profit = proceeds - pos.value
                records.append(ClosedTrade(
                    id=pos.id, path=pos.path, value=pos.value, quantity=pos.quantity,
                    entry_price=pos.entry_price,
                    exit_price=pos.entry_price * (1 - slippage),
                    profit=profit, opened_at=pos.opened_at, closed_at=closed_at,
                    status=PositionStatus.EMERGENCY_CLOSED,
                ))
                credit += proceeds
        except Exception as e:
            raise EmergencyStopFailed(f"could not price {len(self._open)} open positions: {e}") from e

        # commit
        self._balance += credit
        self._realized += sum((r.profit for r in records), D(0))
        self._open.clear()
        self._history.extend(records)
        return records

    def reset_daily_loss(self) -> D:
        prev, self._daily_loss = self._daily_loss, D(0)
        return prev

    def summary(self) -> dict:
        return {
            "balance": str(self._balance),
            "starting_balance": str(self._starting),
            "daily_loss": str(self._daily_loss),
            "realized_pnl": str(self._realized),
            "total_exposure": str(self.total_exposure),
            "open_positions": [p.model_dump(mode="json") for p in self._open.values()],
            "closed_trades": len(self._history),
        }
