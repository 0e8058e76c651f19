from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Literal, List, Dict, Optional, Tuple, Mapping
from decimal import Decimal

from arbguard.core.errors import MalformedSnapshotError
from arbguard.core.symbol_map import normalize_pair
from arbguard.core.utils import now_s, to_decimal

Number = Decimal

FROZEN = ConfigDict(frozen=True)


class PriceSnapshot(BaseModel):
    """Rates keyed by 'BASE/QUOTE': units of QUOTE received for one BASE."""
    model_config = FROZEN

    ts: float
    rates: Dict[str, Number]

    @field_validator("rates")
    @classmethod
    def _normalized_positive_finite(cls, v: Dict[str, Number]) -> Dict[str, Number]:
        out: Dict[str, Number] = {}
        for pair, rate in v.items():
            if not rate.is_finite() or rate <= 0:
                raise ValueError(f"rate for {pair} must be positive and finite, got {rate}")
            out[normalize_pair(pair)] = rate
        return out

    @classmethod
    def from_rates(cls, rates: Mapping[str, object], ts: Optional[float] = None) -> "PriceSnapshot":
        if ts is not None and (isinstance(ts, bool) or not isinstance(ts, (int, float))):
            raise MalformedSnapshotError(f"timestamp must be a number, got {ts!r}")
        clean: Dict[str, Number] = {}
        for raw_pair, raw_rate in rates.items():
            if not isinstance(raw_pair, str):
                raise MalformedSnapshotError(f"pair must be a string, got {raw_pair!r}")
            try:
                pair = normalize_pair(raw_pair)
                rate = to_decimal(raw_rate)
            except ValueError as e:
                raise MalformedSnapshotError(f"malformed entry {raw_pair!r}: {e}") from e
            if not rate.is_finite() or rate <= 0:
                raise MalformedSnapshotError(f"rate for {pair} must be positive and finite, got {raw_rate!r}")
            clean[pair] = rate
        try:
            return cls(ts=now_s() if ts is None else ts, rates=clean)
        except ValidationError as e:
            raise MalformedSnapshotError(f"invalid snapshot: {e}") from e

    def rate(self, pair: str) -> Optional[Number]:
        return self.rates.get(pair)

    def currencies(self) -> List[str]:
        out = set()
        for pair in self.rates:
            base, quote = pair.split("/")
            out.add(base); out.add(quote)
        return sorted(out)


class Leg(BaseModel):
    model_config = FROZEN

    pair: str
    side: Literal["buy", "sell"] = "sell"
    rate: Number
    missing: bool = False


class Opportunity(BaseModel):
    model_config = FROZEN

    kind: Literal["tri"] = "tri"
    ts: float
    path: Tuple[str, ...]            # e.g. ("USDC","USDT","DAI","USDC")
    legs: Tuple[Leg, ...]
    gross_rate: Number
    net_profit_ratio: Number         # fee-inclusive
    confidence: float
    is_actionable: bool
    stop_loss_fraction: Number
    missing_pairs: Tuple[str, ...] = ()

    @property
    def leg_count(self) -> int:
        return len(self.path) - 1


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    EMERGENCY_CLOSED = "EMERGENCY_CLOSED"


class TradeRequest(BaseModel):
    """A sized trade awaiting validation. stop_loss_fraction has no default."""
    model_config = FROZEN

    path: Tuple[str, ...]
    value: Number = Field(gt=0)
    quantity: Number = Field(gt=0)
    entry_price: Number = Field(gt=0)
    stop_loss_fraction: Number = Field(gt=0)
    volatility: float = Field(0.1, ge=0)
    expected_profit_ratio: Number = Decimal(0)


class Position(BaseModel):
    model_config = FROZEN

    id: str
    path: Tuple[str, ...]
    value: Number
    quantity: Number
    entry_price: Number
    stop_loss_fraction: Number
    opened_at: float
    status: PositionStatus = PositionStatus.OPEN


class ClosedTrade(BaseModel):
    model_config = FROZEN

    id: str
    path: Tuple[str, ...]
    value: Number
    quantity: Number
    entry_price: Number
    exit_price: Number
    profit: Number
    opened_at: float
    closed_at: float
    status: PositionStatus


class SizingResult(BaseModel):
    model_config = FROZEN

    allowed: bool
    size: Number = Decimal(0)
    reason: Optional[str] = None
    max_risk: Optional[Number] = None
    available_capital: Optional[Number] = None


class ValidationResult(BaseModel):
    model_config = FROZEN

    valid: bool
    errors: List[str] = Field(default_factory=list)
    risk_score: float = 0.0


class ExecutionResult(BaseModel):
    model_config = FROZEN

    success: bool
    errors: List[str] = Field(default_factory=list)
    position: Optional[Position] = None
    new_balance: Optional[Number] = None
    risk_score: float = 0.0


class CloseResult(BaseModel):
    model_config = FROZEN

    position_id: str
    profit: Number
    new_balance: Number
    daily_loss: Number
    record: ClosedTrade


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RiskSnapshot(BaseModel):
    model_config = FROZEN

    balance: Number
    total_exposure: Number
    exposure_ratio: Number
    open_positions: int
    daily_loss: Number
    daily_loss_used: Number
    reserve_intact: bool
    risk_level: RiskLevel


class EmergencyResult(BaseModel):
    model_config = FROZEN

    closed_positions: int
    final_balance: Number
    safe_mode: bool = True
    records: List[ClosedTrade] = Field(default_factory=list)


class OrderLeg(BaseModel):
    model_config = FROZEN

    pair: str
    side: Literal["buy", "sell"]
    quantity: Number


class OrderIntent(BaseModel):
    """What the executor receives. id equals the position id it opens."""
    model_config = FROZEN

    id: str
    path: Tuple[str, ...]
    legs: Tuple[OrderLeg, ...]
    max_slippage: Number
    value: Number
    expected_price: Number


class FillConfirmation(BaseModel):
    model_config = FROZEN

    order_intent_id: str
    executed_price: Number
    timestamp: float
    success: bool = True
    error: Optional[str] = None


class CycleState(str, Enum):
    IDLE = "IDLE"
    DETECTING = "DETECTING"
    SIZING = "SIZING"
    VALIDATING = "VALIDATING"
    EXECUTING = "EXECUTING"
    SETTLING = "SETTLING"


class CycleOutcome(BaseModel):
    model_config = FROZEN

    cycle_id: int
    ts: float
    action: Literal["EXECUTE", "MONITOR"]
    reason: Optional[str] = None
    transitions: List[CycleState] = Field(default_factory=list)
    opportunity: Optional[Opportunity] = None
    sizing: Optional[SizingResult] = None
    validation: Optional[ValidationResult] = None
    position: Optional[Position] = None
    intent: Optional[OrderIntent] = None


class RiskConfig(BaseModel):
    model_config = FROZEN

    max_loss_per_trade: Number = Field(gt=0)         # caps single-trade risk
    max_daily_loss: Number = Field(gt=0)             # halts new trades once breached
    max_position_size_fraction: Number = Field(gt=0, le=1)
    reserve_fraction: Number = Field(ge=0, lt=1)     # never committed
    max_open_positions: int = Field(ge=1)
    max_stop_loss_fraction: Number = Field(gt=0, lt=1)
    emergency_slippage: Number = Field(Decimal("0.02"), ge=0, lt=1)
    default_volatility: float = Field(0.1, ge=0)


class RuntimeConfig(BaseModel):
    model_config = FROZEN

    starting_balance: Number = Field(gt=0)
    risk: RiskConfig
    fee_per_leg: Number = Field(ge=0)
    profit_threshold: Number = Field(ge=0)
    paper_trading: bool = True
    stop_loss_fraction: Number = Field(Decimal("0.01"), gt=0)
    max_slippage: Number = Field(Decimal("0.005"), ge=0)
    base_asset: str = "USDC"
    paths: List[Tuple[str, ...]] = Field(default_factory=list)
    strict_pairs: bool = False
    auto_emergency_stop: bool = True
    poll_interval_ms: int = Field(1000, gt=0)
    settle_delay_ms: int = Field(100, ge=0)
    volatility_window: int = Field(20, ge=2)
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 8080
    out_dir: str = "out"
    log_level: str = "INFO"
