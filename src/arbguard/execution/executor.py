from __future__ import annotations
import asyncio, logging, random
from decimal import Decimal as D
from typing import Optional, Protocol
from arbguard.core.types import FillConfirmation, OrderIntent, OrderLeg, Opportunity, Position, RuntimeConfig
from arbguard.core.errors import ConfigurationError
from arbguard.core.utils import now_s, quant

log = logging.getLogger(__name__)

QTY_STEP = D("0.00000001")


class Executor(Protocol):
    """Anything that turns an OrderIntent into a fill. Exchange wiring lives outside arbguard."""
    async def submit(self, intent: OrderIntent) -> FillConfirmation: ...


def intent_for(position: Position, opp: Opportunity, max_slippage: D) -> OrderIntent:
    """Leg quantities follow the amount flowing through the cycle, starting from the committed value."""
    legs = []
    amount = position.quantity
    for leg in opp.legs:
        legs.append(OrderLeg(pair=leg.pair, side=leg.side, quantity=quant(amount, QTY_STEP)))
        amount = amount * leg.rate
    return OrderIntent(
        id=position.id, path=position.path, legs=tuple(legs),
        max_slippage=max_slippage, value=position.value,
        expected_price=position.entry_price * (1 + opp.net_profit_ratio),
    )


class PaperExecutor:
    """
    Simulated fills with no external side effects.
    Realized edge lands within +/-5% of the expected edge, after settle delay.
    """
    def __init__(self, delay_s: float = 0.1, seed: Optional[int] = None, failure_rate: float = 0.0):
        self.delay_s = delay_s
        self.failure_rate = failure_rate
        self._rng = random.Random(seed)
        self.submitted = 0

    async def submit(self, intent: OrderIntent) -> FillConfirmation:
        self.submitted += 1
        log.info("PAPER: %s %s value=%s legs=%d",
                 intent.id, "->".join(intent.path), intent.value, len(intent.legs))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self._rng.random() < self.failure_rate:
            return FillConfirmation(order_intent_id=intent.id, executed_price=D(1), timestamp=now_s(),
                                    success=False, error="simulated rejection")
        edge = intent.expected_price - 1
        factor = D(str(round(self._rng.uniform(0.95, 1.05), 6)))
        return FillConfirmation(order_intent_id=intent.id, executed_price=1 + edge * factor,
                                timestamp=now_s(), success=True)


def select_executor(cfg: RuntimeConfig, live: Optional[Executor] = None,
                    seed: Optional[int] = None) -> Executor:
    """paper_trading gates every order: when on, the live executor is never called."""
    if cfg.paper_trading:
        if live is not None:
            log.warning("paper_trading is on; live executor ignored")
        return PaperExecutor(delay_s=cfg.settle_delay_ms / 1000, seed=seed)
    if live is None:
        raise ConfigurationError("paper_trading is off but no live executor was supplied")
    log.warning("LIVE execution enabled")
    return live
