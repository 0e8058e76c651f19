from __future__ import annotations
import asyncio, itertools, logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
from arbguard.core.types import (
    CloseResult, CycleOutcome, EmergencyResult, FillConfirmation, OrderIntent, PriceSnapshot, RiskSnapshot,
)
from arbguard.core.errors import EmergencyStopFailed, FatalError, MalformedSnapshotError
from arbguard.cycle.decision import DecisionCycle
from arbguard.core.utils import now_s
from arbguard.execution.executor import Executor

log = logging.getLogger(__name__)

# lower runs first; ties keep submission order
PRIO_EMERGENCY, PRIO_CONTROL, PRIO_FILL, PRIO_TICK = 0, 1, 2, 3

Listener = Callable[[str, Any], None]


class EngineRunner:
    """
    Single owner of a DecisionCycle.

    Ticks, fill confirmations, resets and emergency stops are queued as events
    and applied one at a time by one worker task, so a settlement is always
    fully applied before the next tick sizes against the portfolio. Emergency
    stop has top priority: it runs as soon as the current event finishes.
    """
    def __init__(self, cycle: DecisionCycle, executor: Executor, history: int = 500):
        self.cycle = cycle
        self.executor = executor
        self.outcomes: Deque[CycleOutcome] = deque(maxlen=history)
        self.failed: Optional[FatalError] = None
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._settling: Dict[str, asyncio.Task] = {}
        self._worker: Optional[asyncio.Task] = None
        self._subs: List[Listener] = []

    def subscribe(self, cb: Listener):
        self._subs.append(cb)

    def _publish(self, kind: str, payload: Any):
        for cb in self._subs:
            try:
                cb(kind, payload)
            except Exception:
                log.exception("listener failed on %s event", kind)

    # --- lifecycle ---
    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="arbguard-engine")

    async def stop(self, liquidate: bool = False):
        """
        Cancel pending settlements and the worker. With liquidate, positions
        still open are emergency-closed first so none outlive the engine.
        """
        try:
            if liquidate and self.failed is None and self.cycle.portfolio.open_positions:
                log.warning("shutdown with %d open positions; liquidating",
                            len(self.cycle.portfolio.open_positions))
                if self.running:
                    await self.emergency_stop("shutdown")
                else:
                    self._handle("emergency", "shutdown")
        finally:
            for t in list(self._settling.values()):
                t.cancel()
            await asyncio.gather(*self._settling.values(), return_exceptions=True)
            self._settling.clear()
            if self._worker is not None:
                self._worker.cancel()
                await asyncio.gather(self._worker, return_exceptions=True)
                self._worker = None

    async def drain(self):
        """Wait until every in-flight settlement has been applied."""
        while self._settling:
            await asyncio.gather(*list(self._settling.values()), return_exceptions=True)
            await self._queue.join()

    # --- public surface ---
    async def submit(self, snapshot: PriceSnapshot) -> CycleOutcome:
        return await self._call(PRIO_TICK, "tick", snapshot)

    async def emergency_stop(self, reason: str = "operator request") -> EmergencyResult:
        return await self._call(PRIO_EMERGENCY, "emergency", reason)

    async def reset_daily_limits(self) -> None:
        return await self._call(PRIO_CONTROL, "reset", None)

    async def resume(self) -> None:
        return await self._call(PRIO_CONTROL, "resume", None)

    def portfolio_risk(self) -> RiskSnapshot:
        # read-only; the event loop is single-threaded so no event is mid-flight here
        return self.cycle.portfolio_risk()

    async def _call(self, prio: int, kind: str, payload: Any):
        if self.failed is not None:
            raise self.failed
        fut = asyncio.get_running_loop().create_future()
        await self._queue.put((prio, next(self._seq), kind, payload, fut))
        return await fut

    # --- worker ---
    async def _run(self):
        while True:
            _, _, kind, payload, fut = await self._queue.get()
            try:
                result = self._handle(kind, payload)
            except EmergencyStopFailed as e:
                self.failed = e
                log.critical("engine stopped: %s", e)
                self._reject(fut, e)
                self._queue.task_done()
                self._fail_queued(e)
                return
            except Exception as e:
                if fut is None:
                    log.error("%s event failed: %s", kind, e)
                self._reject(fut, e)
            else:
                if fut is not None and not fut.done():
                    fut.set_result(result)
            self._queue.task_done()

    def _handle(self, kind: str, payload: Any):
        if kind == "tick":
            outcome = self.cycle.run(payload)
            self.outcomes.appendleft(outcome)
            if outcome.intent is not None:
                self._schedule(outcome.intent)
            self._publish("outcome", outcome)
            return outcome
        if kind == "fill":
            self._settling.pop(payload.order_intent_id, None)
            seen = len(self.cycle.portfolio.trade_history)
            res: Optional[CloseResult] = self.cycle.settle(payload)
            self._after_close(seen)
            return res
        if kind == "emergency":
            seen = len(self.cycle.portfolio.trade_history)
            res: EmergencyResult = self.cycle.emergency_stop(payload)
            self._after_close(seen)
            return res
        if kind == "reset":
            return self.cycle.reset_daily_limits()
        if kind == "resume":
            return self.cycle.resume()
        raise ValueError(f"unknown event {kind}")

    def _schedule(self, intent: OrderIntent):
        self._settling[intent.id] = asyncio.create_task(self._await_fill(intent), name=f"settle-{intent.id}")

    async def _await_fill(self, intent: OrderIntent):
        try:
            fill = await self.executor.submit(intent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("executor raised for %s: %s", intent.id, e)
            fill = FillConfirmation(order_intent_id=intent.id, executed_price=intent.expected_price,
                                    timestamp=now_s(), success=False, error=str(e))
        await self._queue.put((PRIO_FILL, next(self._seq), "fill", fill, None))

    def _after_close(self, seen: int):
        for rec in self.cycle.portfolio.trade_history[seen:]:
            self._publish("close", rec)
        # positions liquidated by an emergency stop no longer await a fill
        for pid in [p for p in self._settling if p not in self.cycle.pending]:
            self._settling.pop(pid).cancel()

    def _reject(self, fut, e: BaseException):
        if fut is not None and not fut.done():
            fut.set_exception(e)

    def _fail_queued(self, e: BaseException):
        while not self._queue.empty():
            *_, fut = self._queue.get_nowait()
            self._reject(fut, e)
            self._queue.task_done()

    # --- polling ---
    async def poll(self, feed, interval_s: float, max_cycles: Optional[int] = None):
        """Fixed-cadence loop: one snapshot per tick until max_cycles or a fatal stop."""
        n = 0
        while max_cycles is None or n < max_cycles:
            if self.failed is not None:
                raise self.failed
            try:
                snap = feed.snapshot()
            except MalformedSnapshotError as e:
                log.error("snapshot rejected: %s", e)
            else:
                await self.submit(snap)
            n += 1
            await asyncio.sleep(interval_s)
