from __future__ import annotations
import asyncio, logging, os
from pathlib import Path
from typing import Optional
from arbguard.core.config import load_runtime
from arbguard.core.errors import ArbGuardError, FatalError
from arbguard.core.logger import setup_console_logger
from arbguard.core.types import ClosedTrade, CycleOutcome, RuntimeConfig
from arbguard.cycle.decision import DecisionCycle
from arbguard.cycle.runner import EngineRunner
from arbguard.execution.executor import Executor, select_executor
from arbguard.io.csv_sink import CsvSink
from arbguard.io.dashboard_api import make_app
from arbguard.md.feeds import FileFeed, SimulatedFeed
import uvicorn

log = logging.getLogger("arbguard.cli")

def build_feed():
    # ARBGUARD_PRICES=path/to/rates.yml switches from simulated to file prices
    prices = os.environ.get("ARBGUARD_PRICES")
    if prices:
        log.info("prices from %s", prices)
        return FileFeed(Path(prices))
    seed = os.environ.get("ARBGUARD_SEED")
    return SimulatedFeed(seed=int(seed) if seed else None)

async def run(cfg: Optional[RuntimeConfig] = None, live: Optional[Executor] = None,
              max_cycles: Optional[int] = None, serve: bool = True):
    cfg = cfg or load_runtime()
    setup_console_logger("arbguard", cfg.log_level)
    log.info("starting: balance=%s paper=%s paths=%s", cfg.starting_balance, cfg.paper_trading,
             ["->".join(p) for p in cfg.paths] or f"auto from {cfg.base_asset}")

    executor = select_executor(cfg, live)
    runner = EngineRunner(DecisionCycle(cfg), executor)
    sink = CsvSink(Path(cfg.out_dir))
    subs: list[asyncio.Queue] = []

    # --- publishers (to CSV + dashboard) ---
    def broadcast(payload: dict):
        for q in list(subs):
            if not q.full():
                q.put_nowait(payload)

    def on_event(kind: str, payload):
        if kind == "outcome":
            o: CycleOutcome = payload
            sink.write_outcome(o)
            broadcast({"event": "outcome", **o.model_dump(mode="json")})
        elif kind == "close":
            t: ClosedTrade = payload
            sink.write_trade(t)
            broadcast({"event": "close", **t.model_dump(mode="json")})

    runner.subscribe(on_event)
    runner.start()

    def subscribe_fn(queue: asyncio.Queue):
        subs.append(queue)
        def unsub():
            try:
                subs.remove(queue)
            except ValueError:
                pass
        return unsub

    tasks = [asyncio.create_task(runner.poll(build_feed(), cfg.poll_interval_ms / 1000, max_cycles))]
    server = None
    if serve:
        app = make_app(runner, subscribe_fn)
        config = uvicorn.Config(app=app, host=cfg.dashboard_host, port=cfg.dashboard_port, log_level="info")
        server = uvicorn.Server(config)
        tasks.append(asyncio.create_task(server.serve()))

    try:
        await tasks[0]
        await runner.drain()
    except FatalError as e:
        log.critical("halted, operator intervention required: %s", e)
        raise
    finally:
        if server is not None:
            server.should_exit = True
        await asyncio.gather(*tasks[1:], return_exceptions=True)
        await runner.stop(liquidate=True)
        r = runner.portfolio_risk()
        log.info("final: balance=%s exposure=%s daily_loss=%s level=%s",
                 r.balance, r.total_exposure, r.daily_loss, r.risk_level.value)
    return runner

def main():
    cycles = os.environ.get("ARBGUARD_CYCLES")
    try:
        asyncio.run(run(max_cycles=int(cycles) if cycles else None))
    except KeyboardInterrupt:
        pass
    except ArbGuardError as e:
        raise SystemExit(f"arbguard: {e}")

if __name__ == "__main__":
    main()
