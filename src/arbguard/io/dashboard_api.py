from __future__ import annotations
from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.responses import HTMLResponse, Response
import asyncio
from contextlib import asynccontextmanager
from arbguard.core.errors import FatalError
from arbguard.core.utils import to_json
from arbguard.cycle.runner import EngineRunner

def _json(obj) -> Response:
    return Response(content=to_json(obj), media_type="application/json")

def make_app(runner: EngineRunner, subscribe_fn):
    """Operator surface: read-only risk views plus emergency stop, daily reset and resume."""
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # start the engine here only when the caller has not already
        owned = not runner.running
        runner.start()
        try:
            yield
        finally:
            if owned:
                await runner.stop(liquidate=True)

    app = FastAPI(title="arbguard", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return _json({"ok": runner.failed is None, "halted": runner.cycle.halted,
                      "state": runner.cycle.state.value})

    @app.get("/risk")
    async def risk():
        return _json(runner.portfolio_risk().model_dump(mode="json"))

    @app.get("/portfolio")
    async def portfolio():
        return _json(runner.cycle.portfolio.summary())

    @app.get("/decisions/latest")
    async def latest(limit: int = 50):
        return _json([o.model_dump(mode="json") for o in list(runner.outcomes)[:limit]])

    @app.post("/emergency-stop")
    async def emergency_stop():
        try:
            res = await runner.emergency_stop("operator request via API")
        except FatalError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return _json(res.model_dump(mode="json"))

    @app.post("/reset-daily")
    async def reset_daily():
        await runner.reset_daily_limits()
        return _json(runner.portfolio_risk().model_dump(mode="json"))

    @app.post("/resume")
    async def resume():
        try:
            await runner.resume()
        except FatalError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _json({"ok": True, "halted": runner.cycle.halted})

    html = """
    <!doctype html><html><body>
    <h2>arbguard: decisions</h2>
    <pre id="log"></pre>
    <script>
      const log = document.getElementById('log');
      const ws = new WebSocket(`ws://${location.host}/stream`);
      function line(d){
        if(d.event === 'close'){
          return `[${new Date(d.closed_at*1000).toISOString()}] ${d.status} ${d.id}  ${d.path.join('->')}  profit=${d.profit}\\n`;
        }
        const opp = d.opportunity;
        const path = opp ? opp.path.join('->') : '-';
        return `[${new Date(d.ts*1000).toISOString()}] #${d.cycle_id} ${d.action}  ${path}  ${d.reason || ''}\\n`;
      }
      ws.onmessage = (ev) => {
        const data = JSON.parse(ev.data);
        log.textContent = line(data) + log.textContent;
      }
    </script>
    </body></html>
    """

    @app.get("/")
    async def root():
        return HTMLResponse(html)

    @app.websocket("/stream")
    async def stream(ws: WebSocket):
        await ws.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        unsub = subscribe_fn(queue)

        async def pump():
            while True:
                data = await queue.get()
                await ws.send_text(to_json(data).decode("utf-8"))

        sender = asyncio.create_task(pump())
        try:
            # clients never send; this returns when they go away
            while (await ws.receive())["type"] != "websocket.disconnect":
                pass
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            unsub()

    return app
