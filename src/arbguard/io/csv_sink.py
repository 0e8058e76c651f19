from __future__ import annotations
import csv, time
from pathlib import Path
from arbguard.core.types import ClosedTrade, CycleOutcome
from arbguard.core.utils import to_json

class CsvSink:
    def __init__(self, outdir: Path):
        self.outdir = Path(outdir)
        self.outdir.mkdir(parents=True, exist_ok=True)
        self._decisions_path = self.outdir / "decisions.csv"
        self._trades_path = self.outdir / "trades.csv"
        self._ensure_headers()

    def _ensure_headers(self):
        if not self._decisions_path.exists():
            with self._decisions_path.open("w", newline="") as f:
                w = csv.writer(f)
                w.writerow(["ts_iso","ts","cycle","action","reason","path","net_ratio",
                            "confidence","size","risk_score","position_id","errors_json"])
        if not self._trades_path.exists():
            with self._trades_path.open("w", newline="") as f:
                w = csv.writer(f)
                w.writerow(["ts_iso","closed_at","id","status","path","value","quantity",
                            "entry_price","exit_price","profit"])

    def write_outcome(self, o: CycleOutcome):
        opp, sizing, v = o.opportunity, o.sizing, o.validation
        with self._decisions_path.open("a", newline="") as f:
            w = csv.writer(f)
            w.writerow([
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(o.ts)),
                f"{o.ts:.6f}", o.cycle_id, o.action, o.reason or "",
                "->".join(opp.path) if opp else "",
                str(opp.net_profit_ratio) if opp else "",
                f"{opp.confidence:.3f}" if opp else "",
                str(sizing.size) if sizing and sizing.allowed else "",
                f"{v.risk_score:.1f}" if v else "",
                o.position.id if o.position else "",
                to_json(v.errors if v else []).decode("utf-8"),
            ])

    def write_trade(self, t: ClosedTrade):
        with self._trades_path.open("a", newline="") as f:
            w = csv.writer(f)
            w.writerow([
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(t.closed_at)),
                f"{t.closed_at:.6f}", t.id, t.status.value, "->".join(t.path),
                str(t.value), str(t.quantity), str(t.entry_price), str(t.exit_price), str(t.profit),
            ])
