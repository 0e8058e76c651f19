from __future__ import annotations
import orjson, random, yaml
from decimal import Decimal as D
from pathlib import Path
from typing import Dict, Mapping, Optional
from arbguard.core.types import PriceSnapshot
from arbguard.core.errors import MalformedSnapshotError
from arbguard.core.utils import now_s
from arbguard.md.aggregator import Aggregator

# stablecoin triangle quoted both ways round
STABLE_PAIRS = {
    "USDC/USDT": "0.9999",
    "USDT/DAI": "1.0001",
    "DAI/USDC": "1.0000",
    "USDC/DAI": "1.0000",
    "DAI/USDT": "0.9999",
    "USDT/USDC": "1.0001",
}


class SimulatedFeed:
    """
    Paper-trading market data: every tick each pair is re-drawn uniformly
    within +/- spread/2 of its anchor. Seed it for reproducible runs.
    """
    def __init__(self, anchors: Optional[Mapping[str, object]] = None, spread: float = 0.01,
                 seed: Optional[int] = None):
        self.anchors = {k: D(str(v)) for k, v in (anchors or STABLE_PAIRS).items()}
        self.spread = spread
        self._rng = random.Random(seed)
        self._agg = Aggregator()

    def snapshot(self) -> PriceSnapshot:
        ts = now_s()
        for pair, anchor in self.anchors.items():
            jitter = D(str(round((self._rng.random() - 0.5) * self.spread, 6)))
            self._agg.on_rate(pair, anchor + jitter, ts)
        return self._agg.snapshot()


class FileFeed:
    """
    Re-reads a YAML or JSON rates file every tick, so an external process can
    drop prices in place. Accepts {pair: rate} or {rates: {...}, ts: ...}.
    """
    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict:
        try:
            text = self.path.read_text()
        except OSError as e:
            raise MalformedSnapshotError(f"cannot read {self.path}: {e}") from e
        try:
            if self.path.suffix.lower() == ".json":
                return orjson.loads(text)
            return yaml.safe_load(text) or {}
        except (ValueError, yaml.YAMLError) as e:
            raise MalformedSnapshotError(f"cannot parse {self.path}: {e}") from e

    def snapshot(self) -> PriceSnapshot:
        doc = self._load()
        if not isinstance(doc, dict):
            raise MalformedSnapshotError(f"{self.path} must hold a mapping of pair -> rate")
        rates = doc.get("rates", doc)
        if not isinstance(rates, dict):
            raise MalformedSnapshotError(f"{self.path}: rates must be a mapping")
        ts = doc.get("ts") if "rates" in doc else None
        return PriceSnapshot.from_rates(rates, ts=ts)
