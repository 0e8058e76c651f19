from __future__ import annotations
from decimal import Decimal
from typing import Dict, Optional
from arbguard.core.errors import MalformedSnapshotError
from arbguard.core.types import PriceSnapshot
from arbguard.core.symbol_map import normalize_pair
from arbguard.core.utils import now_s

class Aggregator:
    """Latest rate per pair; snapshot() freezes the current view."""
    def __init__(self):
        self._rates: Dict[str, Decimal] = {}
        self._ts: float = 0.0

    def on_rate(self, pair: str, rate, ts: Optional[float] = None):
        try:
            key = normalize_pair(pair)
        except ValueError as e:
            raise MalformedSnapshotError(str(e)) from e
        self._rates[key] = rate
        self._ts = max(self._ts, ts if ts is not None else now_s())

    def snapshot(self) -> PriceSnapshot:
        return PriceSnapshot.from_rates(dict(self._rates), ts=self._ts or now_s())
