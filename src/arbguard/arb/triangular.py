from __future__ import annotations
import logging
from decimal import Decimal as D
from typing import Iterable, List, Sequence, Tuple
from arbguard.core.types import Leg, Opportunity, PriceSnapshot, RuntimeConfig
from arbguard.core.errors import InvalidPathError, MissingPairError
from arbguard.core.symbol_map import pair_of, unify_symbol

log = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.95
NEUTRAL_RATE = D(1)
DEFAULT_STOP = D("0.01")


def check_path(path: Iterable[str]) -> Tuple[str, ...]:
    p = tuple(unify_symbol(a) for a in path)
    if len(p) < 2 or p[0] != p[-1]:
        raise InvalidPathError(f"path {'->'.join(p)} does not return to its origin")
    body = p[:-1]
    if len(body) < 3 or len(set(body)) != len(body):
        raise InvalidPathError(f"path {'->'.join(p)} needs at least 3 distinct assets")
    return p


def confidence_for(net: D) -> float:
    # linear in net profit, saturating at 1% net
    if net <= 0:
        return 0.0
    return min(MAX_CONFIDENCE, float(net * 100))


def detect(snapshot: PriceSnapshot, path: Sequence[str], fee_per_leg: D, profit_threshold: D,
           stop_loss_fraction: D = DEFAULT_STOP, strict: bool = False) -> Opportunity:
    """
    Evaluate one closed path against a snapshot.
    Each hop A -> B reads the 'A/B' rate. An absent pair contributes 1.0
    (reported in missing_pairs) unless strict, in which case MissingPairError.
    """
    p = check_path(path)
    legs: List[Leg] = []
    missing: List[str] = []
    gross = D(1)
    for a, b in zip(p, p[1:]):
        pair = pair_of(a, b)
        rate = snapshot.rate(pair)
        if rate is None:
            missing.append(pair)
            legs.append(Leg(pair=pair, side="sell", rate=NEUTRAL_RATE, missing=True))
            continue
        gross *= rate
        legs.append(Leg(pair=pair, side="sell", rate=rate))
    if strict and missing:
        raise MissingPairError(missing)

    leg_count = len(p) - 1
    net = gross - 1 - fee_per_leg * leg_count
    return Opportunity(
        ts=snapshot.ts, path=p, legs=tuple(legs),
        gross_rate=gross, net_profit_ratio=net,
        confidence=confidence_for(net),
        is_actionable=net > profit_threshold,
        stop_loss_fraction=stop_loss_fraction,
        missing_pairs=tuple(missing),
    )


def rank(opps: Iterable[Opportunity]) -> List[Opportunity]:
    """Best net first; on ties the shorter path wins."""
    return sorted(opps, key=lambda o: (-o.net_profit_ratio, o.leg_count))


class TriDetector:
    """
    Snapshot-wide triangular scanner.
    Evaluates the configured paths, or when none are configured every
    triangle BASE -> X -> Y -> BASE whose three pairs are quoted.
    """
    def __init__(self, cfg: RuntimeConfig):
        self.cfg = cfg
        self.paths = [check_path(p) for p in cfg.paths]

    def candidate_paths(self, snapshot: PriceSnapshot) -> List[Tuple[str, ...]]:
        if self.paths:
            return list(self.paths)
        base = unify_symbol(self.cfg.base_asset)
        currencies = snapshot.currencies()
        if base not in currencies:
            return []
        out = []
        for X in currencies:
            if X == base: continue
            if snapshot.rate(pair_of(base, X)) is None: continue
            for Y in currencies:
                if Y == base or Y == X: continue
                if snapshot.rate(pair_of(X, Y)) is None or snapshot.rate(pair_of(Y, base)) is None:
                    continue
                out.append((base, X, Y, base))
        return out

    def scan(self, snapshot: PriceSnapshot) -> List[Opportunity]:
        opps = []
        for path in self.candidate_paths(snapshot):
            opp = detect(snapshot, path, self.cfg.fee_per_leg, self.cfg.profit_threshold,
                         stop_loss_fraction=self.cfg.stop_loss_fraction,
                         strict=self.cfg.strict_pairs)
            if opp.missing_pairs:
                log.warning("path %s: no quote for %s, assumed 1.0",
                            "->".join(path), ", ".join(opp.missing_pairs))
            opps.append(opp)
        ranked = rank(opps)
        if ranked:
            best = ranked[0]
            log.debug("scan @%.3f: %d paths, best %s net=%s",
                      snapshot.ts, len(ranked),
                      "->".join(best.path), best.net_profit_ratio)
        return ranked
