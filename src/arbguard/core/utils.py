from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, InvalidOperation
import orjson, time

D = Decimal

MONEY_STEP = D("0.01")
UNIT = D(1)

def now_s() -> float:
    return time.time()

def to_json(obj) -> bytes:
    return orjson.dumps(obj, default=_json_default)

def _json_default(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError

def to_decimal(x) -> Decimal:
    # str() first so floats keep their shortest repr, not their binary expansion
    if isinstance(x, Decimal):
        return x
    try:
        return D(str(x).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a number: {x!r}") from e

def quant(x: Decimal, step: Decimal) -> Decimal:
    if step <= 0:
        return x
    q = (x / step).to_integral_value(rounding=ROUND_DOWN)
    return q * step

def floor_units(x: Decimal) -> Decimal:
    return quant(x, UNIT)

def money(x: Decimal) -> Decimal:
    return x.quantize(MONEY_STEP, rounding=ROUND_HALF_EVEN)
