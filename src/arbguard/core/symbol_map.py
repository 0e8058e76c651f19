from __future__ import annotations
import re

# Basic map for common quirks. Extend as you see more.
XMAP = {
    "XBT": "BTC",
    "XDG": "DOGE",
    "USDT0": "USDT",
}

_SPLIT = re.compile(r"[/\-_:]")

def unify_symbol(sym: str) -> str:
    s = sym.strip().upper()
    return XMAP.get(s, s)

def normalize_pair(raw: str) -> str:
    """'usdc-usdt', 'USDC_USDT' and 'USDC/USDT' all map to 'USDC/USDT'."""
    parts = [p for p in _SPLIT.split(raw.strip()) if p]
    if len(parts) != 2:
        raise ValueError(f"cannot parse pair '{raw}'")
    base, quote = (unify_symbol(p) for p in parts)
    if base == quote:
        raise ValueError(f"pair '{raw}' has identical legs")
    return f"{base}/{quote}"

def pair_of(base: str, quote: str) -> str:
    return f"{unify_symbol(base)}/{unify_symbol(quote)}"
