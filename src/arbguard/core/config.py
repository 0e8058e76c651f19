from __future__ import annotations
import os, yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from dotenv import load_dotenv
from pydantic import ValidationError

from arbguard.arb.triangular import check_path
from arbguard.core.errors import ConfigurationError, InvalidPathError
from arbguard.core.types import RiskConfig, RuntimeConfig

ROOT = Path(__file__).resolve().parents[1]
CONFIG = ROOT / "config"
DEFAULT_CONFIG = CONFIG / "runtime.yml"

ENV_PREFIX = "ARBGUARD_"

RISK_KEYS = set(RiskConfig.model_fields)
RUNTIME_KEYS = set(RuntimeConfig.model_fields) - {"risk"}

def load_yaml(p: Path) -> Dict[str, Any]:
    try:
        d = yaml.safe_load(p.read_text())
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {p}: {e}") from e
    if d is None:
        return {}
    if not isinstance(d, dict):
        raise ConfigurationError(f"config root must be a mapping: {p}")
    return d

def env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    """ARBGUARD_MAX_DAILY_LOSS=50 -> {'max_daily_loss': '50'}; unknown keys are ignored."""
    out = {}
    for k, v in environ.items():
        if not k.startswith(ENV_PREFIX):
            continue
        key = k[len(ENV_PREFIX):].lower()
        if key in RISK_KEYS or key in RUNTIME_KEYS:
            out[key] = v
    return out

def _parse_paths(raw) -> list:
    # YAML gives lists of lists; env gives "USDC>USDT>DAI>USDC;USDC>DAI>USDT>USDC"
    if isinstance(raw, str):
        return [tuple(a.strip().upper() for a in p.split(">")) for p in raw.split(";") if p.strip()]
    return [tuple(str(a).upper() for a in p) for p in raw or []]

def _decimal_safe(d: Mapping[str, Any]) -> Dict[str, Any]:
    # YAML floats go through str() so 0.001 stays Decimal("0.001")
    return {k: (str(v) if isinstance(v, float) else v) for k, v in d.items()}

def build_runtime(runtime: Mapping[str, Any], risk: Mapping[str, Any]) -> RuntimeConfig:
    d = _decimal_safe(runtime)
    if "paths" in d:
        d["paths"] = _parse_paths(d["paths"])
    try:
        cfg = RuntimeConfig(risk=RiskConfig(**_decimal_safe(risk)), **d)
        for p in cfg.paths:
            check_path(p)
    except (ValidationError, InvalidPathError) as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e
    return cfg

def load_runtime(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> RuntimeConfig:
    if environ is None:
        load_dotenv()
        environ = os.environ
    if path is None:
        path = Path(environ.get(ENV_PREFIX + "CONFIG", DEFAULT_CONFIG))
    doc = load_yaml(Path(path))
    sections = {}
    for name in ("runtime", "risk"):
        sec = doc.get(name) or {}
        if not isinstance(sec, dict):
            raise ConfigurationError(f"'{name}' section must be a mapping: {path}")
        sections[name] = dict(sec)
    runtime, risk = sections["runtime"], sections["risk"]
    unknown = (set(runtime) - RUNTIME_KEYS) | (set(risk) - RISK_KEYS)
    if unknown:
        raise ConfigurationError(f"unrecognized config keys: {', '.join(sorted(unknown))}")
    for k, v in env_overrides(environ).items():
        (risk if k in RISK_KEYS else runtime)[k] = v
    return build_runtime(runtime, risk)
