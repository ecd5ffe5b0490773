"""
Load config from config.yaml with optional env overrides.
Single source of truth for curve location, default time range and simulation settings.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

import yaml

# Defaults if no YAML or env
_DEFAULTS = {
    "curves": {
        "dir": "curves",
        "default": "intcal20",
    },
    "defaults": {
        "time_range": [8000, 2000],
        "n_sim": 1000,
        "runm": None,
        "bin_h": 100,
        "n_workers": 1,
        "seed": 42,
        "eps": 1e-5,
    },
    "spatial": {
        "h": 100.0,
        "kernel": "gaussian",
        "rate": "geometric",
    },
}


def _config_yaml_path() -> Path:
    """config.yaml lives at repo root (parent of package dir) unless RADIOCARBON_CONFIG points elsewhere."""
    explicit = os.environ.get("RADIOCARBON_CONFIG")
    if explicit:
        return Path(explicit)
    return Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    config_path = _config_yaml_path()
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overrides() -> dict:
    overrides: dict = {}
    curve_dir = os.environ.get("RADIOCARBON_CURVE_DIR")
    if curve_dir:
        overrides.setdefault("curves", {})["dir"] = curve_dir
    n_workers = os.environ.get("RADIOCARBON_N_WORKERS")
    if n_workers:
        overrides.setdefault("defaults", {})["n_workers"] = int(n_workers)
    return overrides


def get_config() -> dict:
    """Return merged config: defaults <- config.yaml <- env."""
    merged = _deep_merge(_DEFAULTS, _load_yaml())
    merged = _deep_merge(merged, _env_overrides())
    return merged


# Convenience accessors
def curve_dir() -> Path:
    """Directory holding *.14c / *.csv curve files; relative paths resolve against the repo root."""
    p = Path(get_config()["curves"]["dir"])
    if not p.is_absolute():
        p = Path(__file__).resolve().parent.parent / p
    return p


def default_curve() -> str:
    return str(get_config()["curves"]["default"])


def default_time_range() -> Tuple[int, int]:
    start, end = get_config()["defaults"]["time_range"]
    return int(start), int(end)


def default_n_sim() -> int:
    return int(get_config()["defaults"]["n_sim"])


def default_runm() -> Optional[int]:
    v = get_config()["defaults"].get("runm")
    return int(v) if v else None


def default_bin_h() -> float:
    return float(get_config()["defaults"]["bin_h"])


def default_n_workers() -> int:
    return max(1, int(get_config()["defaults"]["n_workers"]))


def default_seed() -> int:
    return int(get_config()["defaults"]["seed"])


def default_eps() -> float:
    return float(get_config()["defaults"]["eps"])


def spatial_h() -> float:
    return float(get_config()["spatial"]["h"])


def spatial_kernel() -> str:
    return str(get_config()["spatial"]["kernel"])


def spatial_rate() -> str:
    return str(get_config()["spatial"]["rate"])
