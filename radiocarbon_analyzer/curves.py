"""
Calibration curves: loading IntCal-style .14c / csv files, in-memory registration, synthetic curves.
All curves are held at annual resolution with calendar years BP in descending order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .config import curve_dir as _configured_curve_dir
from .core.errors import CurveNotFoundError, InputValidationError

logger = logging.getLogger(__name__)

CURVE_COLUMNS = ["cal_bp", "c14_age", "c14_error"]
_INTCAL_COLUMNS = ["cal_bp", "c14_age", "c14_error", "delta14c", "sigma"]

_REGISTRY: Dict[str, "CalibrationCurve"] = {}
_FILE_CACHE: Dict[Tuple[str, str], "CalibrationCurve"] = {}


@dataclass(frozen=True)
class CalibrationCurve:
    """Annual calibration curve. cal_bp is strictly descending (oldest first)."""

    name: str
    cal_bp: np.ndarray
    c14_age: np.ndarray
    c14_error: np.ndarray

    @property
    def cal_range(self) -> Tuple[int, int]:
        return int(self.cal_bp[0]), int(self.cal_bp[-1])

    @property
    def c14_range(self) -> Tuple[float, float]:
        return float(self.c14_age.min()), float(self.c14_age.max())

    def __len__(self) -> int:
        return len(self.cal_bp)

    def at(self, cal_bp) -> Tuple[np.ndarray, np.ndarray]:
        """Curve mean 14C age and error at calendar years BP (linear interpolation)."""
        x = np.asarray(cal_bp, dtype=float)
        # np.interp needs increasing xp
        mu = np.interp(x, self.cal_bp[::-1], self.c14_age[::-1])
        sd = np.interp(x, self.cal_bp[::-1], self.c14_error[::-1])
        return mu, sd

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"cal_bp": self.cal_bp, "c14_age": self.c14_age, "c14_error": self.c14_error})


def curve_from_frame(name: str, df: pd.DataFrame) -> CalibrationCurve:
    """
    Build a curve from a table with columns cal_bp, c14_age, c14_error (any order, any resolution).
    Interpolates to annual resolution over the integer years covered by the table.
    """
    missing = [c for c in CURVE_COLUMNS if c not in df.columns]
    if missing:
        raise InputValidationError(f"curve table for {name!r} missing columns: {missing}")
    d = df[CURVE_COLUMNS].dropna().astype(float).sort_values("cal_bp").drop_duplicates("cal_bp")
    if len(d) < 2:
        raise InputValidationError(f"curve {name!r} needs at least two rows")
    lo = int(np.ceil(d["cal_bp"].iloc[0]))
    hi = int(np.floor(d["cal_bp"].iloc[-1]))
    grid = np.arange(hi, lo - 1, -1, dtype=float)
    mu = np.interp(grid, d["cal_bp"].values, d["c14_age"].values)
    sd = np.interp(grid, d["cal_bp"].values, d["c14_error"].values)
    return CalibrationCurve(name=name, cal_bp=grid, c14_age=mu, c14_error=sd)


def read_curve_file(path: Union[str, Path], name: Optional[str] = None) -> CalibrationCurve:
    """Read an IntCal-format .14c file (comma separated, '#' comments) or a csv with a header row."""
    path = Path(path)
    name = name or path.stem.lower()
    if path.suffix.lower() == ".14c":
        df = pd.read_csv(path, comment="#", header=None, skipinitialspace=True)
        df = df.iloc[:, : len(_INTCAL_COLUMNS)]
        df.columns = _INTCAL_COLUMNS[: df.shape[1]]
    else:
        df = pd.read_csv(path)
    return curve_from_frame(name, df)


def load_curve(name: str, curve_dir: Optional[Union[str, Path]] = None) -> CalibrationCurve:
    """
    Resolve a curve file <curve_dir>/<name>.14c or <name>.csv. Cached per (name, directory).
    Raises CurveNotFoundError if neither exists.
    """
    directory = Path(curve_dir) if curve_dir is not None else _configured_curve_dir()
    key = (name.lower(), str(directory))
    if key in _FILE_CACHE:
        return _FILE_CACHE[key]
    for suffix in (".14c", ".csv"):
        candidate = directory / f"{name.lower()}{suffix}"
        if candidate.is_file():
            curve = read_curve_file(candidate, name=name.lower())
            logger.info("Loaded calibration curve %s from %s (%d years)", name, candidate, len(curve))
            _FILE_CACHE[key] = curve
            return curve
    raise CurveNotFoundError(
        f"Calibration curve {name!r} not found in {directory}. "
        f"Place {name.lower()}.14c there or set RADIOCARBON_CURVE_DIR."
    )


def register_curve(curve: CalibrationCurve) -> None:
    """Make an in-memory curve resolvable by name (takes precedence over files)."""
    _REGISTRY[curve.name.lower()] = curve


def unregister_curve(name: str) -> None:
    _REGISTRY.pop(name.lower(), None)


def get_curve(curve: Union[str, CalibrationCurve]) -> CalibrationCurve:
    """Resolve a curve name or pass a CalibrationCurve through."""
    if isinstance(curve, CalibrationCurve):
        return curve
    key = str(curve).lower()
    if key in _REGISTRY:
        return _REGISTRY[key]
    return load_curve(key)


def linear_curve(
    name: str = "linear",
    cal_range: Tuple[int, int] = (12000, 0),
    slope: float = 1.0,
    offset: float = 0.0,
    error: float = 10.0,
) -> CalibrationCurve:
    """Synthetic curve with c14_age = offset + slope * cal_bp and constant error. For demos and tests."""
    start, end = cal_range
    grid = np.arange(start, end - 1, -1, dtype=float)
    return CalibrationCurve(
        name=name,
        cal_bp=grid,
        c14_age=offset + slope * grid,
        c14_error=np.full(grid.shape, float(error)),
    )
