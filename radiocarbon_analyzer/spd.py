"""
Summed probability distributions (SPD) of calibrated dates over a calendar time range.
Optional site binning, per-date normalisation inside the range, running-mean smoothing and
unit-area normalisation. The vector helpers are shared with the Monte-Carlo tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .binning import bin_weights
from .calibration import CalDates, _check_time_range
from .core.errors import InputValidationError

logger = logging.getLogger(__name__)


@dataclass
class SPD:
    """Summed probability distribution: grid has columns cal_bp (descending) and pr_dens."""

    grid: pd.DataFrame
    time_range: Tuple[int, int]
    n_dates: int
    n_bins: int
    runm: Optional[int] = None
    datenormalised: bool = False
    spdnormalised: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def cal_bp(self) -> np.ndarray:
        return self.grid["cal_bp"].to_numpy()

    @property
    def pr_dens(self) -> np.ndarray:
        return self.grid["pr_dens"].to_numpy(dtype=float)

    def total(self) -> float:
        return float(self.grid["pr_dens"].sum())

    def at(self, year: int) -> float:
        start = self.time_range[0]
        j = start - int(year)
        if j < 0 or j >= len(self.grid):
            raise InputValidationError(f"year {year} outside SPD time range {self.time_range}")
        return float(self.grid["pr_dens"].iloc[j])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_range": list(self.time_range),
            "n_dates": self.n_dates,
            "n_bins": self.n_bins,
            "runm": self.runm,
            "datenormalised": self.datenormalised,
            "spdnormalised": self.spdnormalised,
            "total": self.total(),
        }


def time_grid(time_range: Tuple[int, int]) -> np.ndarray:
    start, end = _check_time_range(time_range)
    return np.arange(start, end - 1, -1)


def running_mean(x: np.ndarray, runm: Optional[int]) -> np.ndarray:
    """
    Centred running mean along the last axis. Near the edges the window shrinks to the
    available values (same as pandas rolling(center=True, min_periods=1)).
    """
    if not runm or runm <= 1:
        return x
    x = np.asarray(x, dtype=float)
    n = x.shape[-1]
    lo = (runm - 1) // 2
    hi = runm // 2
    pad = [(0, 0)] * (x.ndim - 1) + [(1, 0)]
    cs = np.pad(np.cumsum(x, axis=-1), pad)
    j = np.arange(n)
    left = np.clip(j - hi, 0, n)
    right = np.clip(j + lo + 1, 0, n)
    return (cs[..., right] - cs[..., left]) / (right - left)


def sum_dates(
    probs: np.ndarray,
    weights: Optional[np.ndarray] = None,
    datenormalised: bool = False,
    runm: Optional[int] = None,
    spdnormalised: bool = False,
) -> np.ndarray:
    """SPD vector from a dates x years probability matrix already cut to the time range."""
    p = probs
    if datenormalised:
        totals = p.sum(axis=1, keepdims=True)
        p = np.divide(p, totals, out=np.zeros_like(p), where=totals > 0)
    if weights is None:
        out = p.sum(axis=0)
    else:
        out = weights @ p
    out = running_mean(out, runm)
    if spdnormalised:
        s = out.sum()
        if s > 0:
            out = out / s
    return out


def spd(
    caldates: CalDates,
    time_range: Tuple[int, int],
    bins: Optional[Sequence] = None,
    datenormalised: bool = False,
    runm: Optional[int] = None,
    spdnormalised: bool = False,
) -> SPD:
    """
    Sum calibrated dates over time_range (start, end) in years BP.

    Within a bin, dates are summed and divided by the number of dates in the bin; the SPD is the
    sum over bins. datenormalised rescales each date to unit mass inside time_range before summing.
    """
    grid = time_grid(time_range)
    probs = caldates.on_grid(time_range)
    inside = probs.sum(axis=1)
    outside = int((inside <= 0).sum())
    if outside:
        logger.warning("%d of %d dates have no probability mass inside %s", outside, len(caldates), time_range)
    weights = bin_weights(bins, len(caldates))
    n_bins = len(pd.unique(np.asarray(bins, dtype=object))) if bins is not None else len(caldates)
    dens = sum_dates(probs, weights, datenormalised=datenormalised, runm=runm, spdnormalised=spdnormalised)
    return SPD(
        grid=pd.DataFrame({"cal_bp": grid, "pr_dens": dens}),
        time_range=(int(grid[0]), int(grid[-1])),
        n_dates=len(caldates),
        n_bins=n_bins,
        runm=runm,
        datenormalised=datenormalised,
        spdnormalised=spdnormalised,
    )


def stack_spd(
    caldates: CalDates,
    group: Sequence,
    time_range: Tuple[int, int],
    bins: Optional[Sequence] = None,
    datenormalised: bool = False,
    runm: Optional[int] = None,
) -> Dict[Any, SPD]:
    """One SPD per group label (e.g. site type or region)."""
    group_arr = np.asarray(group, dtype=object)
    if group_arr.size != len(caldates):
        raise InputValidationError(f"group has length {group_arr.size}, expected {len(caldates)}")
    bins_arr = np.asarray(bins, dtype=object) if bins is not None else None
    out: Dict[Any, SPD] = {}
    for g in pd.unique(group_arr):
        idx = np.flatnonzero(group_arr == g)
        out[g] = spd(
            caldates[idx],
            time_range,
            bins=bins_arr[idx] if bins_arr is not None else None,
            datenormalised=datenormalised,
            runm=runm,
        )
    return out


def stack_frame(stack: Dict[Any, SPD]) -> pd.DataFrame:
    """Wide table: cal_bp plus one pr_dens column per group."""
    frames = []
    for g, s in stack.items():
        frames.append(s.grid.set_index("cal_bp")["pr_dens"].rename(str(g)))
    return pd.concat(frames, axis=1).reset_index()
