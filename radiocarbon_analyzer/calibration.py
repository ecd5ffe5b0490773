"""
Radiocarbon calibration: convert 14C ages into probability distributions over calendar years BP.
Back-calibration (calendar -> 14C) for simulation. HPD intervals, medians and summary tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import norm

from .config import default_curve, default_eps
from .core.errors import CalibrationError, InputValidationError
from .curves import CalibrationCurve, get_curve

logger = logging.getLogger(__name__)

# Dates per block when building density matrices; bounds peak memory to ~block x curve length
_BLOCK = 256
# Densities beyond this many combined sigmas from the curve are treated as zero
_TAIL_SIGMAS = 8.0

CurveLike = Union[str, CalibrationCurve]


@dataclass
class CalDates:
    """
    Calibrated dates on a shared annual grid.
    probs[i, j] is the probability (normalised) or density (unnormalised) of date i at cal_bp[j].
    cal_bp is descending (oldest first). meta has one row per date.
    """

    cal_bp: np.ndarray
    probs: np.ndarray
    meta: pd.DataFrame
    normalised: bool = True
    curves: Dict[str, CalibrationCurve] = field(default_factory=dict)

    def __len__(self) -> int:
        return self.probs.shape[0]

    def __getitem__(self, idx) -> "CalDates":
        if isinstance(idx, (int, np.integer)):
            idx = [int(idx)]
        probs = self.probs[idx]
        meta = self.meta.iloc[idx].reset_index(drop=True)
        return CalDates(self.cal_bp, probs, meta, self.normalised, self.curves)

    @property
    def ages(self) -> np.ndarray:
        return self.meta["age"].to_numpy(dtype=float)

    @property
    def errors(self) -> np.ndarray:
        return self.meta["error"].to_numpy(dtype=float)

    def grid(self, i: int) -> pd.DataFrame:
        """Non-zero part of date i as a (cal_bp, pr_dens) table."""
        row = self.probs[i]
        nz = row > 0
        return pd.DataFrame({"cal_bp": self.cal_bp[nz].astype(int), "pr_dens": row[nz]})

    def restrict(self, time_range: Tuple[int, int]) -> "CalDates":
        """Crop the grid to [start, end] BP. Mass outside the range is dropped, not re-normalised."""
        start, end = _check_time_range(time_range)
        mask = (self.cal_bp <= start) & (self.cal_bp >= end)
        return CalDates(self.cal_bp[mask], self.probs[:, mask], self.meta.copy(), self.normalised, self.curves)

    def on_grid(self, time_range: Tuple[int, int]) -> np.ndarray:
        """
        Probabilities aligned to the full annual grid start..end (descending), zero-filled where
        the calibration grid does not reach.
        """
        start, end = _check_time_range(time_range)
        target = np.arange(start, end - 1, -1)
        out = np.zeros((len(self), len(target)))
        src_idx = (start - self.cal_bp).astype(int)
        ok = (src_idx >= 0) & (src_idx < len(target))
        out[:, src_idx[ok]] = self.probs[:, ok]
        return out

    def median(self) -> np.ndarray:
        """Median calendar date (BP) per date."""
        out = np.full(len(self), np.nan)
        # cumulate from youngest so ties resolve toward the younger year
        rev = self.probs[:, ::-1]
        cum = np.cumsum(rev, axis=1)
        totals = cum[:, -1]
        years = self.cal_bp[::-1]
        for i in range(len(self)):
            if totals[i] <= 0:
                continue
            j = int(np.searchsorted(cum[i], 0.5 * totals[i]))
            out[i] = years[min(j, len(years) - 1)]
        return out

    def hpd(self, prob: float = 0.95) -> List[List[Tuple[int, int, float]]]:
        """
        Highest posterior density regions per date as (start_bp, end_bp, mass) tuples,
        start older than end. mass is relative to the date's total on this grid.
        """
        if not 0 < prob <= 1:
            raise InputValidationError(f"prob must be in (0, 1], got {prob}")
        out: List[List[Tuple[int, int, float]]] = []
        for i in range(len(self)):
            row = self.probs[i]
            total = row.sum()
            if total <= 0:
                out.append([])
                continue
            order = np.argsort(row)[::-1]
            cum = np.cumsum(row[order]) / total
            n_keep = int(np.searchsorted(cum, prob)) + 1
            keep = np.zeros(row.shape, dtype=bool)
            keep[order[:n_keep]] = True
            out.append(_runs(self.cal_bp, row / total, keep))
        return out

    def summary(self, prob: float = 0.95) -> pd.DataFrame:
        """One row per date: identifiers, 14C age, median BP and HPD ranges."""
        med = self.median()
        ranges = self.hpd(prob)
        rows = []
        for i in range(len(self)):
            m = self.meta.iloc[i]
            rows.append(
                {
                    "date_id": m.get("date_id", i),
                    "age": m["age"],
                    "error": m["error"],
                    "curve": m["curve"],
                    "median_bp": med[i],
                    f"hpd_{int(round(prob * 100))}": "; ".join(f"{s}-{e} ({p:.3f})" for s, e, p in ranges[i]),
                }
            )
        return pd.DataFrame(rows)

    def to_long(self) -> pd.DataFrame:
        """Long form (date_index, cal_bp, pr_dens) of all non-zero cells."""
        i, j = np.nonzero(self.probs)
        return pd.DataFrame({"date_index": i, "cal_bp": self.cal_bp[j].astype(int), "pr_dens": self.probs[i, j]})


def _runs(cal_bp: np.ndarray, dens: np.ndarray, keep: np.ndarray) -> List[Tuple[int, int, float]]:
    """Contiguous runs of kept years on a descending grid."""
    runs: List[Tuple[int, int, float]] = []
    idx = np.flatnonzero(keep)
    if idx.size == 0:
        return runs
    breaks = np.flatnonzero(np.diff(idx) > 1)
    starts = np.concatenate([[0], breaks + 1])
    ends = np.concatenate([breaks, [idx.size - 1]])
    for s, e in zip(starts, ends):
        a, b = idx[s], idx[e]
        runs.append((int(cal_bp[a]), int(cal_bp[b]), float(dens[a : b + 1].sum())))
    return runs


def _check_time_range(time_range: Tuple[int, int]) -> Tuple[int, int]:
    if time_range is None or len(time_range) != 2:
        raise InputValidationError(f"time_range must be (start, end), got {time_range!r}")
    start, end = int(time_range[0]), int(time_range[1])
    if start <= end:
        raise InputValidationError(f"time_range must run from older to younger BP (start > end), got {time_range}")
    return start, end


def _as_array(x, n: int, name: str) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(x, dtype=float))
    if arr.size == 1 and n > 1:
        arr = np.full(n, float(arr[0]))
    if arr.size != n:
        raise InputValidationError(f"{name} has length {arr.size}, expected {n}")
    return arr


def density_matrix(
    ages: np.ndarray,
    errors: np.ndarray,
    curve: CalibrationCurve,
    grid: np.ndarray,
    normalised: bool = True,
    eps: float = 0.0,
) -> np.ndarray:
    """
    Calibrated densities of ages on a calendar grid (descending years inside the curve range).
    Normalisation is over the whole curve, so mass outside grid is lost rather than redistributed.
    """
    mu_all, sd_all = curve.c14_age, curve.c14_error
    out = np.zeros((len(ages), len(grid)))
    if len(grid) == 0:
        return out
    for b0 in range(0, len(ages), _BLOCK):
        a = ages[b0 : b0 + _BLOCK]
        e = errors[b0 : b0 + _BLOCK]
        reach = _TAIL_SIGMAS * np.sqrt(e.max() ** 2 + sd_all.max() ** 2)
        active = np.flatnonzero((mu_all >= a.min() - reach) & (mu_all <= a.max() + reach))
        if active.size == 0:
            raise CalibrationError(f"date {b0} (age {a[0]:.0f}) lies outside curve {curve.name!r} {curve.c14_range}")
        sigma = np.sqrt(e[:, None] ** 2 + sd_all[active][None, :] ** 2)
        dens = norm.pdf(a[:, None], loc=mu_all[active][None, :], scale=sigma)
        totals = dens.sum(axis=1)
        empty = np.flatnonzero(~(totals > 0))
        if empty.size:
            k = int(empty[0])
            raise CalibrationError(
                f"date {b0 + k} (age {a[k]:.0f} +/- {e[k]:.0f}) lies outside curve {curve.name!r} {curve.c14_range}"
            )
        if normalised:
            dens = dens / totals[:, None]
        if eps > 0:
            dens[dens < eps] = 0.0
            if normalised:
                dens = dens / dens.sum(axis=1)[:, None]
        gpos = (grid[0] - curve.cal_bp[active]).astype(int)
        on_grid = (gpos >= 0) & (gpos < len(grid))
        out[b0 : b0 + len(a), gpos[on_grid]] = dens[:, on_grid]
    return out


def _mass_extent(
    ages: np.ndarray, errors: np.ndarray, names: np.ndarray, curves: Dict[str, CalibrationCurve]
) -> Tuple[int, int]:
    """Oldest and youngest calendar years where any date can carry non-negligible mass."""
    start, end = None, None
    for cname, cc in curves.items():
        rows = names == cname
        a, e = ages[rows], errors[rows]
        reach = _TAIL_SIGMAS * np.sqrt(e.max() ** 2 + cc.c14_error.max() ** 2)
        years = cc.cal_bp[(cc.c14_age >= a.min() - reach) & (cc.c14_age <= a.max() + reach)]
        if years.size == 0:
            raise CalibrationError(f"ages {a.min():.0f}-{a.max():.0f} lie outside curve {cname!r} {cc.c14_range}")
        start = int(years.max()) if start is None else max(start, int(years.max()))
        end = int(years.min()) if end is None else min(end, int(years.min()))
    return start, end


def calibrate(
    ages: Sequence[float],
    errors: Sequence[float],
    curves: Union[CurveLike, Sequence[CurveLike], None] = None,
    time_range: Optional[Tuple[int, int]] = None,
    normalised: bool = True,
    eps: Optional[float] = None,
    res_offsets: Union[float, Sequence[float]] = 0.0,
    res_errors: Union[float, Sequence[float]] = 0.0,
    ids: Optional[Sequence] = None,
) -> CalDates:
    """
    Calibrate 14C ages (yr BP, 1-sigma errors) against one curve or a per-date list of curves.

    Reservoir offsets shift the age (age - res_offset) and add res_error in quadrature.
    normalised: each date sums to 1 over its curve. Cells below eps are zeroed and normalised
    dates are rescaled to unit mass again.
    time_range (start, end) crops the returned grid; by default the grid spans every year where
    some date carries non-negligible mass.
    """
    ages_arr = np.atleast_1d(np.asarray(ages, dtype=float))
    n = ages_arr.size
    if n == 0:
        raise InputValidationError("no ages to calibrate")
    errors_arr = _as_array(errors, n, "errors")
    if not np.all(np.isfinite(ages_arr)):
        raise InputValidationError("ages must be finite")
    if not np.all(errors_arr > 0):
        raise InputValidationError("errors must be positive")
    offsets = _as_array(res_offsets, n, "res_offsets")
    res_err = _as_array(res_errors, n, "res_errors")
    eps = default_eps() if eps is None else float(eps)

    if curves is None:
        curves = default_curve()
    if isinstance(curves, (str, CalibrationCurve)):
        curve_list = [curves] * n
    else:
        curve_list = list(curves)
        if len(curve_list) != n:
            raise InputValidationError(f"curves has length {len(curve_list)}, expected {n}")
    resolved = {}
    names = []
    for c in curve_list:
        cc = get_curve(c)
        resolved[cc.name] = cc
        names.append(cc.name)
    names_arr = np.array(names, dtype=object)

    eff_ages = ages_arr - offsets
    eff_errors = np.sqrt(errors_arr**2 + res_err**2)

    if time_range is not None:
        start = max(cc.cal_range[0] for cc in resolved.values())
        end = min(cc.cal_range[1] for cc in resolved.values())
        t0, t1 = _check_time_range(time_range)
        start, end = min(start, t0), max(end, t1)
        if start <= end:
            raise InputValidationError(f"time_range {time_range} does not overlap the calibration curves")
    else:
        start, end = _mass_extent(eff_ages, eff_errors, names_arr, resolved)
    grid = np.arange(start, end - 1, -1, dtype=float)
    probs = np.zeros((n, len(grid)))
    for cname, cc in resolved.items():
        rows = np.flatnonzero(names_arr == cname)
        in_curve = (grid <= cc.cal_range[0]) & (grid >= cc.cal_range[1])
        lo, hi = cc.c14_range
        outside = rows[(eff_ages[rows] < lo) | (eff_ages[rows] > hi)]
        if outside.size:
            logger.warning(
                "%d date(s) fall outside the 14C range of %s (%.0f-%.0f); distributions will be truncated",
                outside.size,
                cname,
                lo,
                hi,
            )
        try:
            probs[np.ix_(rows, np.flatnonzero(in_curve))] = density_matrix(
                eff_ages[rows], eff_errors[rows], cc, grid[in_curve], normalised=normalised, eps=eps
            )
        except CalibrationError as e:
            raise CalibrationError(f"{e} (curve group {cname!r}, input rows {rows.tolist()[:10]})") from e

    meta = pd.DataFrame(
        {
            "date_id": list(ids) if ids is not None else np.arange(n),
            "age": ages_arr,
            "error": errors_arr,
            "curve": names,
            "res_offset": offsets,
            "res_error": res_err,
        }
    )
    logger.debug("Calibrated %d dates on %d-year grid (%d-%d BP)", n, len(grid), start, end)
    return CalDates(cal_bp=grid, probs=probs, meta=meta, normalised=normalised, curves=resolved)


def uncalibrate(
    cal_bp: Sequence[float],
    curve: Optional[CurveLike] = None,
    errors: Optional[Sequence[float]] = None,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """
    Back-calibrate calendar years BP to 14C ages on the curve mean.

    With rng: also draws random 14C ages from Normal(curve mean, sqrt(curve error^2 + error^2)),
    rounded to whole years (column rc14_age).
    """
    cc = get_curve(curve if curve is not None else default_curve())
    x = np.atleast_1d(np.asarray(cal_bp, dtype=float))
    lo, hi = cc.cal_range[1], cc.cal_range[0]
    if np.any((x < lo) | (x > hi)):
        raise CalibrationError(f"calendar years outside curve {cc.name!r} range {cc.cal_range}")
    mu, sd = cc.at(x)
    out = pd.DataFrame({"cal_bp": x, "c14_age": mu, "c14_error": sd})
    if rng is not None:
        err = np.zeros_like(x) if errors is None else _as_array(errors, x.size, "errors")
        out["rc14_age"] = np.round(rng.normal(mu, np.sqrt(sd**2 + err**2)))
    return out


def uncalibrate_distribution(
    cal_bp: Sequence[float],
    pr_dens: Sequence[float],
    curve: Optional[CurveLike] = None,
) -> pd.DataFrame:
    """
    Map a calendar-year density into 14C-age space through the curve (mean and error).
    Returns columns c14_age (integer grid) and pr_dens (sums to 1).
    """
    cc = get_curve(curve if curve is not None else default_curve())
    x = np.asarray(cal_bp, dtype=float)
    w = np.asarray(pr_dens, dtype=float)
    if x.shape != w.shape:
        raise InputValidationError("cal_bp and pr_dens must have equal length")
    keep = w > 0
    x, w = x[keep], w[keep]
    if x.size == 0:
        raise InputValidationError("pr_dens has no positive mass")
    mu, sd = cc.at(x)
    reach = 4.0 * sd.max()
    c14 = np.arange(np.floor(mu.min() - reach), np.ceil(mu.max() + reach) + 1)
    dens = np.zeros(c14.size)
    for b0 in range(0, x.size, _BLOCK):
        sl = slice(b0, b0 + _BLOCK)
        dens += (w[sl][:, None] * norm.pdf(c14[None, :], loc=mu[sl][:, None], scale=sd[sl][:, None])).sum(axis=0)
    dens = dens / dens.sum()
    return pd.DataFrame({"c14_age": c14, "pr_dens": dens})
