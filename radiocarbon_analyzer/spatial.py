"""
Spatial permutation test of local growth rates.

Site-level SPDs are summed within time blocks, smoothed over space with distance-based weights,
converted to growth rates between consecutive blocks and compared with rates obtained after
randomly permuting site SPDs across locations. Per-location p-values are FDR-adjusted (BH)
within each transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .binning import bin_weights
from .calibration import CalDates
from .config import default_n_workers, spatial_h, spatial_kernel, spatial_rate
from .core.errors import InputValidationError
from .core.parallel import run_simulations
from .multiple_testing import adjust
from .rng import SALT_SP_PERM_TEST, run_key_from_seed

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
KERNELS = ("gaussian", "fixed")
RATES = ("geometric", "percentage")


@dataclass
class SpatialWeights:
    sites: List[Any]
    distances: np.ndarray
    weights: np.ndarray
    kernel: str
    h: float


def great_circle_distances(lon: Sequence[float], lat: Sequence[float]) -> np.ndarray:
    """Pairwise haversine distances in km between points given in decimal degrees."""
    lon_r = np.radians(np.asarray(lon, dtype=float))
    lat_r = np.radians(np.asarray(lat, dtype=float))
    dlon = lon_r[:, None] - lon_r[None, :]
    dlat = lat_r[:, None] - lat_r[None, :]
    a = np.sin(dlat / 2) ** 2 + np.cos(lat_r[:, None]) * np.cos(lat_r[None, :]) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def spweights(
    lon: Sequence[float],
    lat: Sequence[float],
    h: Optional[float] = None,
    kernel: Optional[str] = None,
    sites: Optional[Sequence] = None,
) -> SpatialWeights:
    """
    Distance-based spatial weights between locations.
    gaussian: w = exp(-d^2 / h^2); fixed: w = 1 if d <= h else 0 (h in km).
    """
    h = spatial_h() if h is None else float(h)
    kernel = spatial_kernel() if kernel is None else kernel
    if kernel not in KERNELS:
        raise InputValidationError(f"kernel must be one of {KERNELS}, got {kernel!r}")
    if h <= 0:
        raise InputValidationError(f"h must be positive, got {h}")
    lon_arr = np.asarray(lon, dtype=float)
    lat_arr = np.asarray(lat, dtype=float)
    if lon_arr.shape != lat_arr.shape:
        raise InputValidationError("lon and lat must have equal length")
    if np.any(np.abs(lat_arr) > 90) or np.any(np.abs(lon_arr) > 180):
        raise InputValidationError("coordinates must be decimal degrees (|lat| <= 90, |lon| <= 180)")
    d = great_circle_distances(lon_arr, lat_arr)
    if kernel == "gaussian":
        w = np.exp(-(d**2) / h**2)
    else:
        w = (d <= h).astype(float)
    site_ids = list(sites) if sites is not None else list(range(lon_arr.size))
    return SpatialWeights(sites=site_ids, distances=d, weights=w, kernel=kernel, h=h)


def growth_rates(block_sums: np.ndarray, mids: np.ndarray, rate: str) -> np.ndarray:
    """
    Growth rate between consecutive blocks along the last axis. NaN where the earlier block is 0.
    geometric: (b2 / b1) ** (1 / dt) - 1 per year; percentage: (b2 - b1) / b1 * 100.
    """
    b1 = block_sums[..., :-1]
    b2 = block_sums[..., 1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(b1 > 0, b2 / b1, np.nan)
        if rate == "geometric":
            dt = np.abs(np.diff(mids))
            return ratio ** (1.0 / dt) - 1.0
        if rate == "percentage":
            return (ratio - 1.0) * 100.0
    raise InputValidationError(f"rate must be one of {RATES}, got {rate!r}")


def block_index(breaks: Sequence[int]) -> np.ndarray:
    """
    Block of each year breaks[0], breaks[0] - 1, ..., breaks[-1] + 1. Block k holds the years
    breaks[k] >= t > breaks[k + 1], so it is breaks[k] - breaks[k + 1] years long.
    """
    br = np.asarray(breaks, dtype=int)
    years = np.arange(br[0], br[-1], -1)
    return np.searchsorted(-br[1:], -years, side="right")


def _simulate_spatial(
    rng: np.random.Generator,
    n: int,
    *,
    block_sums: np.ndarray,
    weights: np.ndarray,
    mids: np.ndarray,
    rate: str,
) -> np.ndarray:
    n_sites = block_sums.shape[0]
    out = np.zeros((n, n_sites, block_sums.shape[1] - 1))
    for k in range(n):
        perm = rng.permutation(n_sites)
        out[k] = growth_rates(weights @ block_sums[perm], mids, rate)
    return out


def _tail_p(sims: np.ndarray, obs: np.ndarray, upper: bool) -> np.ndarray:
    """(#{sim beyond obs} + 1) / (#{finite sims} + 1), NaN where obs is NaN."""
    finite = np.isfinite(sims)
    with np.errstate(invalid="ignore"):
        beyond = (sims >= obs[None]) if upper else (sims <= obs[None])
    count = np.sum(beyond & finite, axis=0)
    n_valid = np.sum(finite, axis=0)
    p = (count + 1.0) / (n_valid + 1.0)
    return np.where(np.isfinite(obs), p, np.nan)


@dataclass
class SpPermTestResult:
    """
    frame: one row per (site, transition) with observed local rate, p_hi/p_lo, q_hi/q_lo, signal.
    block_sums: weighted local block sums (sites x blocks). global_rates: rate of the pooled SPD.
    """

    frame: pd.DataFrame
    block_sums: pd.DataFrame
    global_rates: pd.DataFrame
    breaks: List[int]
    n_sim: int
    rate: str
    kernel: str
    h: float
    q: float

    def summary(self) -> Dict[str, Any]:
        counts = self.frame.groupby(["transition", "signal"]).size().unstack(fill_value=0)
        return {
            "n_sim": self.n_sim,
            "breaks": self.breaks,
            "rate": self.rate,
            "kernel": self.kernel,
            "h": self.h,
            "q": self.q,
            "n_sites": int(self.frame["site"].nunique()),
            "signals": {str(t): {str(k): int(v) for k, v in row.items()} for t, row in counts.iterrows()},
        }


def _locations_table(locations: pd.DataFrame) -> pd.DataFrame:
    missing = [c for c in ("site", "lon", "lat") if c not in locations.columns]
    if missing:
        raise InputValidationError(f"locations missing columns: {missing}")
    return locations.drop_duplicates("site").reset_index(drop=True)


def sp_perm_test(
    caldates: CalDates,
    sites: Sequence,
    locations: pd.DataFrame,
    breaks: Sequence[int],
    n_sim: int,
    h: Optional[float] = None,
    kernel: Optional[str] = None,
    rate: Optional[str] = None,
    bins: Optional[Sequence] = None,
    datenormalised: bool = False,
    q: float = 0.05,
    seed: Optional[int] = None,
    run_key: Optional[str] = None,
    n_workers: Optional[int] = None,
) -> SpPermTestResult:
    """
    Test whether local growth rates deviate from the rates expected when site SPDs are
    randomly reassigned to locations.

    breaks: block boundaries in years BP, oldest first (e.g. [8000, 7500, 7000, 6500]).
    locations: one row per site with columns site, lon, lat.
    """
    rate = spatial_rate() if rate is None else rate
    if rate not in RATES:
        raise InputValidationError(f"rate must be one of {RATES}, got {rate!r}")
    br = [int(b) for b in breaks]
    if len(br) < 3 or any(b1 <= b2 for b1, b2 in zip(br, br[1:])):
        raise InputValidationError(f"breaks must be >= 3 strictly decreasing years BP, got {list(breaks)}")
    if n_sim < 2:
        raise InputValidationError(f"n_sim must be >= 2, got {n_sim}")
    sites_arr = np.asarray(sites, dtype=object)
    if sites_arr.size != len(caldates):
        raise InputValidationError(f"sites has length {sites_arr.size}, expected {len(caldates)}")
    loc = _locations_table(locations)
    unknown = set(pd.unique(sites_arr)) - set(loc["site"])
    if unknown:
        raise InputValidationError(f"sites without locations: {sorted(map(str, unknown))[:10]}")
    loc = loc[loc["site"].isin(set(pd.unique(sites_arr)))].reset_index(drop=True)
    site_ids = loc["site"].tolist()

    time_range = (br[0], br[-1])
    # the youngest break year closes the last block and is not counted
    probs = caldates.on_grid(time_range)[:, :-1]
    if datenormalised:
        totals = probs.sum(axis=1, keepdims=True)
        probs = np.divide(probs, totals, out=np.zeros_like(probs), where=totals > 0)
    probs = probs * bin_weights(bins, len(caldates))[:, None]

    block_idx = block_index(br)
    n_blocks = len(br) - 1
    site_index = {s: i for i, s in enumerate(site_ids)}
    date_site = np.array([site_index[s] for s in sites_arr])
    site_curves = np.zeros((len(site_ids), block_idx.size))
    np.add.at(site_curves, date_site, probs)
    block_sums = np.zeros((len(site_ids), n_blocks))
    for k in range(n_blocks):
        block_sums[:, k] = site_curves[:, block_idx == k].sum(axis=1)
    mids = np.array([(br[k] + br[k + 1]) / 2.0 for k in range(n_blocks)])

    sw = spweights(loc["lon"], loc["lat"], h=h, kernel=kernel, sites=site_ids)
    local = sw.weights @ block_sums
    obs_rates = growth_rates(local, mids, rate)
    global_rates = growth_rates(block_sums.sum(axis=0), mids, rate)

    if run_key is None:
        run_key = run_key_from_seed(seed)
    workers = default_n_workers() if n_workers is None else max(1, int(n_workers))
    logger.info(
        "sp_perm_test: %d sites, %d blocks, %s kernel h=%.1f km, n_sim=%d, n_workers=%d",
        len(site_ids),
        n_blocks,
        sw.kernel,
        sw.h,
        n_sim,
        workers,
    )
    sims = run_simulations(
        _simulate_spatial,
        n_sim,
        run_key,
        SALT_SP_PERM_TEST,
        n_workers=workers,
        block_sums=block_sums,
        weights=sw.weights,
        mids=mids,
        rate=rate,
    )
    p_hi = _tail_p(sims, obs_rates, upper=True)
    p_lo = _tail_p(sims, obs_rates, upper=False)

    labels = [f"{br[k]}-{br[k + 1]} to {br[k + 1]}-{br[k + 2]}" for k in range(n_blocks - 1)]
    rows = []
    for i, s in enumerate(site_ids):
        for k, lab in enumerate(labels):
            rows.append(
                {
                    "site": s,
                    "lon": float(loc["lon"].iloc[i]),
                    "lat": float(loc["lat"].iloc[i]),
                    "transition": lab,
                    "obs_rate": obs_rates[i, k],
                    "p_hi": p_hi[i, k],
                    "p_lo": p_lo[i, k],
                }
            )
    frame = pd.DataFrame(rows)
    frame["q_hi"] = np.nan
    frame["q_lo"] = np.nan
    for _, idx in frame.groupby("transition").groups.items():
        frame.loc[idx, "q_hi"] = adjust(frame.loc[idx, "p_hi"], method="bh", q=q)[0]
        frame.loc[idx, "q_lo"] = adjust(frame.loc[idx, "p_lo"], method="bh", q=q)[0]
    frame["signal"] = np.where(frame["q_hi"] <= q, "positive", np.where(frame["q_lo"] <= q, "negative", ""))

    block_cols = [f"{br[k]}-{br[k + 1]}" for k in range(n_blocks)]
    block_frame = pd.DataFrame(local, columns=block_cols)
    block_frame.insert(0, "site", site_ids)
    return SpPermTestResult(
        frame=frame,
        block_sums=block_frame,
        global_rates=pd.DataFrame({"transition": labels, "rate": global_rates}),
        breaks=br,
        n_sim=n_sim,
        rate=rate,
        kernel=sw.kernel,
        h=sw.h,
        q=q,
    )
