"""
Mark permutation test: do the SPDs of labelled groups of dates (regions, site types) differ more
than random reassignment of the labels would produce? Labels are permuted at bin level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .calibration import CalDates
from .config import default_n_workers
from .core.errors import InputValidationError
from .core.parallel import run_simulations
from .envelope import Envelope, envelope_test
from .rng import SALT_PERM_TEST, run_key_from_seed
from .spd import running_mean, time_grid

logger = logging.getLogger(__name__)


@dataclass
class PermTestResult:
    groups: List[Any]
    envelopes: Dict[Any, Envelope]
    n_sim: int
    time_range: Tuple[int, int]
    n_bins: Dict[Any, int]

    @property
    def p_values(self) -> Dict[Any, float]:
        return {g: env.p_value for g, env in self.envelopes.items()}

    def observed_frame(self) -> pd.DataFrame:
        """Wide table: cal_bp plus the observed SPD of each group."""
        out = pd.DataFrame({"cal_bp": time_grid(self.time_range)})
        for g, env in self.envelopes.items():
            out[str(g)] = env.frame["observed"].to_numpy()
        return out

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"n_sim": self.n_sim, "time_range": list(self.time_range), "groups": {}}
        for g, env in self.envelopes.items():
            periods = env.periods()
            out["groups"][str(g)] = {
                "n_bins": self.n_bins[g],
                "global_p_value": env.p_value,
                "booms": [[s, e] for sig, s, e in periods if sig == "boom"],
                "busts": [[s, e] for sig, s, e in periods if sig == "bust"],
            }
        return out


def _bin_matrix(
    probs: np.ndarray, marks: np.ndarray, bins: Optional[Sequence]
) -> Tuple[np.ndarray, np.ndarray]:
    """Collapse dates into bins (mean of member dates) and return (bin curves, bin marks)."""
    if bins is None:
        return probs, marks
    bins_arr = np.asarray(bins, dtype=object)
    if bins_arr.size != probs.shape[0]:
        raise InputValidationError(f"bins has length {bins_arr.size}, expected {probs.shape[0]}")
    labels = pd.unique(bins_arr)
    curves = np.zeros((len(labels), probs.shape[1]))
    bin_marks = np.empty(len(labels), dtype=object)
    for k, b in enumerate(labels):
        idx = np.flatnonzero(bins_arr == b)
        member_marks = pd.unique(marks[idx])
        if len(member_marks) > 1:
            raise InputValidationError(f"bin {b!r} mixes marks {list(member_marks)}; bins must nest within marks")
        curves[k] = probs[idx].mean(axis=0)
        bin_marks[k] = member_marks[0]
    return curves, bin_marks


def _group_spds(onehot: np.ndarray, curves: np.ndarray, runm: Optional[int], spdnormalised: bool) -> np.ndarray:
    out = running_mean(onehot @ curves, runm)
    if spdnormalised:
        totals = out.sum(axis=1, keepdims=True)
        out = np.divide(out, totals, out=np.zeros_like(out), where=totals > 0)
    return out


def _simulate_permutations(
    rng: np.random.Generator,
    n: int,
    *,
    curves: np.ndarray,
    codes: np.ndarray,
    n_groups: int,
    runm: Optional[int],
    spdnormalised: bool,
) -> np.ndarray:
    out = np.zeros((n, n_groups, curves.shape[1]))
    for k in range(n):
        perm = rng.permutation(codes)
        onehot = np.zeros((n_groups, codes.size))
        onehot[perm, np.arange(codes.size)] = 1.0
        out[k] = _group_spds(onehot, curves, runm, spdnormalised)
    return out


def perm_test(
    caldates: CalDates,
    marks: Sequence,
    time_range: Tuple[int, int],
    n_sim: int,
    bins: Optional[Sequence] = None,
    runm: Optional[int] = None,
    datenormalised: bool = False,
    spdnormalised: bool = True,
    alpha: float = 0.05,
    seed: Optional[int] = None,
    run_key: Optional[str] = None,
    n_workers: Optional[int] = None,
) -> PermTestResult:
    """
    Compare each group's SPD with SPDs obtained after randomly permuting group marks across bins.
    spdnormalised (default) compares shapes rather than sample sizes.
    """
    marks_arr = np.asarray(marks, dtype=object)
    if marks_arr.size != len(caldates):
        raise InputValidationError(f"marks has length {marks_arr.size}, expected {len(caldates)}")
    if n_sim < 2:
        raise InputValidationError(f"n_sim must be >= 2, got {n_sim}")
    probs = caldates.on_grid(time_range)
    if datenormalised:
        totals = probs.sum(axis=1, keepdims=True)
        probs = np.divide(probs, totals, out=np.zeros_like(probs), where=totals > 0)
    curves, bin_marks = _bin_matrix(probs, marks_arr, bins)
    groups = list(pd.unique(bin_marks))
    if len(groups) < 2:
        raise InputValidationError(f"need at least two groups to compare, got {groups}")
    codes = np.array([groups.index(m) for m in bin_marks])
    onehot = np.zeros((len(groups), codes.size))
    onehot[codes, np.arange(codes.size)] = 1.0
    observed = _group_spds(onehot, curves, runm, spdnormalised)

    if run_key is None:
        run_key = run_key_from_seed(seed)
    workers = default_n_workers() if n_workers is None else max(1, int(n_workers))
    logger.info("perm_test: %d groups, %d bins, n_sim=%d, n_workers=%d", len(groups), codes.size, n_sim, workers)
    sims = run_simulations(
        _simulate_permutations,
        n_sim,
        run_key,
        SALT_PERM_TEST,
        n_workers=workers,
        curves=curves,
        codes=codes,
        n_groups=len(groups),
        runm=runm,
        spdnormalised=spdnormalised,
    )
    grid = time_grid(time_range)
    envelopes = {g: envelope_test(grid, observed[k], sims[:, k, :], alpha=alpha) for k, g in enumerate(groups)}
    n_bins = {g: int((codes == k).sum()) for k, g in enumerate(groups)}
    return PermTestResult(
        groups=groups,
        envelopes=envelopes,
        n_sim=n_sim,
        time_range=(int(grid[0]), int(grid[-1])),
        n_bins=n_bins,
    )
