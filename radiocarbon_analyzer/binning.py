"""
Site-level binning of dates: clusters dates from the same site that are close in time so that
intensively dated sites do not dominate summed probability distributions.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage

from .calibration import CalDates
from .core.errors import InputValidationError


def bin_prep(
    sites: Sequence,
    ages: Union[Sequence[float], CalDates],
    h: float,
) -> np.ndarray:
    """
    Bin labels "<site>_<k>" from complete-linkage clustering of ages within each site, cut at height h.

    ages may be 14C ages or a CalDates object (clusters on calibrated medians).
    """
    if isinstance(ages, CalDates):
        values = ages.median()
    else:
        values = np.asarray(ages, dtype=float)
    sites_arr = np.asarray(sites, dtype=object)
    if sites_arr.size != values.size:
        raise InputValidationError(f"sites has length {sites_arr.size}, ages has length {values.size}")
    if h < 0:
        raise InputValidationError(f"h must be >= 0, got {h}")
    labels = np.empty(values.size, dtype=object)
    for site in pd.unique(sites_arr):
        idx = np.flatnonzero(sites_arr == site)
        if idx.size == 1:
            labels[idx] = f"{site}_1"
            continue
        z = linkage(values[idx].reshape(-1, 1), method="complete")
        clusters = fcluster(z, t=h, criterion="distance")
        labels[idx] = [f"{site}_{c}" for c in clusters]
    return labels


def bin_weights(bins: Optional[Sequence], n: int) -> np.ndarray:
    """Per-date weight 1 / (dates in the same bin); all ones when bins is None."""
    if bins is None:
        return np.ones(n)
    labels = pd.Series(np.asarray(bins, dtype=object)).astype(str)
    if len(labels) != n:
        raise InputValidationError(f"bins has length {len(labels)}, expected {n}")
    return (1.0 / labels.map(labels.value_counts())).to_numpy(dtype=float)


def bin_medians(caldates: CalDates, bins: Sequence) -> pd.DataFrame:
    """Median calendar date of each bin's summed distribution."""
    bins_arr = np.asarray(bins, dtype=object)
    if bins_arr.size != len(caldates):
        raise InputValidationError(f"bins has length {bins_arr.size}, expected {len(caldates)}")
    rows = []
    years = caldates.cal_bp[::-1]
    for b in pd.unique(bins_arr):
        dens = caldates.probs[bins_arr == b].sum(axis=0)[::-1]
        cum = np.cumsum(dens)
        if cum[-1] <= 0:
            med = np.nan
        else:
            med = float(years[min(int(np.searchsorted(cum, 0.5 * cum[-1])), len(years) - 1)])
        rows.append({"bin": b, "n_dates": int((bins_arr == b).sum()), "median_bp": med})
    return pd.DataFrame(rows)
