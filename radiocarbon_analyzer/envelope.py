"""
Simulation envelopes: per-year quantile bands of simulated SPDs, local boom/bust flags and a
global test statistic on standardised (z-score) curves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd

from .core.errors import SimulationError


@dataclass
class Envelope:
    """frame columns: cal_bp, observed, sim_mean, lo, hi, signal ('boom', 'bust' or '')."""

    frame: pd.DataFrame
    p_value: float
    obs_stat: float
    sim_stats: np.ndarray
    n_sim: int
    alpha: float

    def periods(self) -> List[Tuple[str, int, int]]:
        """Contiguous boom/bust periods as (signal, start_bp, end_bp)."""
        out: List[Tuple[str, int, int]] = []
        sig = self.frame["signal"].to_numpy()
        years = self.frame["cal_bp"].to_numpy()
        j = 0
        while j < len(sig):
            if sig[j]:
                k = j
                while k + 1 < len(sig) and sig[k + 1] == sig[j]:
                    k += 1
                out.append((str(sig[j]), int(years[j]), int(years[k])))
                j = k + 1
            else:
                j += 1
        return out


def _zscores(x: np.ndarray, mean: np.ndarray, sd: np.ndarray) -> np.ndarray:
    return np.divide(x - mean, sd, out=np.zeros(np.broadcast(x, mean).shape), where=sd > 0)


def _exceedance(z: np.ndarray, zlo: np.ndarray, zhi: np.ndarray) -> np.ndarray:
    above = np.where(z > zhi, z - zhi, 0.0)
    below = np.where(z < zlo, zlo - z, 0.0)
    return above.sum(axis=-1) + below.sum(axis=-1)


def envelope_test(cal_bp: np.ndarray, observed: np.ndarray, sims: np.ndarray, alpha: float = 0.05) -> Envelope:
    """
    Compare an observed curve with simulated curves (n_sim x years).

    Global statistic: total z-score exceedance outside the per-year [alpha/2, 1-alpha/2] z band.
    p_value = (#{sim_stat >= obs_stat} + 1) / (n_sim + 1).
    """
    sims = np.asarray(sims, dtype=float)
    observed = np.asarray(observed, dtype=float)
    if sims.ndim != 2 or sims.shape[0] < 2:
        raise SimulationError(f"need at least 2 simulated curves, got shape {sims.shape}")
    if sims.shape[1] != observed.size:
        raise SimulationError(f"simulated curves have {sims.shape[1]} years, observed has {observed.size}")
    q_lo, q_hi = alpha / 2.0, 1.0 - alpha / 2.0
    lo = np.quantile(sims, q_lo, axis=0)
    hi = np.quantile(sims, q_hi, axis=0)
    mean = sims.mean(axis=0)
    sd = sims.std(axis=0, ddof=1)
    z_sims = _zscores(sims, mean, sd)
    z_obs = _zscores(observed, mean, sd)
    zlo = np.quantile(z_sims, q_lo, axis=0)
    zhi = np.quantile(z_sims, q_hi, axis=0)
    obs_stat = float(_exceedance(z_obs, zlo, zhi))
    sim_stats = _exceedance(z_sims, zlo, zhi)
    p_value = float((np.sum(sim_stats >= obs_stat) + 1) / (sims.shape[0] + 1))
    signal = np.where(observed > hi, "boom", np.where(observed < lo, "bust", ""))
    frame = pd.DataFrame(
        {"cal_bp": cal_bp, "observed": observed, "sim_mean": mean, "lo": lo, "hi": hi, "signal": signal}
    )
    return Envelope(frame=frame, p_value=p_value, obs_stat=obs_stat, sim_stats=sim_stats, n_sim=sims.shape[0], alpha=alpha)
