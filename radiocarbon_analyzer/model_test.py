"""
Monte-Carlo test of an SPD against a fitted growth model (exponential, linear, uniform or custom).
Simulated datasets are drawn from the model, calibrated, summed and compared with
the observed SPD through a quantile envelope and a global z-score statistic. Research-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.optimize import curve_fit

from .calibration import CalDates, density_matrix, uncalibrate, uncalibrate_distribution
from .config import default_eps, default_n_workers
from .core.errors import InputValidationError, SimulationError
from .core.parallel import run_simulations
from .curves import CalibrationCurve, get_curve
from .envelope import Envelope, envelope_test
from .rng import SALT_MODEL_TEST, run_key_from_seed
from .spd import SPD, running_mean, spd, sum_dates, time_grid

logger = logging.getLogger(__name__)

MODELS = ("exponential", "linear", "uniform", "custom")
METHODS = ("uncalsample", "calsample")
# Years beyond each end of the tested range over which simulated dates are also drawn
EDGE_YEARS = 500


@dataclass
class ModelTestResult:
    observed: SPD
    model: pd.DataFrame
    envelope: Envelope
    model_name: str
    method: str
    n_sim: int
    fit: Dict[str, Any] = field(default_factory=dict)
    sims: Optional[np.ndarray] = None

    @property
    def p_value(self) -> float:
        return self.envelope.p_value

    def summary(self) -> Dict[str, Any]:
        periods = self.envelope.periods()
        return {
            "model": self.model_name,
            "method": self.method,
            "n_sim": self.n_sim,
            "n_dates": self.observed.n_dates,
            "n_bins": self.observed.n_bins,
            "time_range": list(self.observed.time_range),
            "fit": self.fit,
            "global_p_value": self.p_value,
            "obs_stat": self.envelope.obs_stat,
            "booms": [[s, e] for sig, s, e in periods if sig == "boom"],
            "busts": [[s, e] for sig, s, e in periods if sig == "bust"],
        }


def _exp_model(t, a, b):
    return np.exp(a + b * t)


def _model_shape(
    model: str, t: np.ndarray, fit: Dict[str, Any], predefined_model: Optional[pd.DataFrame]
) -> np.ndarray:
    """Unscaled model density at calendar years t from fitted parameters."""
    if model == "exponential":
        return _exp_model(t, fit["a"], fit["b"])
    if model == "linear":
        return np.clip(fit["intercept"] + fit["slope"] * t, 0.0, None)
    if model == "uniform":
        return np.ones(t.shape)
    pm = predefined_model.sort_values("cal_bp")
    return np.interp(t, pm["cal_bp"].to_numpy(dtype=float), pm["pr_dens"].to_numpy(dtype=float), left=0.0, right=0.0)


def fit_model(
    observed: SPD,
    model: str = "exponential",
    predefined_model: Optional[pd.DataFrame] = None,
) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Fit a growth model to an SPD and rescale it to the SPD's total mass.
    Returns (model densities aligned with observed.cal_bp, fit parameters).
    """
    t = observed.cal_bp.astype(float)
    y = observed.pr_dens
    if y.sum() <= 0:
        raise SimulationError("observed SPD has no mass in the time range; cannot fit a model")
    fit: Dict[str, Any] = {"model": model}
    if model == "exponential":
        pos = y > 0
        b0, a0 = np.polyfit(t[pos], np.log(y[pos]), 1)
        try:
            (a, b), _ = curve_fit(_exp_model, t, y, p0=(a0, b0), maxfev=10000)
        except RuntimeError as e:
            logger.warning("Exponential least-squares fit did not converge (%s); using log-linear estimate", e)
            a, b = a0, b0
        # growth rate per year forward in time (cal BP decreases)
        fit.update({"a": float(a), "b": float(b), "growth_rate": float(-b)})
    elif model == "linear":
        slope, intercept = np.polyfit(t, y, 1)
        fit.update({"intercept": float(intercept), "slope": float(slope)})
    elif model == "custom":
        if predefined_model is None or not {"cal_bp", "pr_dens"} <= set(predefined_model.columns):
            raise InputValidationError("custom model needs predefined_model with columns cal_bp, pr_dens")
    elif model != "uniform":
        raise InputValidationError(f"model must be one of {MODELS}, got {model!r}")
    dens = _model_shape(model, t, fit, predefined_model)
    if dens.sum() <= 0 or not np.all(np.isfinite(dens)):
        raise SimulationError(f"{model} model has no usable mass over {observed.time_range}")
    dens = dens * (y.sum() / dens.sum())
    return dens, fit


def _simulate_model_spds(
    rng: np.random.Generator,
    n: int,
    *,
    curve: CalibrationCurve,
    grid: np.ndarray,
    draw_grid: np.ndarray,
    n_dates: int,
    errors: np.ndarray,
    method: str,
    model_p: np.ndarray,
    c14_ages: np.ndarray,
    c14_p: np.ndarray,
    runm: Optional[int],
    datenormalised: bool,
    spdnormalised: bool,
    eps: float,
) -> np.ndarray:
    out = np.zeros((n, grid.size))
    for k in range(n):
        if method == "uncalsample":
            ages = rng.choice(c14_ages, size=n_dates, p=c14_p)
        else:
            years = rng.choice(draw_grid, size=n_dates, p=model_p)
            ages = uncalibrate(years, curve, rng=rng)["rc14_age"].to_numpy()
        errs = rng.choice(errors, size=n_dates, replace=True)
        probs = density_matrix(ages.astype(float), errs, curve, grid.astype(float), normalised=True, eps=eps)
        out[k] = sum_dates(probs, None, datenormalised=datenormalised, runm=runm, spdnormalised=spdnormalised)
    return out


def _n_simulated_dates(
    caldates: CalDates, time_range: Tuple[int, int], bins: Optional[Sequence], n_bins: int, inside_share: float
) -> int:
    """
    Dates per simulation: the effective number of bins whose mass falls inside time_range, scaled
    up to the whole draw range by the model's share of mass inside it.
    """
    in_range = spd(caldates, time_range, bins=bins).total() if caldates.normalised else float(n_bins)
    return max(1, int(round(in_range / inside_share)))


def _dominant_curve(caldates: CalDates) -> Union[str, CalibrationCurve]:
    counts = caldates.meta["curve"].value_counts()
    if len(counts) > 1:
        logger.warning("dates use %d curves; simulating with the most common (%s)", len(counts), counts.index[0])
    name = str(counts.index[0])
    return caldates.curves.get(name, name)


def model_test(
    caldates: CalDates,
    n_sim: int,
    time_range: Tuple[int, int],
    errors: Optional[Sequence[float]] = None,
    bins: Optional[Sequence] = None,
    model: str = "exponential",
    predefined_model: Optional[pd.DataFrame] = None,
    runm: Optional[int] = None,
    datenormalised: bool = False,
    spdnormalised: bool = False,
    method: str = "uncalsample",
    curve: Optional[Union[str, CalibrationCurve]] = None,
    alpha: float = 0.05,
    raw: bool = False,
    seed: Optional[int] = None,
    run_key: Optional[str] = None,
    n_workers: Optional[int] = None,
) -> ModelTestResult:
    """
    Test whether an SPD deviates from a fitted model more than sampling and calibration alone explain.

    Each simulation draws dates from the model over time_range widened by EDGE_YEARS on both
    sides, as many as keep the effective number of bins inside time_range equal to the observed
    one. Errors are resampled from the observed errors; the dates are calibrated, summed and
    smoothed like the observed SPD, then rescaled to the observed total.
    """
    if method not in METHODS:
        raise InputValidationError(f"method must be one of {METHODS}, got {method!r}")
    if n_sim < 2:
        raise InputValidationError(f"n_sim must be >= 2, got {n_sim}")
    cc = get_curve(curve if curve is not None else _dominant_curve(caldates))
    grid = time_grid(time_range)
    if grid[0] > cc.cal_range[0] or grid[-1] < cc.cal_range[1]:
        raise InputValidationError(f"time_range {time_range} extends beyond curve {cc.name!r} {cc.cal_range}")

    observed = spd(caldates, time_range, bins=bins, datenormalised=datenormalised, runm=runm, spdnormalised=spdnormalised)
    unsmoothed = spd(caldates, time_range, bins=bins, datenormalised=datenormalised, spdnormalised=spdnormalised)
    model_dens, fit = fit_model(unsmoothed, model=model, predefined_model=predefined_model)
    errs = np.asarray(errors if errors is not None else caldates.errors, dtype=float)
    if errs.size == 0 or not np.all(errs > 0):
        raise InputValidationError("errors must be non-empty and positive")

    # dates are drawn over the tested range plus an edge buffer, extrapolating the fitted model
    draw_grid = time_grid(
        (min(int(grid[0]) + EDGE_YEARS, int(cc.cal_range[0])), max(int(grid[-1]) - EDGE_YEARS, int(cc.cal_range[1])))
    )
    draw_dens = _model_shape(model, draw_grid.astype(float), fit, predefined_model)
    inside = (draw_grid <= grid[0]) & (draw_grid >= grid[-1])
    if not np.all(np.isfinite(draw_dens)) or draw_dens[inside].sum() <= 0:
        raise SimulationError(f"{model} model cannot be extrapolated over {draw_grid[0]}-{draw_grid[-1]} BP")
    model_p = draw_dens / draw_dens.sum()
    n_draw = _n_simulated_dates(caldates, time_range, bins, observed.n_bins, model_p[inside].sum())
    if method == "uncalsample":
        back = uncalibrate_distribution(draw_grid, model_p, cc)
        c14_ages, c14_p = back["c14_age"].to_numpy(), back["pr_dens"].to_numpy()
    else:
        c14_ages, c14_p = np.empty(0), np.empty(0)

    if run_key is None:
        run_key = run_key_from_seed(seed)
    workers = default_n_workers() if n_workers is None else max(1, int(n_workers))
    logger.info(
        "model_test: %s model, %s, n_sim=%d, n_bins=%d, simulated dates=%d, n_workers=%d",
        model, method, n_sim, observed.n_bins, n_draw, workers,
    )
    sims = run_simulations(
        _simulate_model_spds,
        n_sim,
        run_key,
        SALT_MODEL_TEST,
        n_workers=workers,
        curve=cc,
        grid=grid,
        draw_grid=draw_grid,
        n_dates=n_draw,
        errors=errs,
        method=method,
        model_p=model_p,
        c14_ages=c14_ages,
        c14_p=c14_p,
        runm=runm,
        datenormalised=datenormalised,
        spdnormalised=spdnormalised,
        eps=default_eps(),
    )
    # each simulated SPD carries the observed mass, like the fitted model
    totals = sims.sum(axis=1)
    has_mass = totals > 0
    sims[has_mass] *= (observed.total() / totals[has_mass])[:, None]
    env = envelope_test(grid, observed.pr_dens, sims, alpha=alpha)
    model_frame = pd.DataFrame({"cal_bp": grid, "pr_dens": running_mean(model_dens, runm)})
    return ModelTestResult(
        observed=observed,
        model=model_frame,
        envelope=env,
        model_name=model,
        method=method,
        n_sim=n_sim,
        fit=fit,
        sims=sims if raw else None,
    )


def p2p_test(result: ModelTestResult, p1: int, p2: int) -> Dict[str, Any]:
    """
    Point-to-point test: is the observed change in SPD from year p1 to the later year p2 (BP)
    unusual compared with the same change in the simulated SPDs? Needs model_test(raw=True).
    Two-sided p-value.
    """
    if result.sims is None:
        raise InputValidationError("p2p_test needs simulated curves; run model_test with raw=True")
    if p1 <= p2:
        raise InputValidationError(f"p1 must be older (larger BP) than p2, got p1={p1}, p2={p2}")
    start, end = result.observed.time_range
    for p in (p1, p2):
        if p > start or p < end:
            raise InputValidationError(f"year {p} outside tested range {result.observed.time_range}")
    j1, j2 = start - p1, start - p2
    obs = result.observed.pr_dens
    obs_diff = float(obs[j2] - obs[j1])
    sim_diff = result.sims[:, j2] - result.sims[:, j1]
    n = sim_diff.size
    lo = int(np.sum(sim_diff <= obs_diff))
    hi = int(np.sum(sim_diff >= obs_diff))
    p_value = min(1.0, 2.0 * (min(lo, hi) + 1) / (n + 1))
    return {
        "p1": int(p1),
        "p2": int(p2),
        "observed_change": obs_diff,
        "simulated_mean_change": float(sim_diff.mean()),
        "simulated_lo": float(np.quantile(sim_diff, result.envelope.alpha / 2)),
        "simulated_hi": float(np.quantile(sim_diff, 1 - result.envelope.alpha / 2)),
        "p_value": float(p_value),
        "n_sim": n,
    }
