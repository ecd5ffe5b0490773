"""
Matplotlib charts for calibrated dates, SPDs and test results. Time axes run in years BP with
older dates on the left. Callers choose the backend (CLI uses Agg).
"""

from __future__ import annotations

from typing import Any, Optional

import matplotlib.pyplot as plt
import numpy as np

from .calibration import CalDates
from .model_test import ModelTestResult
from .perm_test import PermTestResult
from .spatial import SpPermTestResult
from .spd import SPD

BOOM_COLOR = "#d7301f"
BUST_COLOR = "#2171b5"
ENVELOPE_COLOR = "0.8"


def _axes(ax: Optional[Any]):
    if ax is None:
        fig, ax = plt.subplots(1, 1, figsize=(9, 4))
        return fig, ax
    return ax.figure, ax


def _time_axis(ax, start: int, end: int) -> None:
    ax.set_xlim(start, end)
    ax.set_xlabel("Years cal BP")


def plot_caldates(caldates: CalDates, i: int = 0, prob: float = 0.95, ax=None):
    """Calibrated distribution of one date with its HPD regions shaded."""
    fig, ax = _axes(ax)
    g = caldates.grid(i)
    ax.plot(g["cal_bp"], g["pr_dens"], color="k", lw=1)
    for start, end, _ in caldates.hpd(prob)[i]:
        sel = (g["cal_bp"] <= start) & (g["cal_bp"] >= end)
        ax.fill_between(g["cal_bp"][sel], g["pr_dens"][sel], color="0.6")
    m = caldates.meta.iloc[i]
    ax.set_title(f"{m['date_id']}: {m['age']:.0f} +/- {m['error']:.0f} BP ({m['curve']})")
    ax.set_ylabel("Probability")
    if len(g):
        _time_axis(ax, int(g["cal_bp"].max()), int(g["cal_bp"].min()))
    return fig


def plot_spd(s: SPD, ax=None, label: Optional[str] = None, fill: bool = True):
    fig, ax = _axes(ax)
    if fill:
        ax.fill_between(s.cal_bp, s.pr_dens, color="0.75", label=label)
    else:
        ax.plot(s.cal_bp, s.pr_dens, lw=1, label=label)
    ax.set_ylabel("Summed probability")
    _time_axis(ax, *s.time_range)
    if label:
        ax.legend()
    return fig


def _shade_signals(ax, frame) -> None:
    top = np.nanmax(np.r_[frame["observed"].to_numpy(), frame["hi"].to_numpy()])
    for signal, color in (("boom", BOOM_COLOR), ("bust", BUST_COLOR)):
        mask = (frame["signal"] == signal).to_numpy()
        if mask.any():
            ax.fill_between(frame["cal_bp"], 0, top, where=mask, color=color, alpha=0.2, lw=0, label=signal)


def plot_model_test(result: ModelTestResult, ax=None):
    """Observed SPD against the simulation envelope of the fitted model, booms red, busts blue."""
    fig, ax = _axes(ax)
    frame = result.envelope.frame
    ax.fill_between(frame["cal_bp"], frame["lo"], frame["hi"], color=ENVELOPE_COLOR, label="95% envelope")
    _shade_signals(ax, frame)
    ax.plot(frame["cal_bp"], frame["observed"], color="k", lw=1, label="observed")
    ax.plot(result.model["cal_bp"], result.model["pr_dens"], color="k", ls="--", lw=1, label=result.model_name)
    ax.set_title(f"{result.model_name} model, global p = {result.p_value:.4f}")
    ax.set_ylabel("Summed probability")
    _time_axis(ax, *result.observed.time_range)
    ax.legend(loc="upper left")
    return fig


def plot_perm_test(result: PermTestResult, group: Any, ax=None):
    fig, ax = _axes(ax)
    env = result.envelopes[group]
    frame = env.frame
    ax.fill_between(frame["cal_bp"], frame["lo"], frame["hi"], color=ENVELOPE_COLOR, label="95% envelope")
    _shade_signals(ax, frame)
    ax.plot(frame["cal_bp"], frame["observed"], color="k", lw=1, label=str(group))
    ax.set_title(f"{group}: global p = {env.p_value:.4f}")
    ax.set_ylabel("Summed probability")
    _time_axis(ax, *result.time_range)
    ax.legend(loc="upper left")
    return fig


def plot_sp_perm_test(result: SpPermTestResult, transition: str, ax=None):
    """Map of sites for one transition: positive deviations red, negative blue, others grey."""
    fig, ax = _axes(ax)
    frame = result.frame[result.frame["transition"] == transition]
    colors = frame["signal"].map({"positive": BOOM_COLOR, "negative": BUST_COLOR}).fillna("0.6")
    ax.scatter(frame["lon"], frame["lat"], c=colors.tolist(), s=30, edgecolors="k", linewidths=0.3)
    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    ax.set_title(f"{transition} ({result.rate} rate, {result.kernel} h={result.h:g} km)")
    ax.set_aspect("equal", adjustable="datalim")
    return fig
