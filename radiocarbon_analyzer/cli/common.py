"""
Shared CLI plumbing: common arguments, logging setup, dates loading and error reporting.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import numpy as np

from radiocarbon_analyzer.binning import bin_prep
from radiocarbon_analyzer.config import (
    default_bin_h,
    default_curve,
    default_n_sim,
    default_n_workers,
    default_runm,
    default_seed,
    default_time_range,
)
from radiocarbon_analyzer.core.errors import RadiocarbonAnalyzerError
from radiocarbon_analyzer.curves import load_curve, register_curve
from radiocarbon_analyzer.data import calibrate_frame, load_dates

EXIT_OK = 0
EXIT_USAGE = 2


def add_dates_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--dates", required=True, help="CSV with columns age,error (optional site,lab_id,curve,lon,lat)")
    ap.add_argument("--curve", default=None, help="Calibration curve name (default: per-row 'curve' column or config)")
    ap.add_argument("--curve-dir", default=None, help="Directory holding <curve>.14c files (overrides config)")
    ap.add_argument("--out-dir", default="radiocarbon_out", help="Output directory for artifacts")
    ap.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")


def add_spd_args(ap: argparse.ArgumentParser) -> None:
    start, end = default_time_range()
    ap.add_argument("--time-range", nargs=2, type=int, default=[start, end], metavar=("START", "END"),
                    help=f"Years BP, older first (default: {start} {end})")
    ap.add_argument("--bin-h", type=float, default=None,
                    help=f"Bin dates per site within h years (needs a 'site' column; config default {default_bin_h():g})")
    ap.add_argument("--no-bins", action="store_true", help="Do not bin dates even if a 'site' column exists")
    ap.add_argument("--runm", type=int, default=default_runm(), help="Running-mean window in years")
    ap.add_argument("--datenormalised", action="store_true", help="Normalise each date inside the time range")
    ap.add_argument("--save-charts", action="store_true", help="Write PNG charts")


def add_sim_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--n-sim", type=int, default=default_n_sim(), help="Number of simulations")
    ap.add_argument("--seed", type=int, default=default_seed(), help="RNG seed")
    ap.add_argument("--n-workers", type=int, default=default_n_workers(), help="Worker processes for simulations")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def calibrate_from_args(args: argparse.Namespace):
    """Load and calibrate the --dates table. Returns (dates DataFrame, CalDates)."""
    df = load_dates(args.dates)
    if getattr(args, "curve_dir", None):
        if args.curve:
            names = {args.curve.lower()}
        elif "curve" in df.columns:
            names = set(df["curve"].dropna().astype(str).str.lower()) or {default_curve()}
        else:
            names = {default_curve()}
        for name in sorted(names):
            register_curve(load_curve(name, curve_dir=args.curve_dir))
    return df, calibrate_frame(df, curve=args.curve)


def bins_from_args(args: argparse.Namespace, df) -> Optional[np.ndarray]:
    if getattr(args, "no_bins", False) or "site" not in df.columns:
        return None
    h = args.bin_h if args.bin_h is not None else default_bin_h()
    return bin_prep(df["site"].astype(str).tolist(), df["age"].to_numpy(dtype=float), h)


def time_range_from_args(args: argparse.Namespace) -> Tuple[int, int]:
    return int(args.time_range[0]), int(args.time_range[1])


def run_guarded(fn: Callable[[], int]) -> int:
    """Run a command body; package errors become a message on stderr and exit code 2."""
    try:
        return fn()
    except RadiocarbonAnalyzerError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE


def charts_dir(out_dir: str) -> Path:
    import matplotlib

    matplotlib.use("Agg")
    return Path(out_dir) / "charts"


def report_paths(command: str, paths: List[str], out_dir: str) -> None:
    print(f"{command} wrote {len(paths)} artifacts to {out_dir}")
    for p in paths:
        print(f"  {p}")
