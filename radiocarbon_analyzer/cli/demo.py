#!/usr/bin/env python3
"""
Offline demo: synthetic linear curve and exponentially growing dates, then the full pipeline
(calibrate -> spd -> model test -> permutation test -> spatial test) with small simulation counts.
No curve files needed.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from radiocarbon_analyzer.artifacts import save_figure, write_df_csv, write_json
from radiocarbon_analyzer.binning import bin_prep
from radiocarbon_analyzer.cli.common import EXIT_OK, charts_dir, report_paths, run_guarded, setup_logging
from radiocarbon_analyzer.curves import linear_curve, register_curve
from radiocarbon_analyzer.data import calibrate_frame, site_locations, synthetic_dates
from radiocarbon_analyzer.model_test import model_test
from radiocarbon_analyzer.perm_test import perm_test
from radiocarbon_analyzer.rng import SALT_DEMO, rng_for, run_key_from_seed
from radiocarbon_analyzer.spatial import sp_perm_test
from radiocarbon_analyzer.spd import spd

DEMO_TIME_RANGE = (7000, 3000)
DEMO_BREAKS = [7000, 6000, 5000, 4000, 3000]


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="radiocarbon-analyzer demo", description="Run the pipeline on synthetic data")
    ap.add_argument("--out-dir", default="demo_out", help="Output directory for artifacts")
    ap.add_argument("--n-dates", type=int, default=150, help="Number of synthetic dates")
    ap.add_argument("--n-sim", type=int, default=49, help="Simulations per test (small for CI)")
    ap.add_argument("--seed", type=int, default=42, help="RNG seed")
    ap.add_argument("--n-workers", type=int, default=1, help="Worker processes for simulations")
    ap.add_argument("--save-charts", action="store_true", help="Write PNG charts")
    ap.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")
    args = ap.parse_args(argv)
    setup_logging(args.verbose)

    def _run() -> int:
        run_key = run_key_from_seed(args.seed)
        curve = linear_curve(name="demo_linear", cal_range=(9000, 1000), slope=0.9, offset=150.0, error=15.0)
        register_curve(curve)
        df = synthetic_dates(rng_for(run_key, SALT_DEMO), curve, n_dates=args.n_dates, time_range=DEMO_TIME_RANGE)
        caldates = calibrate_frame(df)
        bins = bin_prep(df["site"].tolist(), df["age"].to_numpy(dtype=float), h=100)
        observed = spd(caldates, DEMO_TIME_RANGE, bins=bins)
        mt = model_test(caldates, args.n_sim, DEMO_TIME_RANGE, bins=bins, model="exponential",
                        run_key=run_key, n_workers=args.n_workers)
        pt = perm_test(caldates, df["group"].tolist(), DEMO_TIME_RANGE, args.n_sim, bins=bins,
                       run_key=run_key, n_workers=args.n_workers)
        sp = sp_perm_test(caldates, df["site"].tolist(), site_locations(df), DEMO_BREAKS, args.n_sim,
                          h=150.0, bins=bins, run_key=run_key, n_workers=args.n_workers)
        out = args.out_dir
        paths = [
            write_df_csv(df, f"{out}/demo_dates.csv"),
            write_df_csv(caldates.summary(), f"{out}/calibration_summary.csv"),
            write_df_csv(observed.grid, f"{out}/spd.csv"),
            write_df_csv(mt.envelope.frame, f"{out}/model_test_envelope.csv"),
            write_df_csv(sp.frame, f"{out}/sp_perm_test.csv"),
            write_json(
                {"model_test": mt.summary(), "perm_test": pt.summary(), "sp_perm_test": sp.summary()},
                f"{out}/demo_summary.json",
            ),
        ]
        if args.save_charts:
            cdir = charts_dir(out)
            from radiocarbon_analyzer.plotting import plot_model_test, plot_perm_test, plot_spd

            paths.append(save_figure(plot_spd(observed), cdir / "spd.png"))
            paths.append(save_figure(plot_model_test(mt), cdir / "model_test.png"))
            for g in pt.groups:
                paths.append(save_figure(plot_perm_test(pt, g), cdir / f"perm_test_{g}.png"))
        report_paths("demo", paths, out)
        print(f"model-test global p={mt.p_value:.4f}; perm-test p={ {str(g): round(p, 4) for g, p in pt.p_values.items()} }")
        return EXIT_OK

    return run_guarded(_run)


if __name__ == "__main__":
    raise SystemExit(main())
