#!/usr/bin/env python3
"""
Calibrate a dates table: per-date median and HPD summary, long-form probabilities, optional charts.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from radiocarbon_analyzer.artifacts import save_figure, write_df_csv
from radiocarbon_analyzer.cli.common import (
    EXIT_OK,
    add_dates_args,
    calibrate_from_args,
    charts_dir,
    report_paths,
    run_guarded,
    setup_logging,
)


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="radiocarbon-analyzer calibrate", description="Calibrate radiocarbon dates")
    add_dates_args(ap)
    ap.add_argument("--prob", type=float, default=0.95, help="HPD probability mass")
    ap.add_argument("--long", action="store_true", help="Also write long-form calibrated probabilities")
    ap.add_argument("--save-charts", action="store_true", help="Write one PNG per date (first 50)")
    args = ap.parse_args(argv)
    setup_logging(args.verbose)

    def _run() -> int:
        _, caldates = calibrate_from_args(args)
        paths = [write_df_csv(caldates.summary(args.prob), f"{args.out_dir}/calibration_summary.csv")]
        if args.long:
            paths.append(write_df_csv(caldates.to_long(), f"{args.out_dir}/calibrated_long.csv"))
        if args.save_charts:
            out = charts_dir(args.out_dir)
            from radiocarbon_analyzer.plotting import plot_caldates

            for i in range(min(len(caldates), 50)):
                paths.append(save_figure(plot_caldates(caldates, i, prob=args.prob), out / f"date_{i:04d}.png"))
        report_paths("calibrate", paths, args.out_dir)
        return EXIT_OK

    return run_guarded(_run)


if __name__ == "__main__":
    raise SystemExit(main())
