#!/usr/bin/env python3
"""
Summed probability distribution of a dates table, optionally binned by site and smoothed.
With --group-col, also writes one SPD per group.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from radiocarbon_analyzer.artifacts import save_figure, write_df_csv, write_json
from radiocarbon_analyzer.binning import bin_medians
from radiocarbon_analyzer.cli.common import (
    EXIT_OK,
    add_dates_args,
    add_spd_args,
    bins_from_args,
    calibrate_from_args,
    charts_dir,
    report_paths,
    run_guarded,
    setup_logging,
    time_range_from_args,
)
from radiocarbon_analyzer.core.errors import InputValidationError
from radiocarbon_analyzer.spd import spd, stack_frame, stack_spd


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="radiocarbon-analyzer spd", description="Summed probability distribution")
    add_dates_args(ap)
    add_spd_args(ap)
    ap.add_argument("--spdnormalised", action="store_true", help="Scale the SPD to unit area")
    ap.add_argument("--group-col", default=None, help="Column to stack SPDs by (e.g. region)")
    args = ap.parse_args(argv)
    setup_logging(args.verbose)

    def _run() -> int:
        df, caldates = calibrate_from_args(args)
        time_range = time_range_from_args(args)
        bins = bins_from_args(args, df)
        s = spd(
            caldates,
            time_range,
            bins=bins,
            datenormalised=args.datenormalised,
            runm=args.runm,
            spdnormalised=args.spdnormalised,
        )
        paths = [write_df_csv(s.grid, f"{args.out_dir}/spd.csv"), write_json(s.to_dict(), f"{args.out_dir}/spd.json")]
        if bins is not None:
            paths.append(write_df_csv(bin_medians(caldates, bins), f"{args.out_dir}/bin_medians.csv"))
        stack = None
        if args.group_col:
            if args.group_col not in df.columns:
                raise InputValidationError(f"group column {args.group_col!r} not in dates table")
            stack = stack_spd(
                caldates, df[args.group_col].astype(str).tolist(), time_range, bins=bins,
                datenormalised=args.datenormalised, runm=args.runm,
            )
            paths.append(write_df_csv(stack_frame(stack), f"{args.out_dir}/spd_stack.csv"))
        if args.save_charts:
            out = charts_dir(args.out_dir)
            from radiocarbon_analyzer.plotting import plot_spd

            paths.append(save_figure(plot_spd(s), out / "spd.png"))
            if stack:
                fig = None
                for g, gs in stack.items():
                    fig = plot_spd(gs, ax=fig.axes[0] if fig else None, label=str(g), fill=False)
                paths.append(save_figure(fig, out / "spd_stack.png"))
        report_paths("spd", paths, args.out_dir)
        return EXIT_OK

    return run_guarded(_run)


if __name__ == "__main__":
    raise SystemExit(main())
