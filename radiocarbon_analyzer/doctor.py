"""
System doctor: preflight checks for dependencies, config and calibration curves.
Run: python -m radiocarbon_analyzer.doctor
Exit: 0 all OK, 2 deps, 3 config/curves.
"""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

DEPENDENCIES = ["numpy", "pandas", "scipy", "yaml", "matplotlib"]


def check_dependencies() -> bool:
    """Return True if all required packages import; else print pip install and return False."""
    missing = []
    for pkg in DEPENDENCIES:
        try:
            __import__(pkg)
        except ImportError:
            missing.append(pkg)
    if not missing:
        print("[OK] dependencies  " + " ".join(DEPENDENCIES))
        return True
    print("[FAIL] Missing packages: " + ", ".join(missing))
    print("  Fix: python -m pip install -e .")
    return False


def check_curves(names: Optional[List[str]] = None) -> bool:
    """Return True if the default (or named) curves load from the configured curve directory."""
    from .config import curve_dir, default_curve
    from .core.errors import RadiocarbonAnalyzerError
    from .curves import load_curve

    names = names or [default_curve()]
    ok = True
    for name in names:
        try:
            curve = load_curve(name)
        except RadiocarbonAnalyzerError as e:
            print(f"[FAIL] curve {name}: {e}")
            ok = False
            continue
        start, end = curve.cal_range
        print(f"[OK] curve {name}  {len(curve)} years ({start}-{end} BP) in {curve_dir()}")
    if not ok:
        print("  Fix: download IntCal .14c files (e.g. intcal20.14c) into the curve directory,")
        print("       or set RADIOCARBON_CURVE_DIR. 'radiocarbon-analyzer demo' runs without curve files.")
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    ap = argparse.ArgumentParser(prog="radiocarbon-analyzer doctor", description="Preflight checks")
    ap.add_argument("--curve", action="append", default=None, help="Curve name to check (repeatable)")
    args = ap.parse_args(argv)
    if not check_dependencies():
        return 2
    if not check_curves(args.curve):
        return 3
    print("[OK] all checks passed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
