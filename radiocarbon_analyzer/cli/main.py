"""
Top-level CLI dispatcher: radiocarbon-analyzer <command> [args...].
All commands dispatch to package CLI modules or doctor.
"""

from __future__ import annotations

import argparse
import subprocess
import sys
from typing import List, Optional

COMMANDS = (
    "calibrate",
    "spd",
    "model-test",
    "perm-test",
    "sp-perm-test",
    "demo",
    "doctor",
    "test",
)


def _main_doctor(argv: List[str]) -> int:
    from radiocarbon_analyzer.doctor import main as doctor_main

    return doctor_main(argv)


def _main_test(argv: List[str]) -> int:
    r = subprocess.run([sys.executable, "-m", "pytest", "tests/"] + argv, cwd=None)
    return r.returncode


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = argparse.ArgumentParser(
        prog="radiocarbon-analyzer",
        description="Radiocarbon calibration, summed probability distributions and Monte-Carlo tests",
    )
    subparsers = parser.add_subparsers(dest="command", help="command")
    for name in COMMANDS:
        subparsers.add_parser(name, help=f"Run {name}", add_help=False)

    args, rest = parser.parse_known_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    cmd = args.command

    if cmd == "doctor":
        return _main_doctor(rest)
    if cmd == "test":
        return _main_test(rest)
    if cmd == "calibrate":
        from radiocarbon_analyzer.cli import calibrate as mod

        return mod.main(rest)
    if cmd == "spd":
        from radiocarbon_analyzer.cli import spd as mod

        return mod.main(rest)
    if cmd == "model-test":
        from radiocarbon_analyzer.cli import model_test as mod

        return mod.main(rest)
    if cmd == "perm-test":
        from radiocarbon_analyzer.cli import perm_test as mod

        return mod.main(rest)
    if cmd == "sp-perm-test":
        from radiocarbon_analyzer.cli import sp_perm_test as mod

        return mod.main(rest)
    if cmd == "demo":
        from radiocarbon_analyzer.cli import demo as mod

        return mod.main(rest)

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
