"""Allow python -m radiocarbon_analyzer <command>."""
from __future__ import annotations

from radiocarbon_analyzer.cli.main import main

if __name__ == "__main__":
    raise SystemExit(main())
