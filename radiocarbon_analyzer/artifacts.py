"""
Artifact I/O for CLI runs: CSV tables, JSON summaries, PNG charts.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd


def ensure_dir(path: str | Path) -> None:
    """Create directory and parents if they do not exist."""
    Path(path).mkdir(parents=True, exist_ok=True)


def write_df_csv(df: pd.DataFrame, path: str | Path) -> str:
    """Write DataFrame to CSV with UTF-8 encoding. Returns the path written."""
    path = Path(path)
    ensure_dir(path.parent)
    df.to_csv(path, index=False, encoding="utf-8")
    return str(path)


def _enc(o: Any) -> Any:
    if isinstance(o, dict):
        return {str(k): _enc(v) for k, v in o.items()}
    if isinstance(o, (list, tuple)):
        return [_enc(x) for x in o]
    if hasattr(o, "tolist") and callable(o.tolist):
        return _enc(o.tolist())
    if isinstance(o, float) and o != o:
        return None
    if isinstance(o, (float, int, str, bool, type(None))):
        return o
    if hasattr(o, "isoformat"):
        return o.isoformat()
    return str(o)


def write_json(obj: Any, path: str | Path) -> str:
    """Write JSON-serializable object (numpy scalars/arrays allowed) to file with sorted keys."""
    path = Path(path)
    ensure_dir(path.parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(_enc(obj), f, indent=2, sort_keys=True)
    return str(path)


def save_figure(fig: Any, path: str | Path, dpi: int = 150) -> str:
    """Save a matplotlib figure and close it."""
    import matplotlib.pyplot as plt

    path = Path(path)
    ensure_dir(path.parent)
    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return str(path)
