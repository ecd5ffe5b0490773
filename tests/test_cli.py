"""CLI commands run end to end on a temp dates table and a curve file in a temp directory."""

from __future__ import annotations

import json

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from radiocarbon_analyzer.cli import calibrate as calibrate_cli
from radiocarbon_analyzer.cli import demo as demo_cli
from radiocarbon_analyzer.cli import model_test as model_test_cli
from radiocarbon_analyzer.cli import perm_test as perm_test_cli
from radiocarbon_analyzer.cli import sp_perm_test as sp_perm_test_cli
from radiocarbon_analyzer.cli import spd as spd_cli
from radiocarbon_analyzer.cli.main import COMMANDS
from radiocarbon_analyzer.cli.main import main as cli_main
from tests.fakes import make_dates


@pytest.fixture
def inputs(tmp_path):
    """(dates csv, curve dir) with an identity curve saved as idcurve.csv."""
    curve_dir = tmp_path / "curves"
    curve_dir.mkdir()
    pd.DataFrame({"cal_bp": [12000, 0], "c14_age": [12000.0, 0.0], "c14_error": [10.0, 10.0]}).to_csv(
        curve_dir / "idcurve.csv", index=False
    )
    df, _ = make_dates(n_dates=80, n_sites=8, seed=5)
    df["group"] = np.where(df["site"].isin(["S00", "S01", "S02", "S03"]), "west", "east")
    dates = tmp_path / "dates.csv"
    df.drop(columns=["curve"]).to_csv(dates, index=False)
    return str(dates), str(curve_dir)


def _common(inputs, out_dir) -> list:
    dates, curve_dir = inputs
    return ["--dates", dates, "--curve", "idcurve", "--curve-dir", curve_dir, "--out-dir", str(out_dir)]


def test_calibrate_command(inputs, tmp_path):
    """calibrate writes the per-date summary and a long-form table with unit mass per date."""
    out = tmp_path / "cal"
    assert calibrate_cli.main(_common(inputs, out) + ["--long"]) == 0
    summary = pd.read_csv(out / "calibration_summary.csv")
    assert len(summary) == 80
    assert "hpd_95" in summary.columns
    long = pd.read_csv(out / "calibrated_long.csv")
    assert list(long.columns) == ["date_index", "cal_bp", "pr_dens"]
    assert long["date_index"].nunique() == 80
    np.testing.assert_allclose(long.groupby("date_index")["pr_dens"].sum(), 1.0, atol=1e-6)


def test_missing_curve_exits_2(inputs, tmp_path, capsys):
    """An unknown curve is reported on stderr with exit code 2."""
    dates, curve_dir = inputs
    rc = calibrate_cli.main(["--dates", dates, "--curve", "nosuch", "--curve-dir", curve_dir, "--out-dir", str(tmp_path)])
    assert rc == 2
    assert "nosuch" in capsys.readouterr().err


def test_spd_command_with_groups_and_charts(inputs, tmp_path):
    """spd writes the SPD, bin medians, a stacked table and charts."""
    out = tmp_path / "spd"
    argv = _common(inputs, out) + ["--time-range", "7000", "3000", "--group-col", "group", "--runm", "50", "--save-charts"]
    assert spd_cli.main(argv) == 0
    grid = pd.read_csv(out / "spd.csv")
    assert len(grid) == 4001
    assert (out / "bin_medians.csv").exists()
    assert (out / "spd_stack.csv").exists()
    assert (out / "charts" / "spd.png").exists()
    meta = json.loads((out / "spd.json").read_text(encoding="utf-8"))
    assert meta["runm"] == 50


def test_model_test_command_with_p2p(inputs, tmp_path):
    """model-test writes envelope, model, chart and a summary including point-to-point results."""
    out = tmp_path / "mt"
    argv = _common(inputs, out) + ["--time-range", "7000", "3000", "--n-sim", "5", "--p2p", "6000", "4000", "--save-charts"]
    assert model_test_cli.main(argv) == 0
    summary = json.loads((out / "model_test_summary.json").read_text(encoding="utf-8"))
    assert summary["n_sim"] == 5
    assert 0 < summary["global_p_value"] <= 1
    assert summary["p2p"][0]["p1"] == 6000
    assert len(pd.read_csv(out / "model_test_envelope.csv")) == 4001
    assert (out / "charts" / "model_test.png").exists()


def test_perm_test_command(inputs, tmp_path):
    """perm-test compares the west and east groups."""
    out = tmp_path / "pt"
    argv = _common(inputs, out) + ["--time-range", "7000", "3000", "--n-sim", "5"]
    assert perm_test_cli.main(argv) == 0
    summary = json.loads((out / "perm_test_summary.json").read_text(encoding="utf-8"))
    assert set(summary["groups"]) == {"west", "east"}


def test_sp_perm_test_command(inputs, tmp_path):
    """sp-perm-test writes the per-site table with q-values."""
    out = tmp_path / "sp"
    argv = _common(inputs, out) + ["--breaks", "7000", "5000", "3000", "--n-sim", "5", "--h", "200"]
    assert sp_perm_test_cli.main(argv) == 0
    frame = pd.read_csv(out / "sp_perm_test.csv")
    assert {"site", "transition", "p_hi", "p_lo", "q_hi", "q_lo"} <= set(frame.columns)


def test_demo_runs_offline(tmp_path):
    """demo runs the whole pipeline on synthetic data without curve files."""
    assert demo_cli.main(["--out-dir", str(tmp_path), "--n-dates", "60", "--n-sim", "5"]) == 0
    summary = json.loads((tmp_path / "demo_summary.json").read_text(encoding="utf-8"))
    assert set(summary) == {"model_test", "perm_test", "sp_perm_test"}
    assert (tmp_path / "spd.csv").exists()


def test_dispatcher_lists_commands(capsys):
    """No command prints help; every documented command is registered."""
    assert cli_main([]) == 0
    out = capsys.readouterr().out
    for name in ("calibrate", "spd", "model-test", "perm-test", "sp-perm-test", "demo", "doctor"):
        assert name in COMMANDS
        assert name in out


def test_dispatcher_routes_demo(tmp_path):
    """radiocarbon-analyzer demo ... reaches the demo command."""
    assert cli_main(["demo", "--out-dir", str(tmp_path), "--n-dates", "40", "--n-sim", "3"]) == 0
    assert (tmp_path / "demo_summary.json").exists()
