import json
from pathlib import Path

import openpyxl
import pandas as pd
import pytest

from flowcal import cli
from flowcal.aggregate import aggregate
from flowcal.formulas import RotameterFormula, VenturimeterFormula
from flowcal.io import computed_frame, load_raw_rows
from flowcal.presets import build_formula, load_config
from flowcal.report import results_table, summary_lines


def _rot_csv(tmp_path: Path) -> Path:
    df = pd.DataFrame({
        "Rotameter Flow (L/h)": ["100", "200", "300", ""],
        "Time (s)": ["20", "10.4", "7.2", "9"],
    })
    p = tmp_path / "rot.csv"
    df.to_csv(p, index=False)
    return p


def test_load_raw_rows_csv_aliases(tmp_path):
    rows = load_raw_rows(_rot_csv(tmp_path), RotameterFormula())
    assert rows[0] == {"id": "1", "qrot": "100", "time": "20"}
    assert rows[3]["qrot"] == ""
    assert len(rows) == 4


def test_load_raw_rows_xlsx(tmp_path):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Trials"
    ws.append(["P1 (kg/cm2)", "P2 (kg/cm2)", "Time (s)"])
    ws.append([0.8, 0.2, 31.0])
    ws.append([1.2, 0.2, None])
    p = tmp_path / "venturi.xlsx"
    wb.save(p)
    rows = load_raw_rows(p, VenturimeterFormula(), sheet="Trials")
    assert rows[0] == {"id": "1", "P1": 0.8, "P2": 0.2, "time": 31.0}
    assert rows[1]["time"] == ""


def test_load_raw_rows_missing_column(tmp_path):
    p = tmp_path / "bad.csv"
    pd.DataFrame({"flow": [1], "seconds": [2]}).to_csv(p, index=False)
    with pytest.raises(ValueError):
        load_raw_rows(p, RotameterFormula())
    rows = load_raw_rows(p, RotameterFormula(), columns={"qrot": "flow", "time": "seconds"})
    assert rows[0]["qrot"] == "1"


def test_results_table_formats_like_screen():
    f = RotameterFormula()
    rows = [f.derive({"qrot": 100, "time": 20}), f.derive({"qrot": 0, "time": 20})]
    table = results_table(rows, f)
    assert list(table.columns) == ["qrot(L/h)", "t(s)", "Q_act", "qrot(m3/s)", "C_f"]
    assert table.iloc[0].tolist() == ["100", "20", "2.50000 x 10^-4", "2.77778 x 10^-5", "9.00000"]
    assert table.iloc[1]["C_f"] == "-"
    assert table.iloc[1]["qrot(m3/s)"] == "0"


def test_summary_lines():
    f = VenturimeterFormula()
    rows = [f.derive({"P1": p, "P2": 0.2, "time": t}) for p, t in [(0.6, 40), (1.0, 30)]]
    agg = aggregate(rows, f)
    lines = summary_lines(f, agg)
    assert lines[0].startswith("Average Cd: ")
    assert lines[1].startswith("Best-fit slope: ")
    assert summary_lines(f, agg, average=0.5)[0] == "Average Cd: 0.50000"


def test_computed_frame_numeric():
    f = RotameterFormula()
    df = computed_frame([f.derive({"qrot": 0, "time": 20})], f)
    assert list(df.columns) == list(f.fields)
    assert pd.isna(df.loc[0, "cf"])


def test_config_overrides(tmp_path):
    cfg = tmp_path / "rig.json"
    cfg.write_text(json.dumps({"experiment": "venturimeter", "rig": {"throat_diameter_m": 0.01}}))
    f = build_formula("venturimeter", load_config(cfg))
    assert f.rig.throat_diameter_m == 0.01
    with pytest.raises(ValueError):
        build_formula("rotameter", load_config(cfg))
    cfg.write_text(json.dumps({"tank_volume_m3": 0.01, "colour": "red"}))
    with pytest.raises(ValueError):
        build_formula("rotameter", load_config(cfg))


def test_cli_compute_then_recent(tmp_path, capsys):
    store = tmp_path / "store"
    outdir = tmp_path / "out"
    cli.main(["compute", "--experiment", "rotameter", "--input", str(_rot_csv(tmp_path)),
              "--user", "alice", "--store", str(store), "--outdir", str(outdir), "--plot"])
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["saved"] is True
    assert out["n_input_rows"] == 4
    assert out["n_computed_rows"] == 3
    assert out["aggregate"]["method"] == "pairwise"
    for p in out["artifacts"]:
        assert Path(p).exists()

    cli.main(["recent", "--experiment", "rotameter", "--user", "alice", "--store", str(store)])
    recent = json.loads(capsys.readouterr().out)
    assert len(recent["recent"]["computed_rows"]) == 3
    assert recent["recent"]["average_ratio"] == pytest.approx(out["aggregate"]["average_ratio"])
    assert recent["aggregate"]["slope"] == pytest.approx(out["aggregate"]["slope"])


def test_cli_recent_empty(tmp_path, capsys):
    cli.main(["recent", "--experiment", "venturimeter", "--user", "bob", "--store", str(tmp_path)])
    out = json.loads(capsys.readouterr().out)
    assert out["recent"] is None
    assert out["message"] == "No recent saved run available."


def test_cli_no_valid_rows_exits(tmp_path, capsys):
    p = tmp_path / "bad.csv"
    pd.DataFrame({"qrot": ["a", "100"], "time": ["1", "0"]}).to_csv(p, index=False)
    with pytest.raises(SystemExit) as ei:
        cli.main(["compute", "--experiment", "rotameter", "--input", str(p),
                  "--user", "alice", "--store", str(tmp_path / "store")])
    assert ei.value.code == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert not (tmp_path / "store").exists()


def test_cli_experiments(capsys):
    cli.main(["experiments"])
    out = json.loads(capsys.readouterr().out)
    names = {e["name"] for e in out}
    assert names == {"rotameter", "venturimeter"}
    ven = next(e for e in out if e["name"] == "venturimeter")
    assert ven["rig"]["A2_m2"] < ven["rig"]["A1_m2"]
