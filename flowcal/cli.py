from __future__ import annotations
import argparse, json, logging
from pathlib import Path

from .geometry import rig_summary
from .io import load_raw_rows
from .presets import PRESETS, build_formula, load_config
from .records import NoRecordFound, NoValidRows
from .report import results_table, summary_lines, write_summary_tables
from .session import CalibrationSession
from .store import JsonRecordStore

logger = logging.getLogger(__name__)


def _column_pairs(specs: list[str] | None) -> dict[str, str]:
    out = {}
    for spec in specs or []:
        if "=" not in spec:
            raise SystemExit(f"--col expects field=header, got {spec!r}")
        k, v = spec.split("=", 1)
        out[k.strip()] = v.strip()
    return out


def build_parser():
    p = argparse.ArgumentParser(prog="flowcal", description="Rotameter / venturimeter calibration runs")
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("compute", help="Compute a run from a CSV/XLSX of trials and save it")
    c.add_argument("--experiment", required=True, help=f"Preset or experiment name ({', '.join(PRESETS)})")
    c.add_argument("--input", required=True, type=Path, help="Trial table (.csv or .xlsx)")
    c.add_argument("--sheet", default=None, help="Worksheet name for .xlsx input (default: first)")
    c.add_argument("--col", action="append", metavar="FIELD=HEADER",
                   help="Explicit column for a raw field, e.g. qrot='Rotameter (L/h)'")
    c.add_argument("--config", type=Path, default=None, help="JSON file with rig overrides")
    c.add_argument("--user", default=None, help="User id to save the run under")
    c.add_argument("--store", type=Path, default=None, help="Record store root directory")
    c.add_argument("--outdir", type=Path, default=None, help="Write computed CSV/summary JSON here")
    c.add_argument("--plot", action="store_true", help="Also render the fit plot into --outdir")

    r = sub.add_parser("recent", help="Show the most recent saved run")
    r.add_argument("--experiment", required=True)
    r.add_argument("--config", type=Path, default=None)
    r.add_argument("--user", required=True)
    r.add_argument("--store", required=True, type=Path)

    sub.add_parser("experiments", help="List experiment presets and their rig constants")
    return p


def _session(a) -> CalibrationSession:
    cfg = load_config(a.config) if a.config else None
    formula = build_formula(a.experiment, cfg)
    store = JsonRecordStore(a.store) if a.store else None
    return CalibrationSession(formula, store=store, user_id=a.user)


def main(argv=None):
    ap = build_parser()
    a = ap.parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(a.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if a.cmd == "compute":
        s = _session(a)
        rows = load_raw_rows(a.input, s.formula, sheet=a.sheet, columns=_column_pairs(a.col))
        logger.info("loaded %d trial rows from %s", len(rows), a.input)
        s.rows.replace(rows)
        res = s.calculate()
        if isinstance(res, NoValidRows):
            print(json.dumps({"ok": False, "experiment": res.experiment,
                              "n_input_rows": res.n_input_rows, "error": res.message}))
            raise SystemExit(2)
        out = {
            "ok": True,
            "experiment": s.formula.name,
            "n_input_rows": len(rows),
            "n_computed_rows": len(res.computed_rows),
            "aggregate": res.aggregate.to_dict(),
            "table": results_table(res.computed_rows, s.formula).to_dict(orient="records"),
            "summary": summary_lines(s.formula, res.aggregate),
            "saved": s.can_save,
        }
        if not s.can_save:
            out["note"] = "Not signed in; result not saved."
        if a.outdir:
            files = write_summary_tables(a.outdir, res.computed_rows, s.formula, res.aggregate,
                                         stem=s.formula.name)
            if a.plot:
                from .visuals import plot_fit
                files.append(str(plot_fit(a.outdir, res.computed_rows, s.formula, res.aggregate,
                                          stem=f"{s.formula.name}_fit")))
            out["artifacts"] = files
        print(json.dumps(out, indent=2))
    elif a.cmd == "recent":
        s = _session(a)
        rec = s.load_most_recent()
        if isinstance(rec, NoRecordFound):
            print(json.dumps({"ok": True, "experiment": rec.experiment, "recent": None,
                              "message": rec.message}, indent=2))
            return 0
        agg = s.recent_aggregate
        print(json.dumps({
            "ok": True,
            "experiment": rec.experiment,
            "recent": rec.to_dict(),
            "aggregate": agg.to_dict(),
            "table": results_table(rec.computed_rows, s.formula).to_dict(orient="records"),
            "summary": summary_lines(s.formula, agg, average=rec.average_ratio),
        }, indent=2))
    elif a.cmd == "experiments":
        out = []
        for name, preset in PRESETS.items():
            f = build_formula(name)
            out.append({"preset": name, "description": preset.description,
                        **f.describe(), "rig": rig_summary(f.rig)})
        print(json.dumps(out, indent=2))
    return 0


if __name__ == "__main__":
    main()
