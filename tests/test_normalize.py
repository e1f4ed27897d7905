import json
from datetime import datetime, timezone

import pytest

from flowcal.formulas import RotameterFormula, VenturimeterFormula
from flowcal.normalize import ROW_STRATEGIES, extract_rows, normalize, normalize_rows
from flowcal.records import CalibrationRecord, NoRecordFound, parse_timestamp
from flowcal.session import compute_and_prepare
from flowcal.store import _json_default

ROT_INPUT = [
    {"id": "1", "qrot": "100", "time": "20"},
    {"id": "2", "qrot": "200", "time": "10.4"},
    {"id": "3", "qrot": "abc", "time": "5"},
    {"id": "4", "qrot": "300", "time": "7.2"},
]
VEN_INPUT = [
    {"id": "1", "P1": "0.6", "P2": "0.2", "time": "41"},
    {"id": "2", "P1": "0.9", "P2": "0.2", "time": "33"},
    {"id": "3", "P1": "0.1", "P2": "0.2", "time": "30"},
    {"id": "4", "P1": "1.3", "P2": "0.2", "time": "26.5"},
]
NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def _through_json(doc):
    return json.loads(json.dumps(doc, default=_json_default))


@pytest.mark.parametrize("formula,rows", [
    (RotameterFormula(), ROT_INPUT),
    (VenturimeterFormula(), VEN_INPUT),
])
def test_round_trip_reproduces_computed_rows(formula, rows):
    res = compute_and_prepare(rows, formula, now=NOW)
    rec = normalize(_through_json(res.persistable), formula)
    assert isinstance(rec, CalibrationRecord)
    assert list(rec.computed_rows) == list(res.computed_rows)
    assert rec.average_ratio == res.aggregate.average_ratio
    assert rec.created_at == NOW
    assert [r["id"] for r in rec.raw_rows] == ["1", "2", "3", "4"]


def test_document_layout_matches_stored_field_names():
    res = compute_and_prepare(ROT_INPUT, RotameterFormula(), now=NOW)
    assert set(res.persistable) == {"createdAt", "data", "computed", "inputRows", "avgCorrectionFactor", "avgCf"}
    res = compute_and_prepare(VEN_INPUT, VenturimeterFormula(), now=NOW)
    assert set(res.persistable) == {"createdAt", "data", "inputRows", "averageCd"}


@pytest.mark.parametrize("formula,rows", [
    (RotameterFormula(), ROT_INPUT),
    (VenturimeterFormula(), VEN_INPUT),
])
def test_input_rows_only_document_rederives_everything(formula, rows):
    rec = normalize({"createdAt": NOW.isoformat(), "inputRows": rows}, formula)
    direct = [r for r in (formula.derive(x) for x in rows) if r is not None]
    assert list(rec.computed_rows) == direct
    assert rec.average_ratio == pytest.approx(compute_and_prepare(rows, formula).aggregate.average_ratio)


def test_legacy_computed_alias_and_avg_cf():
    doc = {
        "computed": [{"qrot": 100, "time": 20, "qrot_m3s": 100 / 3.6e6, "qact": 2.5e-4, "cf": 9.0}],
        "avgCf": 9.0,
    }
    rec = normalize(doc, RotameterFormula())
    assert len(rec.computed_rows) == 1
    assert rec.average_ratio == 9.0
    assert rec.created_at is None


def test_data_takes_priority_over_aliases():
    doc = {
        "data": [{"qrot": 100, "time": 20}],
        "computed": [{"qrot": 999, "time": 1}],
        "inputRows": [{"qrot": 1, "time": 1}],
    }
    name, rows = extract_rows(doc)
    assert name == "data"
    assert rows == [{"qrot": 100, "time": 20}]
    assert [s.name for s in ROW_STRATEGIES] == ["data", "computed", "inputRows"]


def test_stored_values_win_over_rederivation():
    doc = {"data": [{"qrot": 100, "time": 20, "qrot_m3s": 2.7e-5, "qact": 2.4e-4, "cf": 8.7}]}
    row = normalize(doc, RotameterFormula()).computed_rows[0]
    assert row["qact"] == 2.4e-4
    assert row["cf"] == 8.7


def test_malformed_fields_are_rederived():
    doc = {"data": [{"qrot": "100", "time": "20", "qrot_m3s": "n/a", "qact": None, "cf": "NaN"}]}
    row = normalize(doc, RotameterFormula()).computed_rows[0]
    assert row["qrot_m3s"] == pytest.approx(100 / 3.6e6)
    assert row["qact"] == pytest.approx(2.5e-4)
    assert row["cf"] == pytest.approx(9.0)


def test_average_alias_order_and_recompute():
    rows = [{"qrot": 100, "time": 20}, {"qrot": 100, "time": 10}]
    rec = normalize({"data": rows, "avgCorrectionFactor": "bad", "avgCf": 5.0}, RotameterFormula())
    assert rec.average_ratio == 5.0
    rec = normalize({"data": rows}, RotameterFormula())
    assert rec.average_ratio == pytest.approx((9.0 + 18.0) / 2)


def test_venturimeter_legacy_rows_without_cd():
    f = VenturimeterFormula()
    full = f.derive({"P1": 1.0, "P2": 0.4, "time": 30})
    partial = {k: full[k] for k in ("P1", "P2", "time", "dP_Pa", "Q_act")}
    rec = normalize({"data": [partial]}, f)
    assert rec.computed_rows[0]["Cd"] == pytest.approx(full["Cd"])
    assert rec.average_ratio == pytest.approx(full["Cd"])


def test_malformed_rows_excluded_individually():
    doc = {"data": [1, "x", None, {"qrot": "a", "time": 5}, {"qrot": 100, "time": -1}, {"qrot": 100, "time": 20}]}
    rec = normalize(doc, RotameterFormula())
    assert len(rec.computed_rows) == 1
    assert rec.computed_rows[0]["cf"] == pytest.approx(9.0)


def test_wrong_shape_document_yields_empty_record():
    rec = normalize({"data": "not a list", "avgCf": None}, RotameterFormula())
    assert isinstance(rec, CalibrationRecord)
    assert rec.computed_rows == ()
    assert rec.average_ratio is None


@pytest.mark.parametrize("doc", [None, "junk", 42, ["data"]])
def test_absent_document_is_no_record_found(doc):
    assert isinstance(normalize(doc, RotameterFormula()), NoRecordFound)


def test_normalize_rows_direct():
    rows = normalize_rows([{"P1": "1", "P2": "0.5", "time": "20"}], VenturimeterFormula())
    assert rows[0]["Cd"] is not None


@pytest.mark.parametrize("value,expected", [
    ("2024-03-01T09:30:00+00:00", NOW),
    ("2024-03-01T09:30:00Z", NOW),
    ("2024-03-01T09:30:00", NOW),
    (NOW.timestamp(), NOW),
    ({"seconds": int(NOW.timestamp()), "nanoseconds": 0}, NOW),
    (NOW.replace(tzinfo=None), NOW),
    (NOW.timestamp() * 1000, NOW),
    ({"seconds": 10 ** 20, "nanoseconds": 0}, None),
    (1e300, None),
    ("yesterday", None),
    (None, None),
])
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


def test_out_of_range_created_at_reads_as_absent():
    rows = [{"qrot": 100, "time": 20}]
    rec = normalize({"createdAt": 1_700_000_000_000, "data": rows}, RotameterFormula())
    assert rec.created_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    rec = normalize({"createdAt": 1e300, "data": rows}, RotameterFormula())
    assert rec.created_at is None
    assert len(rec.computed_rows) == 1
