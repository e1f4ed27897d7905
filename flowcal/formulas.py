"""Per-experiment derivations.

Both experiments share one pipeline: raw fields are coerced to finite floats,
missing derived fields are filled in dependency order (``rederive``), and a
row counts as computed only when every derived field except the ratio is
present. ``derive`` is the strict path used on fresh input; ``rederive`` is
the tolerant path used when reading stored records, where values already
present are kept as stored.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Mapping, Optional
import math

from .geometry import RotameterRig, VenturiRig
from .units import coerce_number, flow_to_si, pressure_to_si, pressure_to_head


def _positive(v: Optional[float]) -> bool:
    return v is not None and v > 0


class ExperimentFormula:
    name: str = ""
    collection: str = ""
    raw_fields: tuple[str, ...] = ()
    derived_fields: tuple[str, ...] = ()
    ratio_field: str = ""
    fit_x: str = ""
    fit_y: str = ""
    fit_method: str = "pairwise"
    # document keys written for rows and for the average, oldest reader first
    row_keys: tuple[str, ...] = ("data",)
    average_aliases: tuple[str, ...] = ()

    @property
    def fields(self) -> tuple[str, ...]:
        return self.raw_fields + self.derived_fields

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(f for f in self.derived_fields if f != self.ratio_field)

    def parse_raw(self, row: Mapping[str, Any]) -> Optional[Dict[str, float]]:
        """Raw fields as finite floats, or None if any is missing/unparseable."""
        out = {}
        for f in self.raw_fields:
            v = coerce_number(row.get(f))
            if v is None:
                return None
            out[f] = v
        return out

    def fill(self, row: Dict[str, Optional[float]]) -> None:
        """Fill missing derived fields of ``row`` in place."""
        raise NotImplementedError

    def rederive(self, row: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        """Coerce every known field and re-derive the ones that are missing.

        Present, finite stored values win over re-derivation.
        """
        out = {f: coerce_number(row.get(f)) for f in self.fields}
        self.fill(out)
        return out

    def is_complete(self, row: Mapping[str, Any]) -> bool:
        return all(row.get(f) is not None for f in self.fields if f != self.ratio_field)

    def derive(self, row: Mapping[str, Any]) -> Optional[Dict[str, Optional[float]]]:
        """Computed row for one raw trial, or None when the trial is excluded."""
        raw = self.parse_raw(row)
        if raw is None:
            return None
        out: Dict[str, Optional[float]] = dict(raw)
        out.update({f: None for f in self.derived_fields})
        self.fill(out)
        return out if self.is_complete(out) else None

    def with_rig(self, **overrides) -> "ExperimentFormula":
        raise NotImplementedError

    def describe(self) -> dict:
        return {
            "name": self.name,
            "collection": self.collection,
            "raw_fields": list(self.raw_fields),
            "derived_fields": list(self.derived_fields),
            "ratio_field": self.ratio_field,
            "fit": {"x": self.fit_x, "y": self.fit_y, "method": self.fit_method},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rig={getattr(self, 'rig', None)!r})"


class RotameterFormula(ExperimentFormula):
    """Rotameter reading [L/h] against timed tank fill [s].

    qrot_m3s = qrot / 3.6e6 ; qact = V / t ; cf = qact / qrot_m3s
    """

    name = "rotameter"
    collection = "flowCalibration"
    raw_fields = ("qrot", "time")
    derived_fields = ("qrot_m3s", "qact", "cf")
    ratio_field = "cf"
    fit_x = "qrot_m3s"
    fit_y = "qact"
    fit_method = "pairwise"
    row_keys = ("data", "computed")
    average_aliases = ("avgCorrectionFactor", "avgCf")

    def __init__(self, rig: RotameterRig | None = None):
        self.rig = rig or RotameterRig()

    def with_rig(self, **overrides) -> "RotameterFormula":
        return RotameterFormula(replace(self.rig, **overrides))

    def fill(self, row):
        qrot, time = row.get("qrot"), row.get("time")
        if row.get("qrot_m3s") is None and qrot is not None:
            row["qrot_m3s"] = flow_to_si(qrot, self.rig.rate_factor)
        if row.get("qact") is None and _positive(time):
            row["qact"] = self.rig.tank_volume_m3 / time
        if row.get("cf") is None and _positive(row.get("qrot_m3s")) and row.get("qact") is not None:
            row["cf"] = row["qact"] / row["qrot_m3s"]


class VenturimeterFormula(ExperimentFormula):
    """Venturi pressure drop [kgf/cm^2] against timed tank rise [s].

    H = (P1 - P2) * 98066.5 / (rho g)
    Q_theo = A2 * sqrt(2 g H / (1 - (A2/A1)^2)) ; Q_act = A_tank * dH / t
    Cd = Q_act / Q_theo
    """

    name = "venturimeter"
    collection = "venturimeterCalibration"
    raw_fields = ("P1", "P2", "time")
    derived_fields = ("dP_kgcm2", "dP_Pa", "H_m", "Q_theo", "Q_act", "Cd")
    ratio_field = "Cd"
    fit_x = "Q_theo"
    fit_y = "Q_act"
    fit_method = "lstsq"
    row_keys = ("data",)
    average_aliases = ("averageCd",)

    def __init__(self, rig: VenturiRig | None = None):
        self.rig = rig or VenturiRig()

    def with_rig(self, **overrides) -> "VenturimeterFormula":
        return VenturimeterFormula(replace(self.rig, **overrides))

    def theoretical_flow(self, H_m: float) -> Optional[float]:
        """Q_theo [m^3/s] for head ``H_m``; None for degenerate geometry or H < 0."""
        ratio_sq = self.rig.area_ratio_sq
        if ratio_sq >= 1:
            return None
        radicand = 2.0 * self.rig.g_m_s2 * H_m / (1.0 - ratio_sq)
        if not math.isfinite(radicand) or radicand < 0:
            return None
        return self.rig.throat_area_m2 * math.sqrt(radicand)

    def fill(self, row):
        P1, P2, time = row.get("P1"), row.get("P2"), row.get("time")
        if row.get("dP_kgcm2") is None and P1 is not None and P2 is not None:
            row["dP_kgcm2"] = P1 - P2
        if row.get("dP_Pa") is None and row.get("dP_kgcm2") is not None:
            row["dP_Pa"] = pressure_to_si(row["dP_kgcm2"], self.rig.to_pa)
        if row.get("H_m") is None and row.get("dP_Pa") is not None:
            row["H_m"] = pressure_to_head(row["dP_Pa"], self.rig.rho_kg_m3, self.rig.g_m_s2)
        if row.get("Q_theo") is None and row.get("H_m") is not None:
            row["Q_theo"] = self.theoretical_flow(row["H_m"])
        if row.get("Q_act") is None and _positive(time):
            row["Q_act"] = self.rig.collected_volume_m3 / time
        if row.get("Cd") is None and _positive(row.get("Q_theo")) and row.get("Q_act") is not None:
            row["Cd"] = row["Q_act"] / row["Q_theo"]


FORMULAS: dict[str, type[ExperimentFormula]] = {
    RotameterFormula.name: RotameterFormula,
    VenturimeterFormula.name: VenturimeterFormula,
}


def get_formula(name: str, **rig_overrides) -> ExperimentFormula:
    """Formula for an experiment name (or its store collection name)."""
    key = str(name).strip()
    cls = FORMULAS.get(key.lower())
    if cls is None:
        cls = next((c for c in FORMULAS.values() if c.collection == key), None)
    if cls is None:
        raise KeyError(f"Unknown experiment {name!r}; expected one of {sorted(FORMULAS)}")
    formula = cls()
    return formula.with_rig(**rig_overrides) if rig_overrides else formula
