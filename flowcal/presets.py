from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional
import json

from .formulas import ExperimentFormula, get_formula


@dataclass
class ExperimentPreset:
    """Named rig configuration for one experiment.

    ``rig`` holds overrides of the rig dataclass fields; an empty dict means
    the laboratory defaults.
    """

    name: str
    experiment: str
    rig: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


# Laboratory defaults; load_config() supplies per-rig overrides on top.
PRESETS: dict[str, ExperimentPreset] = {
    "rotameter": ExperimentPreset(
        name="rotameter",
        experiment="rotameter",
        description="Rotameter calibration, 5 L collecting volume",
    ),
    "venturimeter": ExperimentPreset(
        name="venturimeter",
        experiment="venturimeter",
        description="Venturimeter Cd, d1=20 mm, d2=12.5 mm, 0.6 x 0.4 m tank, 5 cm rise",
    ),
}


def _rig_fields(formula: ExperimentFormula) -> set[str]:
    return {f.name for f in fields(formula.rig)}


def load_config(path: Path | str) -> Dict[str, Any]:
    """Read a JSON rig config.

    Either ``{"experiment": ..., "rig": {...}}`` or a flat mapping of rig
    fields.
    """
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")
    if "rig" in data:
        rig = data["rig"]
        if not isinstance(rig, dict):
            raise ValueError(f"{path}: 'rig' must be a JSON object")
        return {"experiment": data.get("experiment"), "rig": dict(rig)}
    return {"experiment": data.pop("experiment", None), "rig": data}


def build_formula(name: str, config: Optional[Dict[str, Any]] = None) -> ExperimentFormula:
    """Formula for a preset or experiment name, with optional rig overrides.

    ``config`` is what :func:`load_config` returns. Unknown rig keys and
    configs written for another experiment are rejected.
    """
    preset = PRESETS.get(name)
    formula = get_formula(preset.experiment if preset else name)
    overrides: Dict[str, Any] = dict(preset.rig) if preset else {}
    if config:
        exp = config.get("experiment")
        if exp and get_formula(exp).name != formula.name:
            raise ValueError(f"Config is for {exp!r}, not {formula.name!r}")
        overrides.update(config.get("rig") or {})
    unknown = set(overrides) - _rig_fields(formula)
    if unknown:
        raise ValueError(
            f"Unknown {formula.name} rig field(s) {sorted(unknown)}; expected {sorted(_rig_fields(formula))}"
        )
    return formula.with_rig(**overrides) if overrides else formula
