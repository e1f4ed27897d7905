"""
flowcal - rotameter / venturimeter calibration runs and schema-tolerant record normalization.
"""

__version__ = "0.1.0"

from .units import LPH_PER_M3S, KGFCM2_TO_PA, flow_to_si, pressure_to_si, pressure_to_head, coerce_number
from .geometry import RotameterRig, VenturiRig, rig_summary
from .formulas import ExperimentFormula, RotameterFormula, VenturimeterFormula, get_formula
from .aggregate import (
    AggregateResult,
    LinearFit,
    aggregate,
    average_ratio,
    pairwise_slope,
    least_squares_fit,
)
from .sciformat import format_scientific, format_fixed
from .records import CalibrationRecord, NoRecordFound, NoValidRows, to_document
from .normalize import normalize, normalize_rows
from .session import CalibrationSession, RowTable, SessionResult, compute_and_prepare
from .store import JsonRecordStore
from .presets import PRESETS, ExperimentPreset, build_formula, load_config

__all__ = [
    "__version__",
    "LPH_PER_M3S", "KGFCM2_TO_PA", "flow_to_si", "pressure_to_si", "pressure_to_head", "coerce_number",
    "RotameterRig", "VenturiRig", "rig_summary",
    "ExperimentFormula", "RotameterFormula", "VenturimeterFormula", "get_formula",
    "AggregateResult", "LinearFit", "aggregate", "average_ratio", "pairwise_slope", "least_squares_fit",
    "format_scientific", "format_fixed",
    "CalibrationRecord", "NoRecordFound", "NoValidRows", "to_document",
    "normalize", "normalize_rows",
    "CalibrationSession", "RowTable", "SessionResult", "compute_and_prepare",
    "JsonRecordStore",
    "PRESETS", "ExperimentPreset", "build_formula", "load_config",
]
