from __future__ import annotations
import math
import numbers

# L/h -> m^3/s: 1000 L per m^3, 3600 s per h
LPH_PER_M3S = 1000 * 3600
# kgf/cm^2 -> Pa
KGFCM2_TO_PA = 98066.5

RHO_WATER = 1000.0  # kg/m^3
G_M_S2 = 9.81       # m/s^2


def flow_to_si(value: float, rate_factor: float = LPH_PER_M3S) -> float:
    """Volumetric flow in a native unit -> m^3/s (L/h by default)."""
    return value / rate_factor


def pressure_to_si(dp_native: float, to_pa: float = KGFCM2_TO_PA) -> float:
    """Pressure difference in a native unit -> Pa (kgf/cm^2 by default)."""
    return dp_native * to_pa


def pressure_to_head(dp_pa: float, rho: float = RHO_WATER, g: float = G_M_S2) -> float:
    """Equivalent column head [m] for a pressure difference [Pa]: H = dp / (rho g)."""
    return dp_pa / (rho * g)


def circle_area(d: float) -> float:
    return math.pi * d * d / 4.0


def coerce_number(x) -> float | None:
    """Return ``x`` as a finite float, or None.

    Accepts ints, floats, numpy scalars and numeric strings (a decimal comma
    is read as a point, as lab sheets often carry it). Booleans, blanks and
    anything non-finite come back as None.
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, numbers.Real):
        v = float(x)
    elif isinstance(x, str):
        s = x.strip().replace(",", ".")
        if not s:
            return None
        try:
            v = float(s)
        except ValueError:
            return None
    else:
        return None
    return v if math.isfinite(v) else None
