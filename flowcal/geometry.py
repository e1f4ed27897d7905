from __future__ import annotations

from dataclasses import dataclass, fields
import math

from .units import LPH_PER_M3S, KGFCM2_TO_PA, RHO_WATER, G_M_S2, circle_area


def _check_positive(obj) -> None:
    for f in fields(obj):
        v = getattr(obj, f.name)
        if not isinstance(v, (int, float)) or not math.isfinite(v) or v <= 0:
            raise ValueError(f"{type(obj).__name__}.{f.name} must be a positive number, got {v!r}")


@dataclass(frozen=True)
class RotameterRig:
    # fixed collecting volume timed per trial
    tank_volume_m3: float = 5e-3
    # rotameter scale unit -> m^3/s (L/h)
    rate_factor: float = LPH_PER_M3S

    def __post_init__(self):
        _check_positive(self)


@dataclass(frozen=True)
class VenturiRig:
    # venturi
    pipe_diameter_m: float = 0.02
    throat_diameter_m: float = 0.0125

    # collecting tank (plan dimensions) and timed rise in the piezometer
    tank_length_m: float = 0.6
    tank_breadth_m: float = 0.4
    rise_m: float = 0.05

    # fluid and manometer
    rho_kg_m3: float = RHO_WATER
    g_m_s2: float = G_M_S2
    to_pa: float = KGFCM2_TO_PA

    def __post_init__(self):
        _check_positive(self)

    @property
    def pipe_area_m2(self) -> float:
        return circle_area(self.pipe_diameter_m)

    @property
    def throat_area_m2(self) -> float:
        return circle_area(self.throat_diameter_m)

    @property
    def tank_area_m2(self) -> float:
        return self.tank_length_m * self.tank_breadth_m

    @property
    def area_ratio_sq(self) -> float:
        """(A2/A1)^2; the venturi relation needs this strictly below 1."""
        return (self.throat_area_m2 / self.pipe_area_m2) ** 2

    @property
    def collected_volume_m3(self) -> float:
        return self.tank_area_m2 * self.rise_m


def rig_summary(rig) -> dict:
    """Plain dict of rig fields plus derived areas, for JSON output."""
    out = {f.name: getattr(rig, f.name) for f in fields(rig)}
    if isinstance(rig, VenturiRig):
        out.update(
            A1_m2=rig.pipe_area_m2,
            A2_m2=rig.throat_area_m2,
            A_tank_m2=rig.tank_area_m2,
        )
    return out
