"""
Transport properties derived from solved field data.

All functions are pure: they take raw solver output (``FieldData``) plus fluid
properties and return numbers. Denominators that could be zero carry an additive
epsilon, so there is no exception-based division guarding.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .constants import DEFAULT_CONSTANTS, INLET, OUTLET, PORE_WALL, BLOCK_SURFACE, IN_OUT_BOX

logger = logging.getLogger(__name__)

_MC = DEFAULT_CONSTANTS['metrics']
_PC = DEFAULT_CONSTANTS['physics']


@dataclass(frozen=True, eq=False)
class FieldData:
    """Raw outputs of one solved case, SI units"""
    cell_centres: np.ndarray        # (N, 3) m
    cell_volumes: np.ndarray        # (N,) m³
    velocity: np.ndarray            # (N, 3) m/s
    patch_areas: Dict[str, float]   # m², including IN_OUT_BOX
    inlet_mass_flow: float          # kg/s, positive into the domain
    outlet_mass_flow: float         # kg/s, positive out of the domain
    in_pressure: float              # Pa, area average on x = -H
    out_pressure: float             # Pa, area average on x = +H
    in_area: float                  # m², plane section at x = -offset*H
    half_length: float              # m
    in_out_area: Optional[float] = None     # m², throat openings in the block surface
    residuals: Dict[str, float] = field(default_factory=dict)
    residual_history: List[Dict[str, float]] = field(default_factory=list)


@dataclass(frozen=True)
class FluidProperties:
    rho: float = _PC.WATER_DENSITY_DEFAULT
    mu: float = _PC.WATER_VISCOSITY_DEFAULT
    epsilon: float = _MC.EPSILON
    m2_to_millidarcy: float = _MC.M2_TO_MILLIDARCY

    @classmethod
    def from_config(cls, config: Dict) -> "FluidProperties":
        return cls(
            rho=float(config["physics"]["rho"]),
            mu=float(config["physics"]["mu"]),
            epsilon=float(config["metrics"]["epsilon"]),
            m2_to_millidarcy=float(config["metrics"]["m2_to_millidarcy"]),
        )


@dataclass(frozen=True)
class DerivedMetrics:
    tort1: float
    cell_count: int
    length_a: float
    perm1: float
    porosity: float
    reynolds: float
    perm2: float
    in_mass_flow: float
    out_mass_flow: float
    tort2: float
    perm3: float
    pressure_drop: float
    pore_volume: float
    surface_area: float
    in_area: float
    out_area: float
    in_out_area: float
    in_pressure: float
    out_pressure: float
    vel: float
    vel_x: float
    continuity: float
    x_momentum: float
    y_momentum: float
    z_momentum: float
    vel2: float = 0.0
    vel_x2: float = 0.0

    def as_row(self) -> Dict[str, float]:
        """Output columns in export order"""
        return {
            "Tort1": self.tort1,
            "CellCount": self.cell_count,
            "LengthA": self.length_a,
            "Perm1": self.perm1,
            "Porosity": self.porosity,
            "ReyNo": self.reynolds,
            "Perm2": self.perm2,
            "InMassFlow": self.in_mass_flow,
            "OutMassFlow": self.out_mass_flow,
            "Tort2": self.tort2,
            "Perm3": self.perm3,
            "PresDrop": self.pressure_drop,
            "PorVol": self.pore_volume,
            "SurfArea": self.surface_area,
            "in-area": self.in_area,
            "out-area": self.out_area,
            "in-out-area": self.in_out_area,
            "InPres": self.in_pressure,
            "OutPres": self.out_pressure,
            "Vel": self.vel,
            "VelX": self.vel_x,
            "Continuity": self.continuity,
            "X-momentum": self.x_momentum,
            "Y-momentum": self.y_momentum,
            "Z-momentum": self.z_momentum,
        }


def area_of_interest_mask(cell_centres: np.ndarray, half_length: float) -> np.ndarray:
    """Cells whose centre satisfies |x|, |y|, |z| <= H"""
    if len(cell_centres) == 0:
        return np.zeros(0, dtype=bool)
    return np.all(np.abs(cell_centres) <= half_length, axis=1)


def length_a(inlet_area: float) -> float:
    return math.sqrt(inlet_area)


def volume_average(values: np.ndarray, volumes: np.ndarray) -> float:
    total = float(volumes.sum())
    if total <= 0.0:
        return 0.0
    return float((values * volumes).sum() / total)


def tortuosity(vel: float, vel_x: float, epsilon: float = _MC.EPSILON) -> float:
    return (vel + epsilon) / (vel_x + epsilon)


def porosity(pore_volume: float, length: float) -> float:
    return pore_volume / length ** 3


def reynolds_number(vel: float, length: float, rho: float, mu: float,
                    epsilon: float = _MC.EPSILON) -> float:
    return (vel + epsilon) * length * rho / mu


def darcy_permeability(velocity: float, mu: float, length: float, pressure_drop: float,
                       epsilon: float = _MC.EPSILON,
                       m2_to_millidarcy: float = _MC.M2_TO_MILLIDARCY) -> float:
    """Darcy's law, millidarcy: (v+eps)*mu*L/(dP+eps)*K"""
    return (velocity + epsilon) * mu * length / (pressure_drop + epsilon) * m2_to_millidarcy


def superficial_permeability(mass_flow: float, rho: float, mu: float, length: float,
                             pressure_drop: float, epsilon: float = _MC.EPSILON,
                             m2_to_millidarcy: float = _MC.M2_TO_MILLIDARCY) -> float:
    """Darcy's law with superficial velocity (m/rho + eps) / L²"""
    superficial = (mass_flow / rho + epsilon) / (length * length)
    return superficial * mu * length / (pressure_drop + epsilon) * m2_to_millidarcy


def compute_metrics(data: FieldData, fluid: Optional[FluidProperties] = None) -> DerivedMetrics:
    """Derive every reported quantity from one solved case"""
    fluid = fluid or FluidProperties()
    eps = fluid.epsilon

    mask = area_of_interest_mask(data.cell_centres, data.half_length)
    volumes = data.cell_volumes[mask]
    velocity = data.velocity[mask]
    speed = np.linalg.norm(velocity, axis=1) if len(velocity) else np.zeros(0)
    ux = velocity[:, 0] if len(velocity) else np.zeros(0)

    length = length_a(data.patch_areas[INLET])
    vel = volume_average(speed, volumes)
    vel_x = volume_average(ux, volumes)
    vel2 = float(speed.sum())
    vel_x2 = float(ux.sum())
    pore_volume = float(volumes.sum())
    pressure_drop = data.in_pressure - data.out_pressure

    in_out_area = data.in_out_area
    if in_out_area is None:
        in_out_area = data.patch_areas[IN_OUT_BOX] - (
            data.patch_areas[BLOCK_SURFACE] + data.patch_areas[INLET] + data.patch_areas[OUTLET])

    metrics = DerivedMetrics(
        tort1=tortuosity(vel, vel_x, eps),
        cell_count=int(mask.sum()),
        length_a=length,
        perm1=darcy_permeability(vel, fluid.mu, length, pressure_drop, eps, fluid.m2_to_millidarcy),
        porosity=porosity(pore_volume, length),
        reynolds=reynolds_number(vel, length, fluid.rho, fluid.mu, eps),
        perm2=superficial_permeability(data.inlet_mass_flow, fluid.rho, fluid.mu, length,
                                       pressure_drop, eps, fluid.m2_to_millidarcy),
        in_mass_flow=data.inlet_mass_flow,
        out_mass_flow=data.outlet_mass_flow,
        tort2=tortuosity(vel2, vel_x2, eps),
        perm3=superficial_permeability(data.outlet_mass_flow, fluid.rho, fluid.mu, length,
                                       pressure_drop, eps, fluid.m2_to_millidarcy),
        pressure_drop=pressure_drop,
        pore_volume=pore_volume,
        surface_area=data.patch_areas[PORE_WALL],
        in_area=data.in_area,
        out_area=in_out_area - data.in_area,
        in_out_area=in_out_area,
        in_pressure=data.in_pressure,
        out_pressure=data.out_pressure,
        vel=vel,
        vel_x=vel_x,
        continuity=data.residuals.get("p", math.nan),
        x_momentum=data.residuals.get("Ux", math.nan),
        y_momentum=data.residuals.get("Uy", math.nan),
        z_momentum=data.residuals.get("Uz", math.nan),
        vel2=vel2,
        vel_x2=vel_x2,
    )

    if not 0.0 <= metrics.porosity <= 1.0:
        logger.warning(f"⚠️  Porosity {metrics.porosity:.4f} outside [0, 1] - check length units")
    if data.inlet_mass_flow > 0 and abs(data.inlet_mass_flow - data.outlet_mass_flow) > 1e-3 * data.inlet_mass_flow:
        logger.warning(f"⚠️  Mass imbalance: in={data.inlet_mass_flow:.4e}, out={data.outlet_mass_flow:.4e} kg/s")

    return metrics
