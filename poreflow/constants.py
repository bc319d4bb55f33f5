"""
Constants for the pore-microstructure flow pipeline.
All magic numbers and physical defaults centralized here for easy configuration.
"""
from dataclasses import dataclass
from typing import Dict, Any, Tuple

@dataclass
class PhysicsConstants:
    """Fluid properties and boundary values"""
    # Water at ~25°C
    WATER_DENSITY_DEFAULT = 997.0       # kg/m³
    WATER_VISCOSITY_DEFAULT = 0.00089   # Pa·s

    # Driving pressure across the sample
    INLET_TOTAL_PRESSURE_DEFAULT = 1.0  # Pa
    OUTLET_STATIC_PRESSURE_DEFAULT = 0.0  # Pa

    FLOW_MODEL_DEFAULT = "LAMINAR"
    SUPPORTED_FLOW_MODELS = ("LAMINAR",)

@dataclass
class GeometryLimits:
    """Geometry construction parameters"""
    # Microns -> metres in two stages: /100 on import, x1e-4 on the final scale
    PRE_SCALE_DIVISOR = 100.0
    FINAL_SCALE_FACTOR = 1.0e-4

    # Inlet/outlet boxes run from H to 10H along the flow axis
    EXTENSION_FACTOR = 10.0

    # Tessellation
    SPHERE_SEGMENTS = 32
    CYLINDER_SEGMENTS = 24

    # Relative tolerances used by face predicates
    NORMAL_TOLERANCE = 1e-6
    PLANE_TOLERANCE_RATIO = 1e-6

    MIN_THROAT_LENGTH_RATIO = 1e-9

@dataclass
class MeshParams:
    """Mesher engine parameters"""
    BASE_SIZE_DEFAULT = 1.0e-5          # m
    SURFACE_LEVELS_DEFAULT = (1, 2)
    FEATURE_LEVEL_DEFAULT = 2
    FEATURE_ANGLE_DEFAULT = 150
    N_CELLS_BETWEEN_LEVELS = 2
    MAX_LOCAL_CELLS = 2_000_000
    MAX_GLOBAL_CELLS = 20_000_000
    BLOCK_PADDING_CELLS = 2

    # Timeouts (seconds)
    BLOCKMESH_TIMEOUT = 300
    FEATURES_TIMEOUT = 300
    SNAPPY_TIMEOUT_MAX = 3600 * 6
    CHECKMESH_TIMEOUT = 600

@dataclass
class SolverParams:
    """Flow solver engine parameters"""
    APPLICATION_DEFAULT = "simpleFoam"
    POSTPROCESS_DEFAULT = "postProcess"
    MAX_ITERATIONS_DEFAULT = 200
    CONVERGENCE_CRITERIA_DEFAULT = 1e-6
    RELAXATION_P = 0.3
    RELAXATION_U = 0.7
    N_NON_ORTHO_CORRECTORS = 1

@dataclass
class MetricConstants:
    """Derived-quantity constants"""
    EPSILON = 1e-99                              # division safety only
    M2_TO_MILLIDARCY = 1013249965828.14 * 1000   # 1 m² = 1.01325e15 mD
    IN_AREA_OFFSET = 0.9999                      # in-area plane at -0.9999 H
    PRESSURE_PLANE_OFFSET = 0.9999               # InPres/OutPres planes at -/+0.9999 H

@dataclass
class MemoryLimits:
    """Resource guard for engine subprocesses"""
    MAX_MEMORY_GB_DEFAULT = 4.0

# Boundary patch names shared by geometry, mesher and solver
INLET = "Inlet"
OUTLET = "Outlet"
PORE_WALL = "PoreWallSurface"
BLOCK_SURFACE = "BlockSurface"
IN_OUT_BOX = "In-Out-Box"

BOUNDARY_PATCHES: Tuple[str, ...] = (INLET, OUTLET, PORE_WALL, BLOCK_SURFACE)
WALL_PATCHES: Tuple[str, ...] = (PORE_WALL, BLOCK_SURFACE)

# Export all constants as a single config dict
DEFAULT_CONSTANTS: Dict[str, Any] = {
    'physics': PhysicsConstants(),
    'geometry': GeometryLimits(),
    'mesh': MeshParams(),
    'solver': SolverParams(),
    'metrics': MetricConstants(),
    'memory': MemoryLimits(),
}
