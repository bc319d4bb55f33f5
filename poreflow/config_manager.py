"""
Configuration management for the pore-flow batch pipeline.
Handles loading, validation, and normalization of all configuration parameters.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Any, Tuple, Optional

from .constants import DEFAULT_CONSTANTS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent / "configs" / "default.json"

class ConfigManager:
    """Centralized configuration management with validation"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
        self.config = self._load_and_validate_config()

    def _load_and_validate_config(self) -> Dict[str, Any]:
        """Load and validate configuration from file"""
        try:
            with open(self.config_file) as f:
                config = json.load(f)
        except Exception as e:
            raise ValueError(f"Failed to load config from {self.config_file}: {e}")

        if not isinstance(config, dict):
            raise ValueError(f"Config root must be an object: {self.config_file}")

        self._validate_config_structure(config)
        self._validate_paths_config(config)
        self._validate_batch_config(config)
        self._validate_geometry_config(config)
        self._validate_mesh_config(config)
        self._validate_physics_config(config)
        self._validate_solver_config(config)
        self._validate_metrics_config(config)
        self._validate_export_config(config)

        return config

    def _validate_config_structure(self, config: Dict[str, Any]) -> None:
        """Validate that all required config sections exist"""
        required_sections = ["paths", "batch", "geometry", "mesh", "physics",
                             "solver", "metrics", "export"]
        for section in required_sections:
            if section not in config:
                config[section] = {}
                logger.warning(f"Missing config section '{section}' - using defaults")

        config.setdefault("openfoam_env_path", "source /opt/openfoam12/etc/bashrc")
        config.setdefault("max_memory_gb", DEFAULT_CONSTANTS['memory'].MAX_MEMORY_GB_DEFAULT)

    def _validate_paths_config(self, config: Dict[str, Any]) -> None:
        P = config["paths"]
        P.setdefault("data_dir", "Data")
        P.setdefault("output_dir", ".")
        P.setdefault("work_dir", "cases")
        P.setdefault("bodies_pattern", "pore_bodies_{n}.csv")
        P.setdefault("throats_pattern", "pore_throats_{n}.csv")
        P.setdefault("output_pattern", "simulation_{n}.csv")

        for key in ("bodies_pattern", "throats_pattern", "output_pattern"):
            if "{n}" not in P[key]:
                raise ValueError(f"paths.{key} must contain '{{n}}': {P[key]!r}")

    def _validate_batch_config(self, config: Dict[str, Any]) -> None:
        B = config["batch"]
        B.setdefault("start", 1)
        B.setdefault("finish", B["start"])
        B["start"] = int(B["start"])
        B["finish"] = int(B["finish"])
        if B["finish"] < B["start"]:
            logger.warning(f"Batch range is empty: start={B['start']} > finish={B['finish']}")

    def _validate_geometry_config(self, config: Dict[str, Any]) -> None:
        G = config["geometry"]
        constants = DEFAULT_CONSTANTS['geometry']

        G.setdefault("pre_scale_divisor", constants.PRE_SCALE_DIVISOR)
        G.setdefault("final_scale_factor", constants.FINAL_SCALE_FACTOR)
        G.setdefault("extension_factor", constants.EXTENSION_FACTOR)
        G.setdefault("sphere_segments", constants.SPHERE_SEGMENTS)
        G.setdefault("cylinder_segments", constants.CYLINDER_SEGMENTS)

        if G["pre_scale_divisor"] <= 0 or G["final_scale_factor"] <= 0:
            raise ValueError("geometry scale factors must be positive")

        # Boxes must start outside the area of interest
        if G["extension_factor"] <= 1.0:
            G["extension_factor"] = constants.EXTENSION_FACTOR
            logger.warning(f"extension_factor must exceed 1 - reset to {constants.EXTENSION_FACTOR}")

        # Very coarse tessellation breaks the unions
        G["sphere_segments"] = max(8, int(G["sphere_segments"]))
        G["cylinder_segments"] = max(6, int(G["cylinder_segments"]))

    def _validate_mesh_config(self, config: Dict[str, Any]) -> None:
        M = config["mesh"]
        constants = DEFAULT_CONSTANTS['mesh']

        M.setdefault("base_size", constants.BASE_SIZE_DEFAULT)
        M.setdefault("surface_levels", list(constants.SURFACE_LEVELS_DEFAULT))
        M.setdefault("feature_level", constants.FEATURE_LEVEL_DEFAULT)
        M.setdefault("feature_angle", constants.FEATURE_ANGLE_DEFAULT)
        M.setdefault("n_cells_between_levels", constants.N_CELLS_BETWEEN_LEVELS)
        M.setdefault("max_local_cells", constants.MAX_LOCAL_CELLS)
        M.setdefault("max_global_cells", constants.MAX_GLOBAL_CELLS)
        M.setdefault("n_processors", 1)

        if M["base_size"] <= 0:
            raise ValueError(f"mesh.base_size must be positive: {M['base_size']}")

        levels = [int(level) for level in M["surface_levels"]][:2]
        if len(levels) != 2:
            levels = list(constants.SURFACE_LEVELS_DEFAULT)
            logger.warning(f"mesh.surface_levels needs two entries - using {levels}")
        if levels[0] > levels[1]:
            levels = [levels[1], levels[0]]
        M["surface_levels"] = [max(0, min(6, level)) for level in levels]
        M["n_processors"] = max(1, int(M["n_processors"]))

    def _validate_physics_config(self, config: Dict[str, Any]) -> None:
        """Validate physics configuration"""
        phys = config["physics"]
        constants = DEFAULT_CONSTANTS['physics']

        flow_model = str(phys.get("flow_model", constants.FLOW_MODEL_DEFAULT)).upper()
        phys["flow_model"] = flow_model

        phys.setdefault("rho", constants.WATER_DENSITY_DEFAULT)
        phys.setdefault("mu", constants.WATER_VISCOSITY_DEFAULT)
        phys.setdefault("inlet_total_pressure", constants.INLET_TOTAL_PRESSURE_DEFAULT)
        phys.setdefault("outlet_pressure", constants.OUTLET_STATIC_PRESSURE_DEFAULT)

        if phys["rho"] <= 0 or phys["mu"] <= 0:
            raise ValueError(f"physics.rho and physics.mu must be positive "
                             f"(rho={phys['rho']}, mu={phys['mu']})")

    def _validate_solver_config(self, config: Dict[str, Any]) -> None:
        S = config["solver"]
        constants = DEFAULT_CONSTANTS['solver']

        S.setdefault("application", constants.APPLICATION_DEFAULT)
        S.setdefault("postprocess", constants.POSTPROCESS_DEFAULT)
        S.setdefault("max_iterations", constants.MAX_ITERATIONS_DEFAULT)
        S.setdefault("convergence_criteria", constants.CONVERGENCE_CRITERIA_DEFAULT)
        S.setdefault("relaxation_factors", {"p": constants.RELAXATION_P, "U": constants.RELAXATION_U})
        S.setdefault("n_non_ortho_correctors", constants.N_NON_ORTHO_CORRECTORS)
        S.setdefault("n_processors", 1)

        S["max_iterations"] = max(1, int(S["max_iterations"]))
        S["n_processors"] = max(1, int(S["n_processors"]))
        relax = S["relaxation_factors"]
        relax.setdefault("p", constants.RELAXATION_P)
        relax.setdefault("U", constants.RELAXATION_U)
        for field in ("p", "U"):
            if not (0.0 < relax[field] <= 1.0):
                relax[field] = max(0.05, min(1.0, relax[field]))
                logger.warning(f"Clamped relaxation factor {field} to {relax[field]}")

    def _validate_metrics_config(self, config: Dict[str, Any]) -> None:
        Mt = config["metrics"]
        constants = DEFAULT_CONSTANTS['metrics']

        Mt.setdefault("epsilon", constants.EPSILON)
        Mt.setdefault("m2_to_millidarcy", constants.M2_TO_MILLIDARCY)
        Mt.setdefault("in_area_offset", constants.IN_AREA_OFFSET)

        Mt.setdefault("pressure_plane_offset", constants.PRESSURE_PLANE_OFFSET)

        if not (0.0 < Mt["in_area_offset"] <= 1.0):
            raise ValueError(f"metrics.in_area_offset must be in (0, 1]: {Mt['in_area_offset']}")
        # x = +/-H is the snapped box end face
        if not (0.0 < Mt["pressure_plane_offset"] < 1.0):
            raise ValueError(
                f"metrics.pressure_plane_offset must be in (0, 1): {Mt['pressure_plane_offset']}")

    def _validate_export_config(self, config: Dict[str, Any]) -> None:
        E = config["export"]
        E.setdefault("keep_case", False)
        E.setdefault("residual_history", True)

    def get_openfoam_env(self) -> str:
        """Get OpenFOAM environment setup command"""
        return self.config.get("openfoam_env_path", "source /opt/openfoam12/etc/bashrc")

    def get_max_memory_gb(self) -> float:
        return float(self.config.get("max_memory_gb", DEFAULT_CONSTANTS['memory'].MAX_MEMORY_GB_DEFAULT))

    def get_batch_range(self) -> Tuple[int, int]:
        """Get the closed sample index range [start, finish]"""
        batch = self.config["batch"]
        return int(batch["start"]), int(batch["finish"])

    def set_batch_range(self, start: Optional[int] = None, finish: Optional[int] = None) -> None:
        """Override the batch range (CLI flags take precedence over the file)"""
        batch = self.config["batch"]
        if start is not None:
            batch["start"] = int(start)
        if finish is not None:
            batch["finish"] = int(finish)
        elif start is not None and batch["finish"] < batch["start"]:
            batch["finish"] = batch["start"]

    def set_path(self, key: str, value) -> None:
        if key not in ("data_dir", "output_dir", "work_dir"):
            raise KeyError(f"Unknown path setting: {key}")
        self.config["paths"][key] = str(value)

    def get_path(self, key: str) -> Path:
        return Path(self.config["paths"][key])

    def bodies_file(self, n: int) -> Path:
        return self.get_path("data_dir") / self.config["paths"]["bodies_pattern"].format(n=n)

    def throats_file(self, n: int) -> Path:
        return self.get_path("data_dir") / self.config["paths"]["throats_pattern"].format(n=n)

    def output_file(self, n: int) -> Path:
        return self.get_path("output_dir") / self.config["paths"]["output_pattern"].format(n=n)

    def case_dir(self, n: int) -> Path:
        return self.get_path("work_dir") / f"sample_{n}"
