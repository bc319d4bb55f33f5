"""
Single-sample pipeline.

Reader -> geometry -> mesher -> physics -> solver -> metrics -> export. Each stage
returns an explicit value that is passed to the next; nothing is looked up by
name afterwards. Stages are injectable so tests can replace the OpenFOAM ones.
"""
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config_manager import ConfigManager
from .export import export_sample
from .geometry import Domain, build_flow_domain
from .metrics import DerivedMetrics, FluidProperties, compute_metrics
from .openfoam.cfd_solver import CFDSolver
from .openfoam.mesh_generator import MeshGenerator
from .physics_setup import PhysicsConfigurator
from .pore_tables import SampleTables, load_sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleOutcome:
    index: int
    metrics: DerivedMetrics
    output_path: Path
    cells: int


class SamplePipeline:
    """Runs every stage for one sample index"""

    def __init__(self, config_manager: ConfigManager,
                 mesher: Optional[MeshGenerator] = None,
                 configurator: Optional[PhysicsConfigurator] = None,
                 solver: Optional[CFDSolver] = None,
                 domain_builder: Callable[[SampleTables, dict], Domain] = build_flow_domain):
        self.config_manager = config_manager
        self.config = config_manager.config
        self.mesher = mesher or MeshGenerator(config_manager)
        self.configurator = configurator or PhysicsConfigurator(config_manager)
        self.solver = solver or CFDSolver(config_manager)
        self.domain_builder = domain_builder
        self.fluid = FluidProperties.from_config(self.config)

    def run(self, n: int) -> SampleOutcome:
        cm = self.config_manager
        tables = load_sample(n, cm.bodies_file(n), cm.throats_file(n))
        domain = self.domain_builder(tables, self.config["geometry"])

        case_dir = cm.case_dir(n)
        if case_dir.exists():
            # Left by keep_case or an interrupted job
            logger.warning(f"⚠️  Removing stale case directory {case_dir}")
            shutil.rmtree(case_dir)
        case_dir.mkdir(parents=True)

        mesh = self.mesher.generate(domain, case_dir)
        setup = self.configurator.configure(domain, case_dir)
        fields = self.solver.run(setup, domain)

        metrics = compute_metrics(fields, self.fluid)
        logger.info(f"Sample {n}: Porosity={metrics.porosity:.4f}, Tort1={metrics.tort1:.4f}, "
                    f"Perm1={metrics.perm1:.4e} mD, ReyNo={metrics.reynolds:.3e}")

        output_path = export_sample(cm.output_file(n), metrics, fields.residual_history,
                                    self.config["export"]["residual_history"])
        return SampleOutcome(n, metrics, output_path, mesh.cells)
