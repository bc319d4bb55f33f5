"""
Flow solver integration

Runs the steady laminar solver on a configured case, detects divergence, runs the
post-processing utilities and collects the raw fields and function object
reports into a ``FieldData`` value for the metric extractor.
"""

import math
import logging
from pathlib import Path
from typing import Dict, List

import numpy as np

from ..constants import INLET, OUTLET, PORE_WALL, BLOCK_SURFACE, IN_OUT_BOX
from ..errors import SolverDivergence
from ..geometry import Domain, section_area
from ..metrics import FieldData
from ..physics_setup import CaseSetup
from ..utils import run_logged
from .foam_io import (write_foam_file, latest_time_dir, read_field, parse_residual_history,
                      parse_function_object_table, function_object_dat, last_value, table_area)

FATAL_MARKERS = ("FOAM FATAL", "Floating point exception")

class CFDSolver:
    """Steady incompressible solver driver for one pore flow case"""

    def __init__(self, config_manager):
        """
        Args:
            config_manager: validated ConfigManager (solver section, OpenFOAM env, memory guard)
        """
        self.config = config_manager.config
        self.solver_config = self.config["solver"]
        self.openfoam_env = config_manager.get_openfoam_env()
        self.max_memory_gb = config_manager.get_max_memory_gb()
        self.logger = logging.getLogger(__name__)

    def run(self, setup: CaseSetup, domain: Domain) -> FieldData:
        """
        Solve the case and collect field data

        Raises:
            SolverDivergence: solver crashed, diverged, or left no usable fields
        """
        case_dir = setup.case_dir
        application = self.solver_config["application"]
        max_iter = self.solver_config["max_iterations"]

        self.logger.info(f"Running {application} (max {max_iter} iterations) in {case_dir}")
        output = self._run_solver(case_dir, application)

        history = parse_residual_history(output)
        final = self._check_residuals(history, max_iter)
        self.logger.info(f"✅ {application} finished after {len(history)} iterations")
        self.logger.info(f"Final residuals: {final}")

        self._post_process(case_dir)
        return self.collect_field_data(setup, domain, final, history)

    def _run_solver(self, case_dir: Path, application: str) -> str:
        n_procs = self.solver_config["n_processors"]
        if n_procs > 1:
            write_foam_file(case_dir / "system" / "decomposeParDict", "dictionary",
                            f"numberOfSubdomains {n_procs};\n\nmethod          scotch;\n")
            self._execute(["decomposePar", "-force"], case_dir, "decomposePar")
            output = self._execute(["mpirun", "-np", str(n_procs), application, "-parallel"],
                                   case_dir, application)
            self._execute(["reconstructPar", "-latestTime"], case_dir, "reconstructPar")
            return output
        return self._execute([application], case_dir, application)

    def _execute(self, cmd: List[str], case_dir: Path, log_name: str) -> str:
        try:
            result = run_logged(cmd, case_dir, log_name, env_setup=self.openfoam_env,
                                timeout=None, max_memory_gb=self.max_memory_gb)
        except RuntimeError as e:
            raise SolverDivergence(f"{cmd[0]} could not run: {e}") from e

        output = (result.stdout or "") + (result.stderr or "")
        marker = next((m for m in FATAL_MARKERS if m in output), None)
        if result.returncode != 0 or marker:
            self.logger.error(f"❌ {' '.join(cmd)} failed (see logs/log.{log_name})")
            reason = marker or f"exit code {result.returncode}"
            raise SolverDivergence(f"{log_name} failed: {reason}")
        return output

    def _check_residuals(self, history: List[Dict[str, float]], max_iter: int) -> Dict[str, float]:
        """Final initial residuals; NaN/inf anywhere means divergence"""
        if not history:
            raise SolverDivergence("Solver log contains no residuals")

        for entry in history:
            bad = [f for f, v in entry.items() if f != "Time" and not math.isfinite(v)]
            if bad:
                raise SolverDivergence(f"Non-finite residual for {', '.join(bad)} at iteration {entry['Time']:g}")

        final = {f: v for f, v in history[-1].items() if f != "Time"}
        tol = self.solver_config["convergence_criteria"]
        if len(history) >= max_iter and any(v > tol for v in final.values()):
            self.logger.warning(f"⚠️  Iteration limit {max_iter} reached before residuals fell below {tol}")
        return final

    def _post_process(self, case_dir: Path) -> None:
        utility = self.solver_config["postprocess"]
        for func in ("writeCellCentres", "writeCellVolumes"):
            self._execute([utility, "-func", func, "-latestTime"], case_dir, f"{utility}.{func}")

    def _report(self, case_dir: Path, name: str):
        dat = function_object_dat(case_dir, name)
        if dat is None:
            raise SolverDivergence(f"Function object '{name}' wrote no data")
        return parse_function_object_table(dat.read_text())

    def _report_value(self, table, column: str, name: str) -> float:
        try:
            value = last_value(table, column)
        except (KeyError, ValueError) as e:
            raise SolverDivergence(f"Report '{name}' unusable: {e}") from e
        if not math.isfinite(value):
            raise SolverDivergence(f"Report '{name}' is {value}")
        return value

    def collect_field_data(self, setup: CaseSetup, domain: Domain, residuals: Dict[str, float],
                           history: List[Dict[str, float]]) -> FieldData:
        """Read fields and function object tables of the latest time"""
        case_dir = setup.case_dir
        reports = setup.reports
        rho = setup.rho

        time_dir = latest_time_dir(case_dir)
        try:
            centres = read_field(time_dir / "C")
            n_cells = len(centres)
            volumes = read_field(time_dir / "V", n_cells)
            velocity = read_field(time_dir / "U", n_cells)
        except (OSError, ValueError) as e:
            raise SolverDivergence(f"Cannot read fields from {time_dir}: {e}") from e
        if not np.all(np.isfinite(velocity)):
            raise SolverDivergence("Velocity field contains non-finite values")

        inlet = self._report(case_dir, reports["inlet_flux"])
        outlet = self._report(case_dir, reports["outlet_flux"])
        in_plane = self._report(case_dir, reports["in_plane"])
        out_plane = self._report(case_dir, reports["out_plane"])
        in_area_plane = self._report(case_dir, reports["in_area_plane"])
        wall = self._report(case_dir, reports["wall_area"])
        block = self._report(case_dir, reports["block_area"])

        geometric = domain.patch_areas()
        patch_areas = {
            INLET: self._area_or(inlet, geometric[INLET]),
            OUTLET: self._area_or(outlet, geometric[OUTLET]),
            PORE_WALL: self._area_or(wall, geometric[PORE_WALL]),
            BLOCK_SURFACE: self._area_or(block, geometric[BLOCK_SURFACE]),
            IN_OUT_BOX: geometric[IN_OUT_BOX],
        }
        # Small difference of large areas, all four terms from the tagged geometry
        in_out_area = geometric[IN_OUT_BOX] - (
            geometric[BLOCK_SURFACE] + geometric[INLET] + geometric[OUTLET])

        in_area = table_area(in_area_plane)
        if in_area is None:
            in_area = section_area(domain, setup.plane_x[reports["in_area_plane"]])

        # phi is volumetric flux, negative where flow enters
        inlet_mass_flow = -rho * self._report_value(inlet, "sum(phi)", reports["inlet_flux"])
        outlet_mass_flow = rho * self._report_value(outlet, "sum(phi)", reports["outlet_flux"])

        # Kinematic pressure back to Pa
        in_pressure = rho * self._report_value(in_plane, "areaAverage(p)", reports["in_plane"])
        out_pressure = rho * self._report_value(out_plane, "areaAverage(p)", reports["out_plane"])

        self.logger.debug(f"Mass flow in/out: {inlet_mass_flow:.4e}/{outlet_mass_flow:.4e} kg/s, "
                          f"plane pressures {in_pressure:.4e}/{out_pressure:.4e} Pa")

        return FieldData(
            cell_centres=centres,
            cell_volumes=volumes,
            velocity=velocity,
            patch_areas=patch_areas,
            inlet_mass_flow=inlet_mass_flow,
            outlet_mass_flow=outlet_mass_flow,
            in_pressure=in_pressure,
            out_pressure=out_pressure,
            in_area=in_area,
            half_length=setup.half_length,
            in_out_area=in_out_area,
            residuals=residuals,
            residual_history=history,
        )

    @staticmethod
    def _area_or(table, fallback: float) -> float:
        area = table_area(table)
        return fallback if area is None else area

