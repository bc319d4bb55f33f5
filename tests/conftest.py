"""
Pytest configuration and shared fixtures for the pore flow pipeline tests.
"""
import csv
import pytest
import tempfile
import json
from pathlib import Path
from types import SimpleNamespace
import numpy as np

from poreflow.config_manager import ConfigManager
from poreflow.constants import INLET, OUTLET, PORE_WALL, BLOCK_SURFACE, IN_OUT_BOX
from poreflow.metrics import FieldData
from poreflow.openfoam.mesh_generator import MeshResult
from poreflow.geometry import build_flow_domain
from poreflow.pore_tables import PoreBody, PoreThroat, SampleTables


# Example sample in microns: H = 500, a central pore and two pores inside the
# extension boxes, joined to it by throats along x
EXAMPLE_BODIES = [
    [0.0, 0.0, 0.0, 200.0, 500.0, 2],
    [-700.0, 0.0, 0.0, 150.0, 500.0, 1],
    [700.0, 0.0, 0.0, 150.0, 500.0, 1],
]
EXAMPLE_THROATS = [
    [0.0, 0.0, 0.0, -700.0, 0.0, 0.0, 50.0],
    [0.0, 0.0, 0.0, 700.0, 0.0, 0.0, 50.0],
]


def write_pore_tables(bodies_file, throats_file, bodies, throats, header=True):
    """Write raw rows in the pore table layout"""
    with open(bodies_file, "w", newline="") as f:
        writer = csv.writer(f)
        if header:
            writer.writerow(["X", "Y", "Z", "pore_radius", "domain_half_length", "branch_count"])
        writer.writerows(bodies)
    with open(throats_file, "w", newline="") as f:
        writer = csv.writer(f)
        if header:
            writer.writerow(["X1", "Y1", "Z1", "X2", "Y2", "Z2", "throat_radius"])
        writer.writerows(throats)


@pytest.fixture
def write_tables():
    """Table writer for reader tests"""
    return write_pore_tables


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def sample_config(temp_dir):
    """Sample configuration for testing (coarse tessellation, temp directories)"""
    return {
        "openfoam_env_path": "echo 'Mock OpenFOAM setup'",
        "max_memory_gb": 0.0,
        "paths": {
            "data_dir": str(temp_dir / "Data"),
            "output_dir": str(temp_dir / "results"),
            "work_dir": str(temp_dir / "cases"),
        },
        "batch": {"start": 1, "finish": 3},
        "geometry": {
            "sphere_segments": 16,
            "cylinder_segments": 12,
        },
        "mesh": {
            "base_size": 5e-5,
            "surface_levels": [1, 2],
        },
        "physics": {
            "flow_model": "laminar",
            "rho": 997.0,
            "mu": 0.00089,
            "inlet_total_pressure": 1.0,
            "outlet_pressure": 0.0,
        },
        "solver": {
            "max_iterations": 50,
            "convergence_criteria": 1e-6,
        },
        "metrics": {},
        "export": {"keep_case": False, "residual_history": True},
    }


@pytest.fixture
def sample_config_file(temp_dir, sample_config):
    """Create sample configuration file"""
    config_file = temp_dir / "config.json"
    with open(config_file, 'w') as f:
        json.dump(sample_config, f, indent=2)
    return config_file


@pytest.fixture
def config_manager(sample_config_file):
    """Validated configuration pointing at the temp directories"""
    return ConfigManager(sample_config_file)


@pytest.fixture
def write_sample(config_manager):
    """Write pore tables for sample n into the configured data directory"""
    def _write(n, bodies=None, throats=None, header=True):
        data_dir = config_manager.get_path("data_dir")
        data_dir.mkdir(parents=True, exist_ok=True)
        write_pore_tables(config_manager.bodies_file(n), config_manager.throats_file(n),
                          EXAMPLE_BODIES if bodies is None else bodies,
                          EXAMPLE_THROATS if throats is None else throats,
                          header=header)
    return _write


@pytest.fixture
def field_data_factory():
    """
    Synthetic solved case: H = 5e-4 m, eight cells inside the area of interest and
    two in the extension boxes, uniform flow along +x.
    """
    def _make(velocity=(1e-3, 0.0, 0.0), in_mass=1e-6, out_mass=1e-6,
              in_pressure=1.0, out_pressure=0.2, residuals=None, history=None):
        H = 5e-4
        inside = [(sx * H / 2, sy * H / 2, sz * H / 2)
                  for sx in (-1, 1) for sy in (-1, 1) for sz in (-1, 1)]
        outside = [(-3 * H, 0.0, 0.0), (3 * H, 0.0, 0.0)]
        centres = np.array(inside + outside, dtype=float)
        volumes = np.full(len(centres), 1e-12)
        U = np.tile(np.array(velocity, dtype=float), (len(centres), 1))
        return FieldData(
            cell_centres=centres,
            cell_volumes=volumes,
            velocity=U,
            patch_areas={
                INLET: 1e-6,
                OUTLET: 1e-6,
                PORE_WALL: 2.5e-6,
                BLOCK_SURFACE: 2.8e-5,
                IN_OUT_BOX: 3.2e-5,
            },
            inlet_mass_flow=in_mass,
            outlet_mass_flow=out_mass,
            in_pressure=in_pressure,
            out_pressure=out_pressure,
            in_area=1.2e-7,
            half_length=H,
            residuals=residuals if residuals is not None else
            {"p": 1e-7, "Ux": 2e-8, "Uy": 3e-8, "Uz": 4e-8},
            residual_history=history if history is not None else [
                {"Time": 1.0, "p": 1.0, "Ux": 1.0, "Uy": 1.0, "Uz": 1.0},
                {"Time": 2.0, "p": 1e-7, "Ux": 2e-8, "Uy": 3e-8, "Uz": 4e-8},
            ],
        )
    return _make


@pytest.fixture
def stub_domain():
    """Tagged domain stand-in for stages that only read patches and sizes"""
    return SimpleNamespace(
        patches={INLET: np.array([0, 1]), OUTLET: np.array([2, 3]),
                 PORE_WALL: np.array([4]), BLOCK_SURFACE: np.array([5])},
        half_length=5e-4,
        extension_factor=10.0,
        patch_areas=lambda: {INLET: 1e-6, OUTLET: 1e-6, PORE_WALL: 2.5e-6,
                             BLOCK_SURFACE: 2.8e-5, IN_OUT_BOX: 3.2e-5},
    )


class FakeMesher:
    """Mesher stand-in that records calls"""

    def __init__(self, cells=1000):
        self.cells = cells
        self.calls = []

    def generate(self, domain, case_dir):
        self.calls.append(Path(case_dir))
        (Path(case_dir) / "constant").mkdir(parents=True, exist_ok=True)
        return MeshResult(Path(case_dir), self.cells, True)


class FakeConfigurator:
    def __init__(self):
        self.calls = []

    def configure(self, domain, case_dir):
        self.calls.append(Path(case_dir))
        return SimpleNamespace(case_dir=Path(case_dir))


class FakeSolver:
    """Solver stand-in returning synthetic field data, or raising ``error``"""

    def __init__(self, field_data, error=None):
        self.field_data = field_data
        self.error = error
        self.calls = 0

    def run(self, setup, domain):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.field_data


@pytest.fixture
def fake_stages(field_data_factory):
    """Mesher, configurator and solver stand-ins for pipeline tests"""
    return SimpleNamespace(
        mesher=FakeMesher(),
        configurator=FakeConfigurator(),
        solver=FakeSolver(field_data_factory()),
    )


@pytest.fixture
def tables_factory():
    """SampleTables from raw micron rows (defaults to the example sample)"""
    def _make(bodies=None, throats=None, index=1):
        bodies = EXAMPLE_BODIES if bodies is None else bodies
        throats = EXAMPLE_THROATS if throats is None else throats
        half_length = bodies[0][4]
        return SampleTables(
            index,
            tuple(PoreBody(tuple(float(c) for c in row[:3]), float(row[3]), half_length, int(row[5]))
                  for row in bodies),
            tuple(PoreThroat(tuple(float(c) for c in row[:3]), tuple(float(c) for c in row[3:6]),
                             float(row[6]))
                  for row in throats),
        )
    return _make


@pytest.fixture
def geometry_config(sample_config):
    return dict(sample_config["geometry"])


@pytest.fixture
def example_domain(tables_factory, geometry_config):
    """Scaled, tagged flow domain of the example sample"""
    return build_flow_domain(tables_factory(), geometry_config)
