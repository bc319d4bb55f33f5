"""
PoreFlow - Pore Microstructure Flow Simulation Batch
====================================================

Builds a flow domain from pore body / pore throat tables, meshes and solves it
with OpenFOAM, and derives porosity, tortuosity, permeability and Reynolds number
for each sample of a numbered dataset.

Modules:
- pore_tables: pore network table reader
- geometry: flow domain construction and boundary tagging
- openfoam: mesher and solver adapters
- physics_setup: boundary conditions and flow model
- metrics: derived transport properties
- export: atomic result files
- batch: dataset iterator with per-sample fault isolation
"""

from .config_manager import ConfigManager
from .errors import (SampleError, InputMissingOrMalformed, DegenerateGeometry, ConfigurationError,
                     MeshingFailure, SolverDivergence, ExportFailure)
from .batch import run_batch, SampleResult, BatchSummary

__version__ = "1.0.0"
__all__ = [
    "ConfigManager",
    "run_batch",
    "SampleResult",
    "BatchSummary",
    "SampleError",
    "InputMissingOrMalformed",
    "DegenerateGeometry",
    "ConfigurationError",
    "MeshingFailure",
    "SolverDivergence",
    "ExportFailure",
]
