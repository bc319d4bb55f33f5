"""
OpenFOAM mesh generation for the pore flow domain.
Writes the tagged patch surfaces as STL, generates blockMesh/surfaceFeatures/
snappyHexMesh dictionaries and runs the utilities in the sample's case directory.
"""
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
from stl import mesh as np_stl_mesh

from ..constants import DEFAULT_CONSTANTS, BOUNDARY_PATCHES, WALL_PATCHES
from ..errors import MeshingFailure
from ..geometry import Domain
from ..utils import run_logged, check_mesh_quality
from .foam_io import write_foam_file

logger = logging.getLogger(__name__)

@dataclass
class MeshResult:
    """Outcome of one meshing run"""
    case_dir: Path
    cells: int
    mesh_ok: bool
    quality: Dict = field(default_factory=dict)
    execution_time: float = 0.0

class MeshGenerator:
    """blockMesh + snappyHexMesh driver for one sample"""

    def __init__(self, config_manager):
        self.config = config_manager.config
        self.mesh_config = self.config["mesh"]
        self.constants = DEFAULT_CONSTANTS['mesh']
        self.openfoam_env = config_manager.get_openfoam_env()
        self.max_memory_gb = config_manager.get_max_memory_gb()

    def generate(self, domain: Domain, case_dir: Path) -> MeshResult:
        """
        Mesh the scaled flow domain into ``case_dir``

        Raises:
            MeshingFailure: a utility failed or no cells were produced
        """
        case_dir = Path(case_dir)
        start_time = time.time()
        logger.info(f"Meshing flow domain in {case_dir}")

        surfaces = self.write_surfaces(domain, case_dir)
        self.generate_blockmesh_dict(domain, case_dir)
        self.generate_surface_features_dict(case_dir, surfaces)
        self.generate_snappy_dict(domain, case_dir, surfaces)

        self._run_step(["blockMesh"], case_dir, "blockMesh", self.constants.BLOCKMESH_TIMEOUT)
        self._run_step(["surfaceFeatures"], case_dir, "surfaceFeatures", self.constants.FEATURES_TIMEOUT)
        self.execute_snappy_mesh(case_dir)

        metrics = check_mesh_quality(case_dir, self.openfoam_env, self.max_memory_gb,
                                     timeout=self.constants.CHECKMESH_TIMEOUT,
                                     patch_names=BOUNDARY_PATCHES)
        if metrics["cells"] <= 0:
            raise MeshingFailure(f"checkMesh reports no cells in {case_dir}")
        missing = [p for p in BOUNDARY_PATCHES if metrics["patch_nFaces"].get(p, 1) == 0]
        if missing:
            raise MeshingFailure(f"Patches lost during snapping: {', '.join(missing)}")

        execution_time = time.time() - start_time
        if metrics["meshOK"]:
            logger.info(f"✅ Mesh generated: {metrics['cells']:,} cells ({execution_time:.1f}s)")
        else:
            logger.warning(f"⚠️  Mesh generated with quality warnings: {metrics['cells']:,} cells, "
                           f"maxNonOrtho={metrics['maxNonOrtho']:.1f}, maxSkewness={metrics['maxSkewness']:.2f}")

        return MeshResult(case_dir, metrics["cells"], metrics["meshOK"], metrics, execution_time)

    def write_surfaces(self, domain: Domain, case_dir: Path) -> List[str]:
        """One STL per boundary patch in constant/triSurface"""
        tri_dir = case_dir / "constant" / "triSurface"
        tri_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for name in BOUNDARY_PATCHES:
            patch = domain.patch_surface(name)
            if patch.n_triangles == 0:
                logger.warning(f"⚠️  Patch {name} has no triangles - not written")
                continue
            data = np.zeros(patch.n_triangles, dtype=np_stl_mesh.Mesh.dtype)
            stl_mesh = np_stl_mesh.Mesh(data, remove_empty_areas=False)
            stl_mesh.vectors[:] = patch.vertices[patch.triangles]
            stl_mesh.update_normals()
            stl_mesh.save(str(tri_dir / f"{name}.stl"))
            written.append(name)
            logger.debug(f"Wrote {name}.stl ({patch.n_triangles} triangles)")
        return written

    def _calculate_domain_bounds(self, domain: Domain) -> Tuple[np.ndarray, np.ndarray]:
        """Surface bounds padded by a band of background cells"""
        lo, hi = domain.surface.bounds()
        pad = self.constants.BLOCK_PADDING_CELLS * self.mesh_config["base_size"]
        return lo - pad, hi + pad

    def generate_blockmesh_dict(self, domain: Domain, case_dir: Path):
        """Background hex block covering the padded domain"""
        cell_size = self.mesh_config["base_size"]
        lo, hi = self._calculate_domain_bounds(domain)
        divisions = np.maximum(np.ceil((hi - lo) / cell_size).astype(int), 1)

        vertices = [
            (lo[0], lo[1], lo[2]), (hi[0], lo[1], lo[2]), (hi[0], hi[1], lo[2]), (lo[0], hi[1], lo[2]),
            (lo[0], lo[1], hi[2]), (hi[0], lo[1], hi[2]), (hi[0], hi[1], hi[2]), (lo[0], hi[1], hi[2]),
        ]
        vertex_lines = "\n".join(f"    ({x:.9g} {y:.9g} {z:.9g})" for x, y, z in vertices)

        body = f"""convertToMeters 1;

vertices
(
{vertex_lines}
);

blocks
(
    hex (0 1 2 3 4 5 6 7) ({divisions[0]} {divisions[1]} {divisions[2]}) simpleGrading (1 1 1)
);

boundary
(
    background
    {{
        type patch;
        faces
        (
            (0 3 2 1)
            (4 5 6 7)
            (0 4 7 3)
            (1 2 6 5)
            (0 1 5 4)
            (3 7 6 2)
        );
    }}
);
"""
        write_foam_file(case_dir / "system" / "blockMeshDict", "dictionary", body)
        n_cells = int(np.prod(divisions))
        logger.debug(f"Generated blockMeshDict: {divisions[0]}×{divisions[1]}×{divisions[2]} = {n_cells:,} cells")
        return (lo, hi), divisions

    def generate_surface_features_dict(self, case_dir: Path, surfaces: List[str]) -> None:
        body = f"""surfaces ({' '.join(f'"{s}.stl"' for s in surfaces)});

includedAngle   {self.mesh_config["feature_angle"]};
"""
        write_foam_file(case_dir / "system" / "surfaceFeaturesDict", "dictionary", body)

    def _calculate_internal_point(self, domain: Domain) -> List[float]:
        """Point inside the inlet extension box, away from any cell face"""
        H = domain.half_length
        x = -0.5 * (domain.extension_factor + 1.0) * H
        return [x, 0.1234 * H, 0.0567 * H]

    def generate_snappy_dict(self, domain: Domain, case_dir: Path, surfaces: List[str]) -> Path:
        M = self.mesh_config
        min_level, max_level = M["surface_levels"]
        point = self._calculate_internal_point(domain)

        geometry = "\n".join(
            f'    {s}.stl {{ type triSurfaceMesh; name {s}; file "{s}.stl"; }}' for s in surfaces)
        features = "\n".join(
            f'        {{ file "{s}.eMesh"; level {M["feature_level"]}; }}' for s in surfaces)
        refinement = "\n".join(
            f"""        {s}
        {{
            level ({min_level} {max_level});
            patchInfo {{ type {'wall' if s in WALL_PATCHES else 'patch'}; }}
        }}""" for s in surfaces)

        body = f"""castellatedMesh true;
snap            true;
addLayers       false;

geometry
{{
{geometry}
}};

castellatedMeshControls
{{
    maxLocalCells {M["max_local_cells"]};
    maxGlobalCells {M["max_global_cells"]};
    minRefinementCells 0;
    maxLoadUnbalance 0.10;
    nCellsBetweenLevels {M["n_cells_between_levels"]};

    features
    (
{features}
    );

    refinementSurfaces
    {{
{refinement}
    }}

    refinementRegions
    {{
    }}

    locationInMesh ({point[0]:.9g} {point[1]:.9g} {point[2]:.9g});
    allowFreeStandingZoneFaces false;
    resolveFeatureAngle 30;
}}

snapControls
{{
    nSmoothPatch 3;
    tolerance 2.0;
    nSolveIter 50;
    nRelaxIter 5;
    nFeatureSnapIter 10;
    implicitFeatureSnap false;
    explicitFeatureSnap true;
    multiRegionFeatureSnap false;
}}

addLayersControls
{{
    relativeSizes true;
    layers
    {{
    }}
    expansionRatio 1.0;
    finalLayerThickness 0.3;
    minThickness 0.1;
    nGrow 0;
    featureAngle 60;
    nRelaxIter 3;
    nSmoothSurfaceNormals 1;
    nSmoothNormals 3;
    nSmoothThickness 10;
    maxFaceThicknessRatio 0.5;
    maxThicknessToMedialRatio 0.3;
    minMedianAxisAngle 90;
    nBufferCellsNoExtrude 0;
    nLayerIter 50;
}}

meshQualityControls
{{
    maxNonOrtho 65;
    maxBoundarySkewness 20;
    maxInternalSkewness 4;
    maxConcave 80;
    minVol 1e-30;
    minTetQuality 1e-30;
    minArea -1;
    minTwist 0.02;
    minDeterminant 0.001;
    minFaceWeight 0.05;
    minVolRatio 0.01;
    minTriangleTwist -1;
    nSmoothScale 4;
    errorReduction 0.75;
}}

mergeTolerance 1e-6;
"""
        path = write_foam_file(case_dir / "system" / "snappyHexMeshDict", "dictionary", body)
        logger.debug(f"Generated snappyHexMeshDict with levels ({min_level} {max_level}), "
                     f"locationInMesh {point}")
        return path

    def _generate_decompose_dict(self, case_dir: Path, n_procs: int) -> None:
        body = f"""numberOfSubdomains {n_procs};

method          scotch;
"""
        write_foam_file(case_dir / "system" / "decomposeParDict", "dictionary", body)

    def execute_snappy_mesh(self, case_dir: Path) -> None:
        """snappyHexMesh -overwrite, decomposed over mesh.n_processors when > 1"""
        n_procs = self.mesh_config["n_processors"]
        timeout = self.constants.SNAPPY_TIMEOUT_MAX

        if n_procs > 1:
            self._generate_decompose_dict(case_dir, n_procs)
            self._run_step(["decomposePar", "-force"], case_dir, "decomposePar.mesh", timeout)
            self._run_step(["mpirun", "-np", str(n_procs), "snappyHexMesh", "-overwrite", "-parallel"],
                           case_dir, "snappyHexMesh", timeout)
            self._run_step(["reconstructParMesh", "-constant"], case_dir, "reconstructParMesh", timeout)
        else:
            self._run_step(["snappyHexMesh", "-overwrite"], case_dir, "snappyHexMesh", timeout)

    def _run_step(self, cmd: List[str], case_dir: Path, log_name: str, timeout) -> None:
        logger.info(f"Running: {' '.join(cmd)}")
        try:
            result = run_logged(cmd, case_dir, log_name, env_setup=self.openfoam_env,
                                timeout=timeout, max_memory_gb=self.max_memory_gb)
        except RuntimeError as e:
            raise MeshingFailure(f"{cmd[0]} could not run: {e}") from e

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0 or "FOAM FATAL" in output:
            logger.error(f"❌ {' '.join(cmd)} failed (see logs/log.{log_name})")
            utility = cmd[3] if cmd[0] == "mpirun" else cmd[0]
            raise MeshingFailure(f"{utility} failed with exit code {result.returncode}")
