"""
Tests for the mesher adapter (OpenFOAM utilities mocked)
"""
import subprocess
import numpy as np
import pytest
from unittest.mock import patch
from stl import mesh as np_stl_mesh

from poreflow.constants import INLET, OUTLET, PORE_WALL, BLOCK_SURFACE, BOUNDARY_PATCHES
from poreflow.errors import MeshingFailure
from poreflow.openfoam.mesh_generator import MeshGenerator


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def quality(cells=41356, mesh_ok=True, patch_faces=None):
    return {
        "maxNonOrtho": 48.3,
        "maxSkewness": 1.87,
        "maxAspectRatio": 5.2,
        "cells": cells,
        "meshOK": mesh_ok,
        "patch_nFaces": patch_faces if patch_faces is not None else
        {INLET: 400, OUTLET: 400, PORE_WALL: 15234, BLOCK_SURFACE: 9000},
    }


class TestMeshDictionaries:
    """Surfaces and dictionaries written before the utilities run"""

    def test_write_surfaces(self, config_manager, example_domain, temp_dir):
        surfaces = MeshGenerator(config_manager).write_surfaces(example_domain, temp_dir)

        assert surfaces == list(BOUNDARY_PATCHES)
        inlet = np_stl_mesh.Mesh.from_file(str(temp_dir / "constant" / "triSurface" / "Inlet.stl"))
        assert len(inlet.vectors) == example_domain.patch_surface(INLET).n_triangles
        assert np.allclose(inlet.vectors[:, :, 0], -5e-3)

    def test_blockmesh_covers_domain(self, config_manager, example_domain, temp_dir):
        (lo, hi), divisions = MeshGenerator(config_manager).generate_blockmesh_dict(example_domain, temp_dir)

        surface_lo, surface_hi = example_domain.surface.bounds()
        assert np.all(lo < surface_lo)
        assert np.all(hi > surface_hi)
        # base_size 5e-5 over (1e-2 + 2e-4) m along x
        assert divisions[0] == pytest.approx(204, abs=1)
        assert "simpleGrading (1 1 1)" in (temp_dir / "system" / "blockMeshDict").read_text()

    def test_snappy_dict(self, config_manager, example_domain, temp_dir):
        generator = MeshGenerator(config_manager)

        generator.generate_snappy_dict(example_domain, temp_dir, list(BOUNDARY_PATCHES))

        text = (temp_dir / "system" / "snappyHexMeshDict").read_text()
        assert "level (1 2);" in text
        assert "patchInfo { type wall; }" in text
        assert "patchInfo { type patch; }" in text
        assert 'file "PoreWallSurface.stl"' in text
        assert "addLayers       false;" in text

    def test_location_in_mesh_inside_inlet_box(self, config_manager, example_domain):
        point = MeshGenerator(config_manager)._calculate_internal_point(example_domain)

        H = example_domain.half_length
        assert -10 * H < point[0] < -H
        assert abs(point[1]) < H and abs(point[2]) < H


class TestMeshGeneration:
    """Utility sequencing and failure handling"""

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_serial_sequence(self, mock_run_logged, mock_check_quality,
                             config_manager, example_domain, temp_dir):
        mock_run_logged.return_value = completed(stdout="End\n")
        mock_check_quality.return_value = quality()

        result = MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

        commands = [call.args[0][0] for call in mock_run_logged.call_args_list]
        assert commands == ["blockMesh", "surfaceFeatures", "snappyHexMesh"]
        assert result.cells == 41356
        assert result.mesh_ok is True
        assert (temp_dir / "case" / "system" / "surfaceFeaturesDict").exists()

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_parallel_sequence(self, mock_run_logged, mock_check_quality,
                               config_manager, example_domain, temp_dir):
        config_manager.config["mesh"]["n_processors"] = 4
        mock_run_logged.return_value = completed()
        mock_check_quality.return_value = quality()

        MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

        commands = [call.args[0] for call in mock_run_logged.call_args_list]
        assert commands[2] == ["decomposePar", "-force"]
        assert commands[3] == ["mpirun", "-np", "4", "snappyHexMesh", "-overwrite", "-parallel"]
        assert commands[4] == ["reconstructParMesh", "-constant"]
        assert "numberOfSubdomains 4;" in (temp_dir / "case" / "system" / "decomposeParDict").read_text()

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_utility_failure(self, mock_run_logged, mock_check_quality,
                             config_manager, example_domain, temp_dir):
        mock_run_logged.side_effect = [completed(), completed(), completed(returncode=1)]

        with pytest.raises(MeshingFailure, match="snappyHexMesh"):
            MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")
        mock_check_quality.assert_not_called()

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_fatal_error_in_output(self, mock_run_logged, mock_check_quality,
                                   config_manager, example_domain, temp_dir):
        mock_run_logged.return_value = completed(stderr="--> FOAM FATAL ERROR: cannot open file\n")

        with pytest.raises(MeshingFailure, match="blockMesh"):
            MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_command_could_not_start(self, mock_run_logged, mock_check_quality,
                                     config_manager, example_domain, temp_dir):
        mock_run_logged.side_effect = RuntimeError("Insufficient memory: need 4GB, have 1.0GB")

        with pytest.raises(MeshingFailure, match="Insufficient memory"):
            MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_no_cells(self, mock_run_logged, mock_check_quality,
                      config_manager, example_domain, temp_dir):
        mock_run_logged.return_value = completed()
        mock_check_quality.return_value = quality(cells=0)

        with pytest.raises(MeshingFailure, match="no cells"):
            MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_lost_patch(self, mock_run_logged, mock_check_quality,
                        config_manager, example_domain, temp_dir):
        mock_run_logged.return_value = completed()
        mock_check_quality.return_value = quality(
            patch_faces={INLET: 0, OUTLET: 400, PORE_WALL: 100, BLOCK_SURFACE: 100})

        with pytest.raises(MeshingFailure, match=INLET):
            MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

    @patch('poreflow.openfoam.mesh_generator.check_mesh_quality')
    @patch('poreflow.openfoam.mesh_generator.run_logged')
    def test_quality_warnings_do_not_fail(self, mock_run_logged, mock_check_quality,
                                          config_manager, example_domain, temp_dir):
        mock_run_logged.return_value = completed()
        mock_check_quality.return_value = quality(mesh_ok=False)

        result = MeshGenerator(config_manager).generate(example_domain, temp_dir / "case")

        assert result.mesh_ok is False
        assert result.cells == 41356
