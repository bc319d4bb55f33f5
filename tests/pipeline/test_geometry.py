"""
Tests for flow domain construction
"""
import math
import numpy as np
import pytest
import manifold3d as m3d

from poreflow.constants import INLET, OUTLET, PORE_WALL, BLOCK_SURFACE, IN_OUT_BOX
from poreflow.errors import ConfigurationError, DegenerateGeometry
from poreflow.geometry import (SurfaceMesh, prescale, make_sphere, make_cylinder, build_pores,
                               build_skeleton, build_extension_boxes, tag_faces, tree_union,
                               build_flow_domain, section_area)
from poreflow.pore_tables import PoreBody, PoreThroat


class TestPrimitives:
    """Spheres and oriented cylinders"""

    def test_sphere_vertices_on_radius(self):
        surface = SurfaceMesh.from_manifold(make_sphere((1.0, 2.0, 3.0), 2.0, 16))

        distances = np.linalg.norm(surface.vertices - np.array([1.0, 2.0, 3.0]), axis=1)

        assert np.allclose(distances, 2.0, rtol=1e-6)
        assert surface.volume() == pytest.approx(4.0 / 3.0 * math.pi * 8.0, rel=0.1)

    @pytest.mark.parametrize("a,b", [
        ((0.0, 0.0, 0.0), (10.0, 0.0, 0.0)),
        ((0.0, 0.0, 0.0), (0.0, 0.0, -4.0)),
        ((1.0, 2.0, 3.0), (4.0, 6.0, 3.0)),
        ((-1.0, 2.0, 0.5), (-3.0, -1.0, 4.0)),
    ])
    def test_cylinder_spans_endpoints(self, a, b):
        radius = 0.5
        surface = SurfaceMesh.from_manifold(make_cylinder(a, b, radius, 12))

        a, b = np.array(a), np.array(b)
        length = np.linalg.norm(b - a)
        axis = (b - a) / length
        along = (surface.vertices - a) @ axis
        radial = np.linalg.norm((surface.vertices - a) - np.outer(along, axis), axis=1)

        assert along.min() == pytest.approx(0.0, abs=1e-6)
        assert along.max() == pytest.approx(length, rel=1e-6)
        assert radial.max() == pytest.approx(radius, rel=1e-6)

    def test_zero_length_cylinder_is_skipped(self):
        assert make_cylinder((1.0, 1.0, 1.0), (1.0, 1.0, 1.0), 0.5, 12) is None

    def test_tree_union(self):
        cubes = [m3d.Manifold.cube((1.0, 1.0, 1.0)).translate([2.0 * i, 0.0, 0.0]) for i in range(5)]

        united = tree_union(cubes)

        assert SurfaceMesh.from_manifold(united).volume() == pytest.approx(5.0)
        assert tree_union([]) is None


class TestPoresAndSkeleton:
    """Row filtering during primitive construction"""

    def test_invalid_body_rows_are_excluded(self):
        bodies = [PoreBody((0.0, 0.0, 0.0), 2.0, 5.0, 0),
                  PoreBody((3.0, 0.0, 0.0), math.nan, 5.0, 0),
                  PoreBody((math.inf, 0.0, 0.0), 1.0, 5.0, 0)]

        pores = build_pores(bodies, 16)
        reference = build_pores(bodies[:1], 16)

        assert SurfaceMesh.from_manifold(pores).volume() == pytest.approx(
            SurfaceMesh.from_manifold(reference).volume())

    def test_no_valid_bodies(self):
        bodies = [PoreBody((0.0, 0.0, 0.0), math.nan, 5.0, 0),
                  PoreBody((1.0, 0.0, 0.0), 0.0, 5.0, 0)]

        with pytest.raises(DegenerateGeometry):
            build_pores(bodies, 16)

    def test_empty_skeleton(self):
        assert build_skeleton([], 12) is None
        assert build_skeleton([PoreThroat((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), 1.0)], 12) is None

    def test_skeleton_skips_invalid_throats(self):
        throats = [PoreThroat((0.0, 0.0, 0.0), (4.0, 0.0, 0.0), 0.5),
                   PoreThroat((0.0, 0.0, 0.0), (4.0, 0.0, 0.0), math.nan)]

        skeleton = build_skeleton(throats, 12)

        assert skeleton is not None
        lo, hi = SurfaceMesh.from_manifold(skeleton).bounds()
        assert hi[0] == pytest.approx(4.0)


class TestExtensionBoxes:
    """In-Out-Box construction and face tagging"""

    def test_box_bounds_and_volume(self):
        box = SurfaceMesh.from_manifold(build_extension_boxes(5.0, 10.0))

        lo, hi = box.bounds()

        assert np.allclose(lo, [-50.0, -5.0, -5.0])
        assert np.allclose(hi, [50.0, 5.0, 5.0])
        assert box.volume() == pytest.approx(2 * 45.0 * 10.0 * 10.0)

    def test_invalid_half_length(self):
        with pytest.raises(DegenerateGeometry):
            build_extension_boxes(0.0)

    def test_face_tags_on_box(self):
        box = build_extension_boxes(5.0, 10.0)
        surface = SurfaceMesh.from_manifold(box)

        tags = tag_faces(box, 5.0, 10.0)

        assert surface.area(np.flatnonzero(tags.inlet.select(surface))) == pytest.approx(100.0)
        assert surface.area(np.flatnonzero(tags.outlet.select(surface))) == pytest.approx(100.0)
        # Side walls (4 x 45 x 10 per box) and the inner end faces (10 x 10 per box)
        assert surface.area(np.flatnonzero(tags.block_mask(surface))) == pytest.approx(3800.0)

    def test_missing_inlet_face(self):
        outlet_only = m3d.Manifold.cube((45.0, 10.0, 10.0)).translate([5.0, -5.0, -5.0])

        with pytest.raises(ConfigurationError, match="Inlet"):
            tag_faces(outlet_only, 5.0, 10.0)


class TestFlowDomain:
    """Full construction of the example sample (H = 500 microns)"""

    def test_unit_conversion(self, tables_factory):
        tables = tables_factory()

        bodies, throats, H = prescale(tables, 100.0)

        assert H == pytest.approx(5.0)
        assert bodies[0].radius == pytest.approx(2.0)
        assert throats[0].endpoint_b[0] == pytest.approx(-7.0)
        # /100 then x1e-4 is microns to metres
        assert bodies[0].radius * 1e-4 == pytest.approx(200.0 / 1e6)

    def test_domain_extent_in_metres(self, example_domain):
        lo, hi = example_domain.surface.bounds()

        assert example_domain.half_length == pytest.approx(5e-4)
        assert lo[0] == pytest.approx(-5e-3)
        assert hi[0] == pytest.approx(5e-3)
        assert np.allclose(np.abs(lo[1:]), 5e-4)
        assert example_domain.extent == pytest.approx(5e-3)

    def test_single_connected_body(self, example_domain):
        assert len(example_domain.flow_domain.decompose()) == 1

    def test_inlet_and_outlet_faces(self, example_domain):
        inlet = example_domain.patch_surface(INLET)
        outlet = example_domain.patch_surface(OUTLET)

        assert np.allclose(inlet.centroids()[:, 0], -5e-3)
        assert np.allclose(outlet.centroids()[:, 0], 5e-3)
        assert example_domain.patch_area(INLET) == pytest.approx(1e-6, rel=1e-6)
        assert example_domain.patch_area(OUTLET) == pytest.approx(1e-6, rel=1e-6)

    def test_patches_cover_surface(self, example_domain):
        areas = example_domain.patch_areas()

        covered = sum(areas[name] for name in (INLET, OUTLET, PORE_WALL, BLOCK_SURFACE))

        assert covered == pytest.approx(example_domain.surface.area(), rel=1e-9)
        assert areas[IN_OUT_BOX] == pytest.approx(4e-5, rel=1e-6)
        assert areas[PORE_WALL] > 0.0

    def test_throats_cut_block_surface(self, example_domain):
        # The throats pierce the inner box end faces at x = -H and x = +H
        block = example_domain.patch_area(BLOCK_SURFACE)
        hole = math.pi * (5e-5) ** 2

        assert block < 3.8e-5
        assert block == pytest.approx(3.8e-5 - 2 * hole, rel=1e-4)

    def test_excluded_rows_do_not_change_domain(self, tables_factory, geometry_config):
        clean = build_flow_domain(tables_factory(), geometry_config)
        bodies = [[0.0, 0.0, 0.0, 200.0, 500.0, 2], [100.0, 0.0, 0.0, math.nan, 500.0, 0]]
        bodies += [[-700.0, 0.0, 0.0, 150.0, 500.0, 1], [700.0, 0.0, 0.0, 150.0, 500.0, 1]]

        noisy = build_flow_domain(tables_factory(bodies=bodies), geometry_config)

        assert noisy.surface.volume() == pytest.approx(clean.surface.volume(), rel=1e-9)

    def test_degenerate_sample(self, tables_factory, geometry_config):
        bodies = [[0.0, 0.0, 0.0, math.nan, 500.0, 0], [5.0, 0.0, 0.0, -1.0, 500.0, 0]]

        with pytest.raises(DegenerateGeometry):
            build_flow_domain(tables_factory(bodies=bodies), geometry_config)

    def test_section_area(self, example_domain):
        H = example_domain.half_length

        # Inside the inlet box the section is the full box cross-section
        assert section_area(example_domain, -3 * H) == pytest.approx(1e-6, rel=1e-6)
        # Just inside the area of interest only the throat is cut
        throat = section_area(example_domain, -0.9999 * H)
        assert throat == pytest.approx(math.pi * (5e-5) ** 2, rel=0.1)
