"""
Flow domain construction from pore network tables.

The domain is assembled as a pipeline of small functions, each returning an explicit
value that the next one consumes:

    prescale -> build_pores / build_skeleton / build_extension_boxes
             -> tag_faces -> unite_all -> partition -> scale_domain

Solids are manifold3d ``Manifold`` objects. Triangulated surfaces are plain numpy
arrays wrapped in ``SurfaceMesh``. Boundary patches are selected by face normal and
plane position, never by face index.
"""
import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import manifold3d as m3d

from .constants import (DEFAULT_CONSTANTS, INLET, OUTLET, PORE_WALL, BLOCK_SURFACE,
                        IN_OUT_BOX)
from .errors import ConfigurationError, DegenerateGeometry
from .pore_tables import PoreBody, PoreThroat, SampleTables

logger = logging.getLogger(__name__)

_GEOM = DEFAULT_CONSTANTS['geometry']


@dataclass(frozen=True, eq=False)
class SurfaceMesh:
    """Closed triangulated surface"""
    vertices: np.ndarray    # (N, 3) float
    triangles: np.ndarray   # (M, 3) int

    @classmethod
    def from_manifold(cls, solid: m3d.Manifold) -> "SurfaceMesh":
        mesh = solid.to_mesh()
        verts = np.array(mesh.vert_properties, dtype=float)[:, :3]
        tris = np.array(mesh.tri_verts, dtype=np.int64).reshape(-1, 3)
        return cls(verts, tris)

    @property
    def n_triangles(self) -> int:
        return len(self.triangles)

    def _corners(self):
        v = self.vertices[self.triangles]
        return v[:, 0], v[:, 1], v[:, 2]

    def centroids(self) -> np.ndarray:
        return self.vertices[self.triangles].mean(axis=1)

    def _cross(self) -> np.ndarray:
        a, b, c = self._corners()
        return np.cross(b - a, c - a)

    def triangle_areas(self) -> np.ndarray:
        return 0.5 * np.linalg.norm(self._cross(), axis=1)

    def normals(self) -> np.ndarray:
        """Unit outward normals (zero rows for degenerate slivers)"""
        cross = self._cross()
        length = np.linalg.norm(cross, axis=1, keepdims=True)
        return np.divide(cross, length, out=np.zeros_like(cross), where=length > 0)

    def area(self, indices: Optional[np.ndarray] = None) -> float:
        areas = self.triangle_areas()
        return float(areas.sum() if indices is None else areas[indices].sum())

    def volume(self) -> float:
        """Enclosed volume by the divergence theorem"""
        a, b, c = self._corners()
        return float(np.einsum("ij,ij->i", a, np.cross(b, c)).sum() / 6.0)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def subset(self, indices: np.ndarray) -> "SurfaceMesh":
        return SurfaceMesh(self.vertices, self.triangles[indices])

    def scaled(self, factor: float) -> "SurfaceMesh":
        return SurfaceMesh(self.vertices * factor, self.triangles)


@dataclass(frozen=True)
class FacePredicate:
    """Select triangles lying on the plane x[axis] == offset with the given outward normal"""
    axis: int
    direction: int      # +1 or -1
    offset: float
    tolerance: float

    def select(self, surface: SurfaceMesh) -> np.ndarray:
        normals = surface.normals()
        centroids = surface.centroids()
        aligned = normals[:, self.axis] * self.direction > 1.0 - _GEOM.NORMAL_TOLERANCE
        on_plane = np.abs(centroids[:, self.axis] - self.offset) <= self.tolerance
        return aligned & on_plane


@dataclass(frozen=True)
class FaceTags:
    """Boundary face predicates for one extension box pair"""
    inlet: FacePredicate
    outlet: FacePredicate
    block: Tuple[FacePredicate, ...]

    def block_mask(self, surface: SurfaceMesh) -> np.ndarray:
        mask = np.zeros(surface.n_triangles, dtype=bool)
        for predicate in self.block:
            mask |= predicate.select(surface)
        return mask


@dataclass(frozen=True, eq=False)
class Domain:
    """Flow domain with named boundary patches (triangle indices into ``surface``)"""
    flow_domain: m3d.Manifold
    in_out_box: m3d.Manifold
    surface: SurfaceMesh
    patches: Dict[str, np.ndarray]
    in_out_box_surface: SurfaceMesh
    half_length: float
    extension_factor: float
    length_scale: float = 1.0       # cumulative factor applied since prescale

    def patch_surface(self, name: str) -> SurfaceMesh:
        return self.surface.subset(self.patches[name])

    def patch_area(self, name: str) -> float:
        return self.surface.area(self.patches[name])

    def patch_areas(self) -> Dict[str, float]:
        areas = {name: self.patch_area(name) for name in self.patches}
        areas[IN_OUT_BOX] = self.in_out_box_surface.area()
        return areas

    @property
    def extent(self) -> float:
        """Half length of the whole domain along the flow axis"""
        return self.extension_factor * self.half_length


def prescale(tables: SampleTables, divisor: float = _GEOM.PRE_SCALE_DIVISOR
             ) -> Tuple[Tuple[PoreBody, ...], Tuple[PoreThroat, ...], float]:
    """First unit stage: microns / divisor. Returns (bodies, throats, H)."""
    def div(v):
        return tuple(c / divisor for c in v)

    bodies = tuple(replace(b, center=div(b.center), radius=b.radius / divisor,
                           domain_half_length=b.domain_half_length / divisor)
                   for b in tables.bodies)
    throats = tuple(replace(t, endpoint_a=div(t.endpoint_a), endpoint_b=div(t.endpoint_b),
                            radius=t.radius / divisor)
                    for t in tables.throats)
    return bodies, throats, tables.domain_half_length / divisor


def tree_union(solids: Sequence[m3d.Manifold]) -> Optional[m3d.Manifold]:
    """Pairwise union, halving the list on each pass"""
    current = list(solids)
    if not current:
        return None
    while len(current) > 1:
        next_level = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                next_level.append(current[i] + current[i + 1])
            else:
                next_level.append(current[i])
        current = next_level
    return current[0]


def make_sphere(center, radius: float, segments: int) -> m3d.Manifold:
    return m3d.Manifold.sphere(radius, segments).translate(list(center))


def make_cylinder(a, b, radius: float, segments: int) -> Optional[m3d.Manifold]:
    """Cylinder with axis from ``a`` to ``b``; None when the axis is degenerate"""
    dx, dy, dz = (b[i] - a[i] for i in range(3))
    length = math.sqrt(dx * dx + dy * dy + dz * dz)
    if length <= _GEOM.MIN_THROAT_LENGTH_RATIO * radius:
        return None
    cyl = m3d.Manifold.cylinder(length, radius, radius, segments)
    # Manifold cylinders grow along +z from the origin
    tilt = math.degrees(math.atan2(math.hypot(dx, dy), dz))
    azim = math.degrees(math.atan2(dy, dx))
    cyl = cyl.rotate([0, tilt, 0]).rotate([0, 0, azim])
    return cyl.translate(list(a))


def build_pores(bodies: Iterable[PoreBody], segments: int = _GEOM.SPHERE_SEGMENTS) -> m3d.Manifold:
    """One sphere per valid pore body, united into "Pores"."""
    spheres = []
    skipped = 0
    for body in bodies:
        if not body.is_valid():
            skipped += 1
            continue
        spheres.append(make_sphere(body.center, body.radius, segments))

    if skipped:
        logger.warning(f"⚠️  Excluded {skipped} pore body rows with non-finite or non-positive values")
    if not spheres:
        raise DegenerateGeometry("No valid pore bodies after row filtering")

    logger.debug(f"Uniting {len(spheres)} pore spheres")
    return tree_union(spheres)


def build_skeleton(throats: Iterable[PoreThroat],
                   segments: int = _GEOM.CYLINDER_SEGMENTS) -> Optional[m3d.Manifold]:
    """One cylinder per valid pore throat, united into "Skeleton" (None if empty)."""
    cylinders = []
    skipped = 0
    for throat in throats:
        cyl = make_cylinder(throat.endpoint_a, throat.endpoint_b, throat.radius, segments) \
            if throat.is_valid() else None
        if cyl is None:
            skipped += 1
            continue
        cylinders.append(cyl)

    if skipped:
        logger.warning(f"⚠️  Excluded {skipped} pore throat rows (invalid values or zero length)")
    if not cylinders:
        logger.warning("⚠️  Skeleton is empty - pore bodies are not connected by throats")
        return None

    logger.debug(f"Uniting {len(cylinders)} throat cylinders")
    return tree_union(cylinders)


def build_extension_boxes(half_length: float,
                          extension_factor: float = _GEOM.EXTENSION_FACTOR) -> m3d.Manifold:
    """Inlet box [-fH, -H] x [-H, H]^2 and its mirror on +x, united into "In-Out-Box"."""
    if not (math.isfinite(half_length) and half_length > 0):
        raise DegenerateGeometry(f"domain half length must be positive, got {half_length}")
    H = half_length
    size = [(extension_factor - 1.0) * H, 2.0 * H, 2.0 * H]
    inlet_box = m3d.Manifold.cube(tuple(size)).translate([-extension_factor * H, -H, -H])
    outlet_box = m3d.Manifold.cube(tuple(size)).translate([H, -H, -H])
    return inlet_box + outlet_box


def tag_faces(in_out_box: m3d.Manifold, half_length: float,
              extension_factor: float = _GEOM.EXTENSION_FACTOR) -> FaceTags:
    """
    Build the boundary predicates for the extension boxes and check them against
    the box surface.

    Inlet is the outward face of the inlet box (normal -x at x = -fH), Outlet its
    mirror. Block surface covers the box side walls (y = +-H, z = +-H) and the box
    end faces that look into the area of interest (x = -H facing +x, x = +H facing -x).
    """
    H = half_length
    tol = _GEOM.PLANE_TOLERANCE_RATIO * H * extension_factor
    tags = FaceTags(
        inlet=FacePredicate(0, -1, -extension_factor * H, tol),
        outlet=FacePredicate(0, +1, extension_factor * H, tol),
        block=(
            FacePredicate(1, +1, H, tol),
            FacePredicate(1, -1, -H, tol),
            FacePredicate(2, +1, H, tol),
            FacePredicate(2, -1, -H, tol),
            FacePredicate(0, +1, -H, tol),
            FacePredicate(0, -1, H, tol),
        ),
    )

    box_surface = SurfaceMesh.from_manifold(in_out_box)
    for name, predicate in ((INLET, tags.inlet), (OUTLET, tags.outlet)):
        if not predicate.select(box_surface).any():
            raise ConfigurationError(f"{name} face not found on the extension boxes")
    return tags


def unite_all(pores: m3d.Manifold, skeleton: Optional[m3d.Manifold],
              in_out_box: m3d.Manifold) -> m3d.Manifold:
    """Union of Pores, Skeleton and In-Out-Box into "Flow Domain"."""
    parts = [p for p in (pores, skeleton, in_out_box) if p is not None]
    flow_domain = tree_union(parts)
    if flow_domain.is_empty():
        raise DegenerateGeometry("Flow domain union is empty")
    return flow_domain


def partition(flow_domain: m3d.Manifold, in_out_box: m3d.Manifold, tags: FaceTags,
              half_length: float, extension_factor: float = _GEOM.EXTENSION_FACTOR) -> Domain:
    """
    Split the flow domain surface into Inlet, Outlet, BlockSurface and
    PoreWallSurface (everything else), and keep the In-Out-Box region surface.
    """
    surface = SurfaceMesh.from_manifold(flow_domain)

    inlet = tags.inlet.select(surface)
    outlet = tags.outlet.select(surface) & ~inlet
    block = tags.block_mask(surface) & ~(inlet | outlet)
    wall = ~(inlet | outlet | block)

    patches = {
        INLET: np.flatnonzero(inlet),
        OUTLET: np.flatnonzero(outlet),
        BLOCK_SURFACE: np.flatnonzero(block),
        PORE_WALL: np.flatnonzero(wall),
    }
    for name in (INLET, OUTLET):
        if patches[name].size == 0:
            raise ConfigurationError(f"Boundary '{name}' has no faces on the flow domain")

    logger.debug("Patch triangles: " + ", ".join(f"{k}={v.size}" for k, v in patches.items()))
    return Domain(
        flow_domain=flow_domain,
        in_out_box=in_out_box,
        surface=surface,
        patches=patches,
        in_out_box_surface=SurfaceMesh.from_manifold(in_out_box),
        half_length=half_length,
        extension_factor=extension_factor,
    )


def scale_domain(domain: Domain, factor: float = _GEOM.FINAL_SCALE_FACTOR) -> Domain:
    """Scale every part uniformly about the origin."""
    scale = [factor, factor, factor]
    return replace(
        domain,
        flow_domain=domain.flow_domain.scale(scale),
        in_out_box=domain.in_out_box.scale(scale),
        surface=domain.surface.scaled(factor),
        in_out_box_surface=domain.in_out_box_surface.scaled(factor),
        half_length=domain.half_length * factor,
        length_scale=domain.length_scale * factor,
    )


def build_flow_domain(tables: SampleTables, geometry_config: Optional[Dict] = None) -> Domain:
    """Compose the construction stages into a scaled, tagged Domain"""
    G = geometry_config or {}
    divisor = G.get("pre_scale_divisor", _GEOM.PRE_SCALE_DIVISOR)
    factor = G.get("final_scale_factor", _GEOM.FINAL_SCALE_FACTOR)
    extension = G.get("extension_factor", _GEOM.EXTENSION_FACTOR)

    bodies, throats, H = prescale(tables, divisor)

    pores = build_pores(bodies, G.get("sphere_segments", _GEOM.SPHERE_SEGMENTS))
    skeleton = build_skeleton(throats, G.get("cylinder_segments", _GEOM.CYLINDER_SEGMENTS))
    in_out_box = build_extension_boxes(H, extension)
    tags = tag_faces(in_out_box, H, extension)

    flow_domain = unite_all(pores, skeleton, in_out_box)
    domain = partition(flow_domain, in_out_box, tags, H, extension)
    domain = scale_domain(domain, factor)

    logger.info(f"✅ Flow domain built: {domain.surface.n_triangles} triangles, "
                f"H = {domain.half_length:.3e} m, "
                f"inlet area = {domain.patch_area(INLET):.3e} m²")
    return domain


def section_area(domain: Domain, x: float) -> float:
    """Area of the flow domain cut by the plane at the given x"""
    # Rotating +90 degrees about y maps the plane x = c onto z = -c
    rotated = domain.flow_domain.rotate([0, 90, 0])
    return float(rotated.slice(-x).area())
