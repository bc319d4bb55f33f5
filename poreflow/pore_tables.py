"""
Pore network table reader.

Reads the ``pore_bodies_<n>`` and ``pore_throats_<n>`` CSV tables produced by the
pore network extraction step. Column order is fixed:

    bodies:  X, Y, Z, pore_radius, domain_half_length, branch_count
    throats: X1, Y1, Z1, X2, Y2, Z2, throat_radius

All lengths are in microns. Cells that are empty or hold ``nan``/``inf`` are kept
as non-finite floats; deciding whether such a row is usable belongs to the
geometry builder.
"""
import csv
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from .errors import InputMissingOrMalformed

logger = logging.getLogger(__name__)

BODY_COLUMNS = 6
THROAT_COLUMNS = 7

Vector3 = Tuple[float, float, float]


@dataclass(frozen=True)
class PoreBody:
    center: Vector3
    radius: float
    domain_half_length: float
    branch_count: int

    def is_valid(self) -> bool:
        """Finite positive radius and finite centre"""
        return _finite_positive(self.radius) and all(math.isfinite(c) for c in self.center)


@dataclass(frozen=True)
class PoreThroat:
    endpoint_a: Vector3
    endpoint_b: Vector3
    radius: float

    @property
    def length(self) -> float:
        return math.dist(self.endpoint_a, self.endpoint_b)

    def is_valid(self) -> bool:
        coords = self.endpoint_a + self.endpoint_b
        return _finite_positive(self.radius) and all(math.isfinite(c) for c in coords)


@dataclass(frozen=True)
class SampleTables:
    """One sample's input pair"""
    index: int
    bodies: Tuple[PoreBody, ...]
    throats: Tuple[PoreThroat, ...]

    @property
    def domain_half_length(self) -> float:
        return self.bodies[0].domain_half_length


def _finite_positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _parse_cell(cell: str) -> float:
    text = cell.strip()
    if not text:
        return math.nan
    return float(text)  # float() accepts nan/inf tokens


def _is_header_row(row: Sequence[str]) -> bool:
    """A header holds column names only: no non-empty cell parses as a number"""
    for cell in row:
        if not cell.strip():
            continue
        try:
            float(cell.strip())
        except ValueError:
            continue
        return False
    return True


def _read_rows(path: Path, n_columns: int) -> List[List[float]]:
    path = Path(path)
    if not path.is_file():
        raise InputMissingOrMalformed(f"Table not found: {path}")

    try:
        with open(path, newline="") as f:
            raw_rows = [row for row in csv.reader(f) if any(cell.strip() for cell in row)]
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise InputMissingOrMalformed(f"Cannot read {path}: {e}") from e

    # A partly numeric first row is data with a bad cell, not a header
    if raw_rows and _is_header_row(raw_rows[0]):
        logger.debug(f"Skipping header row in {path.name}: {raw_rows[0]}")
        raw_rows = raw_rows[1:]

    rows = []
    for line_no, row in enumerate(raw_rows, start=1):
        if len(row) < n_columns:
            raise InputMissingOrMalformed(
                f"{path.name} row {line_no}: expected {n_columns} columns, got {len(row)}")
        try:
            rows.append([_parse_cell(cell) for cell in row[:n_columns]])
        except ValueError as e:
            raise InputMissingOrMalformed(f"{path.name} row {line_no}: non-numeric cell ({e})") from e
    return rows


def read_pore_bodies(path) -> Tuple[PoreBody, ...]:
    """Read a pore body table; the half length of row 0 applies to every body."""
    rows = _read_rows(path, BODY_COLUMNS)
    if not rows:
        raise InputMissingOrMalformed(f"No pore body rows in {path}")

    half_length = rows[0][4]
    if not _finite_positive(half_length):
        raise InputMissingOrMalformed(
            f"domain_half_length must be finite and positive, got {half_length} in {path}")

    bodies = []
    for x, y, z, radius, _, branches in rows:
        branch_count = int(branches) if math.isfinite(branches) else 0
        bodies.append(PoreBody((x, y, z), radius, half_length, branch_count))
    return tuple(bodies)


def read_pore_throats(path) -> Tuple[PoreThroat, ...]:
    rows = _read_rows(path, THROAT_COLUMNS)
    return tuple(PoreThroat((x1, y1, z1), (x2, y2, z2), r) for x1, y1, z1, x2, y2, z2, r in rows)


def load_sample(n: int, bodies_file, throats_file) -> SampleTables:
    """Read both tables of sample ``n``"""
    bodies = read_pore_bodies(bodies_file)
    throats = read_pore_throats(throats_file)
    logger.info(f"Sample {n}: {len(bodies)} pore bodies, {len(throats)} pore throats, "
                f"H = {bodies[0].domain_half_length} um")
    return SampleTables(n, bodies, throats)
