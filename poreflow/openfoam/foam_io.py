"""
Reading and writing OpenFOAM text files

Dictionaries are written from f-string templates; fields, function object tables
and solver logs are parsed with regular expressions and numpy.
"""

import re
import math
import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

FOAM_BANNER = "/*--------------------------------*- C++ -*----------------------------------*\\"

_INTERNAL_NONUNIFORM = re.compile(
    r"internalField\s+nonuniform\s+List<(scalar|vector)>\s*(\d+)\s*\(")
_INTERNAL_UNIFORM = re.compile(r"internalField\s+uniform\s+(\([^)]*\)|[^;\s]+)\s*;")
_TIME_LINE = re.compile(r"^Time = ([\d.eE+-]+)s?\s*$", re.MULTILINE)
_SOLVING_FOR = re.compile(
    r"Solving for (\w+), Initial residual = ([^,]+), Final residual = ([^,]+), No Iterations (\d+)")


def foam_header(cls: str, obj: str, location: Optional[str] = None) -> str:
    """FoamFile header block"""
    location_line = f'    location    "{location}";\n' if location else ""
    return f"""{FOAM_BANNER}
FoamFile
{{
    format      ascii;
    class       {cls};
{location_line}    object      {obj};
}}
"""


def write_foam_file(path: Path, cls: str, body: str, location: Optional[str] = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(foam_header(cls, path.name, location) + "\n" + body)
    return path


def time_directories(case_dir: Path) -> List[Path]:
    """Numeric time directories sorted by time value"""
    dirs = []
    for item in Path(case_dir).iterdir():
        if not item.is_dir():
            continue
        try:
            dirs.append((float(item.name), item))
        except ValueError:
            continue
    return [item for _, item in sorted(dirs, key=lambda pair: pair[0])]


def latest_time_dir(case_dir: Path) -> Path:
    """Latest time directory, ``0`` when nothing else exists"""
    dirs = time_directories(case_dir)
    return dirs[-1] if dirs else Path(case_dir) / "0"


def parse_internal_field(text: str, n_cells: Optional[int] = None) -> np.ndarray:
    """
    Read the internalField of an ASCII volScalarField/volVectorField.

    Returns shape (N,) for scalars and (N, 3) for vectors. Uniform fields need
    ``n_cells`` to be expanded.
    """
    match = _INTERNAL_NONUNIFORM.search(text)
    if match:
        kind, count = match.group(1), int(match.group(2))
        width = 3 if kind == "vector" else 1
        end = text.find("boundaryField", match.end())
        body = text[match.end():end if end >= 0 else len(text)]
        tokens = body.replace("(", " ").replace(")", " ").replace(";", " ").split()
        if len(tokens) < count * width:
            raise ValueError(f"internalField truncated: expected {count * width} values, got {len(tokens)}")
        values = np.array(tokens[:count * width], dtype=float)
        return values.reshape(count, 3) if width == 3 else values

    match = _INTERNAL_UNIFORM.search(text)
    if match:
        if n_cells is None:
            raise ValueError("uniform internalField needs the cell count to expand")
        raw = match.group(1)
        if raw.startswith("("):
            vector = np.array(raw.strip("()").split(), dtype=float)
            return np.tile(vector, (n_cells, 1))
        return np.full(n_cells, float(raw))

    raise ValueError("No internalField found")


def read_field(path: Path, n_cells: Optional[int] = None) -> np.ndarray:
    return parse_internal_field(Path(path).read_text(), n_cells)


def parse_function_object_table(text: str) -> Dict[str, object]:
    """
    Parse a function object ``.dat`` file.

    Returns ``{"header": {key: value}, "columns": [...], "rows": ndarray}``. Header
    entries come from ``# Key : value`` lines; the last comment line starting with
    ``# Time`` names the columns.
    """
    header = {}
    columns: List[str] = []
    rows = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            content = stripped.lstrip("#").strip()
            if content.startswith("Time"):
                columns = content.split()
            elif ":" in content:
                key, _, value = content.partition(":")
                header[key.strip()] = value.strip()
            continue
        try:
            rows.append([float(token) for token in stripped.split()])
        except ValueError:
            logger.debug(f"Skipping non-numeric table line: {stripped}")

    width = min((len(r) for r in rows), default=0)
    data = np.array([r[:width] for r in rows], dtype=float) if rows else np.empty((0, 0))
    return {"header": header, "columns": columns, "rows": data}


def function_object_dat(case_dir: Path, name: str) -> Optional[Path]:
    """Newest ``.dat`` file written by function object ``name`` (any start time)"""
    root = Path(case_dir) / "postProcessing" / name
    if not root.is_dir():
        return None
    candidates = sorted(root.glob("*/*.dat"), key=lambda p: (_time_key(p.parent.name), p.name))
    return candidates[-1] if candidates else None


def _time_key(name: str) -> float:
    try:
        return float(name)
    except ValueError:
        return -math.inf


def last_value(table: Dict[str, object], column: str) -> float:
    """Value of ``column`` in the final row (the column after Time if names are missing)"""
    rows = table["rows"]
    if rows.size == 0:
        raise ValueError("Function object table has no data rows")
    columns = table["columns"]
    if column in columns:
        index = columns.index(column)
    elif len(columns) == 0 and rows.shape[1] > 1:
        index = 1
    else:
        raise KeyError(f"Column '{column}' not in {columns}")
    return float(rows[-1, index])


def table_area(table: Dict[str, object]) -> Optional[float]:
    """Surface area reported by a surfaceFieldValue with ``writeArea yes``"""
    if "Area" in table["columns"] and table["rows"].size:
        return last_value(table, "Area")
    raw = table["header"].get("Area")
    if raw is None:
        return None
    return float(raw.split()[0])


def parse_residual_history(log_text: str) -> List[Dict[str, float]]:
    """
    Initial residual per field for each solver iteration.

    The first "Solving for" line of a field within one time step is kept, which
    is the residual before any correctors.
    """
    history = []
    current = None
    for line in log_text.splitlines():
        time_match = _TIME_LINE.match(line.strip())
        if time_match:
            current = {"Time": float(time_match.group(1))}
            history.append(current)
            continue
        solve_match = _SOLVING_FOR.search(line)
        if solve_match and current is not None:
            field = solve_match.group(1)
            if field not in current:
                current[field] = _to_float(solve_match.group(2))
    return [entry for entry in history if len(entry) > 1]


def _to_float(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return math.nan
