"""
Result export

One flat CSV per sample: a header row and a single value row with a fixed column
order. Files are written to a temporary file in the destination directory,
flushed to disk and renamed into place, so a result file either exists complete
or not at all.
"""
import csv
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from .errors import ExportFailure
from .metrics import DerivedMetrics

logger = logging.getLogger(__name__)

COLUMNS: Sequence[str] = (
    "Tort1", "CellCount", "LengthA", "Perm1", "Porosity", "ReyNo", "Perm2",
    "InMassFlow", "OutMassFlow", "Tort2", "Perm3", "PresDrop", "PorVol", "SurfArea",
    "in-area", "out-area", "in-out-area", "InPres", "OutPres", "Vel", "VelX",
    "Continuity", "X-momentum", "Y-momentum", "Z-momentum",
)

RESIDUAL_COLUMNS: Sequence[str] = ("Iteration", "Continuity", "X-momentum", "Y-momentum", "Z-momentum")
_RESIDUAL_FIELDS = {"Continuity": "p", "X-momentum": "Ux", "Y-momentum": "Uy", "Z-momentum": "Uz"}


def atomic_write_text(path: Path, text: str) -> Path:
    """Write ``text`` to ``path`` via temp file + fsync + rename"""
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise ExportFailure(f"Cannot write {path}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return path


def _csv_text(header: Iterable[str], rows: Iterable[Iterable]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(list(header))
    writer.writerows(rows)
    return buffer.getvalue()


def format_row(metrics: DerivedMetrics) -> List:
    row = metrics.as_row()
    return [row[column] for column in COLUMNS]


def write_result(path: Path, metrics: DerivedMetrics) -> Path:
    """Write the single-row result file for one sample"""
    text = _csv_text(COLUMNS, [format_row(metrics)])
    atomic_write_text(path, text)
    logger.info(f"✅ Results written: {path}")
    return Path(path)


def residuals_path(result_path: Path) -> Path:
    result_path = Path(result_path)
    return result_path.with_name(f"{result_path.stem}_residuals{result_path.suffix}")


def write_residual_history(path: Path, history: Sequence[Dict[str, float]]) -> Path:
    """Per-iteration initial residuals (continuity and momentum components)"""
    rows = [[int(entry.get("Time", i + 1))] +
            [entry.get(_RESIDUAL_FIELDS[c], "") for c in RESIDUAL_COLUMNS[1:]]
            for i, entry in enumerate(history)]
    atomic_write_text(path, _csv_text(RESIDUAL_COLUMNS, rows))
    logger.debug(f"Residual history written: {path} ({len(rows)} iterations)")
    return Path(path)


def read_result(path: Path) -> Dict[str, float]:
    """Read a result file back into {column: value}"""
    with open(path, newline="") as f:
        header, values = list(csv.reader(f))[:2]
    return {column: float(value) for column, value in zip(header, values)}


def export_sample(result_path: Path, metrics: DerivedMetrics,
                  history: Sequence[Dict[str, float]] = (), residual_history: bool = True) -> Path:
    """
    Write the residual history (optional) and then the result row.

    The row file goes last: its existence marks the sample as done.
    """
    if residual_history and history:
        write_residual_history(residuals_path(result_path), history)
    return write_result(result_path, metrics)
