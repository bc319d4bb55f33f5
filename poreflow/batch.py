"""
Dataset iterator.

Walks a closed range of sample indices. A sample whose result file already exists
is skipped, so interrupted batches can simply be rerun. Every failure stays inside
its sample: it is logged with the index and cause, the case directory is removed
and the next index runs.
"""
import logging
import shutil
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .config_manager import ConfigManager
from .errors import SampleError
from .metrics import DerivedMetrics
from .pipeline import SamplePipeline

logger = logging.getLogger(__name__)

SKIPPED = "Skipped"
EXPORTED = "Exported"
FAILED = "Failed"

UNEXPECTED = "Unexpected"


@dataclass(frozen=True)
class SampleResult:
    index: int
    status: str
    kind: Optional[str] = None
    message: str = ""
    metrics: Optional[DerivedMetrics] = None
    output_path: Optional[str] = None
    elapsed: float = 0.0


@dataclass
class BatchSummary:
    results: List[SampleResult] = field(default_factory=list)

    def _with(self, status: str) -> List[int]:
        return [r.index for r in self.results if r.status == status]

    @property
    def exported(self) -> List[int]:
        return self._with(EXPORTED)

    @property
    def skipped(self) -> List[int]:
        return self._with(SKIPPED)

    @property
    def failed(self) -> List[int]:
        return self._with(FAILED)

    def result(self, index: int) -> SampleResult:
        return next(r for r in self.results if r.index == index)


def run_sample(n: int, config_manager: ConfigManager, pipeline: SamplePipeline) -> SampleResult:
    """Run one sample and turn any failure into a tagged SampleResult"""
    output_path = config_manager.output_file(n)
    if output_path.exists():
        logger.info(f"Sample {n}: {output_path} exists - skipped")
        return SampleResult(n, SKIPPED, output_path=str(output_path))

    start_time = time.time()
    logger.info(f"===== Sample {n} =====")
    try:
        outcome = pipeline.run(n)
        result = SampleResult(n, EXPORTED, metrics=outcome.metrics,
                              output_path=str(outcome.output_path),
                              elapsed=time.time() - start_time)
        logger.info(f"✅ Sample {n} exported ({result.elapsed:.1f}s)")
    except SampleError as e:
        result = SampleResult(n, FAILED, kind=e.kind, message=str(e), elapsed=time.time() - start_time)
        logger.error(f"❌ Sample {n} failed [{e.kind}]: {e}")
    except Exception as e:
        result = SampleResult(n, FAILED, kind=UNEXPECTED, message=f"{type(e).__name__}: {e}",
                              elapsed=time.time() - start_time)
        logger.exception(f"❌ Sample {n} failed [{UNEXPECTED}]: {e}")
    finally:
        release_case(n, config_manager)
    return result


def release_case(n: int, config_manager: ConfigManager) -> None:
    """Remove the sample's case directory unless export.keep_case is set"""
    if config_manager.config["export"]["keep_case"]:
        return
    case_dir = config_manager.case_dir(n)
    if case_dir.exists():
        shutil.rmtree(case_dir, ignore_errors=True)
        logger.debug(f"Removed case directory {case_dir}")


def run_batch(config_manager: ConfigManager, pipeline: Optional[SamplePipeline] = None) -> BatchSummary:
    """Process samples start..finish (inclusive), strictly one after another"""
    start, finish = config_manager.get_batch_range()
    pipeline = pipeline or SamplePipeline(config_manager)
    summary = BatchSummary()

    logger.info(f"Batch over samples {start}..{finish}")
    for n in range(start, finish + 1):
        summary.results.append(run_sample(n, config_manager, pipeline))

    logger.info(f"Batch finished: {len(summary.exported)} exported, "
                f"{len(summary.skipped)} skipped, {len(summary.failed)} failed")
    for r in summary.results:
        if r.status == FAILED:
            logger.info(f"  sample {r.index}: {r.kind} - {r.message}")
    return summary
