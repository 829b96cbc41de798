from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import threading

from .errors import OptimizeError
from .log import get_logger
from .optimizer import SafeFileOptimizer
from .results import FileFailure, OptimizationResult, format_percent


logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchSummary:
    total_files: int
    optimized: int
    skipped: int
    total_original_bytes: int
    total_optimized_bytes: int
    # Files never started because the batch was cancelled
    cancelled: int = 0

    @property
    def total_saving(self) -> int:
        return max(0, self.total_original_bytes - self.total_optimized_bytes)

    @property
    def saved_percent(self) -> str:
        return format_percent(self.total_saving, self.total_original_bytes)


def process_batch(
    files: Sequence[Path],
    optimizer: SafeFileOptimizer,
    workers: Optional[int] = None,
    on_result: Optional[Callable[[OptimizationResult], None]] = None,
    on_failure: Optional[Callable[[FileFailure], None]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[List[OptimizationResult], List[FileFailure], BatchSummary]:
    """
    Optimize every file concurrently, one independent task per file.

    One file's failure never aborts the others. Setting cancel_event stops
    files that have not started yet; files already being optimized run to
    completion so no half-applied replace is left behind.
    """
    results: List[OptimizationResult] = []
    failures: List[FileFailure] = []
    cancelled = 0

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures: Dict[Future, Path] = {executor.submit(optimizer.optimize, f): Path(f) for f in files}

        for future in as_completed(futures):
            if cancel_event is not None and cancel_event.is_set():
                for pending in futures:
                    pending.cancel()

            if future.cancelled():
                cancelled += 1
                continue

            path = futures[future]
            try:
                result = future.result()
            except OptimizeError as e:
                logger.warning("{}", e)
                failure = FileFailure(path=path, reason=str(e))
                failures.append(failure)
                if on_failure:
                    on_failure(failure)
                continue

            results.append(result)
            if on_result:
                on_result(result)

    summary = BatchSummary(
        total_files=len(files),
        optimized=len(results),
        skipped=len(failures),
        total_original_bytes=sum(r.original_size for r in results),
        total_optimized_bytes=sum(r.optimized_size for r in results),
        cancelled=cancelled,
    )
    return results, failures, summary
