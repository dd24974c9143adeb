"""
Runs independent reconciliations side by side.

Each job is reconciled in its own worker process; runs share no state. A
deadline bounds the whole batch: jobs still unfinished when it passes are
reported as timed out instead of blocking the caller.
"""

import logging
import multiprocessing
import time
from concurrent.futures import ProcessPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .error_handler import ReconciliationError
from .models import ColumnMapping, ReconciliationReport, Record
from .reconciliation import MappingLike, reconcile

logger = logging.getLogger(__name__)


@dataclass
class BatchJob:
    name: str
    gst_records: Sequence[Record]
    tally_records: Sequence[Record]
    mapping: MappingLike
    settings: Optional[Dict[str, Any]] = None


@dataclass
class BatchResult:
    name: str
    report: Optional[ReconciliationReport] = None
    error: Optional[str] = None
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.report is not None


def run_job(job: BatchJob) -> BatchResult:
    """Reconcile one job; configuration problems become an error on the result."""
    start = time.time()
    try:
        report = reconcile(job.gst_records, job.tally_records, job.mapping, job.settings)
    except ReconciliationError as e:
        logger.error(f"Batch job '{job.name}' failed: {e}")
        return BatchResult(job.name, error=str(e), duration=time.time() - start)
    return BatchResult(job.name, report=report, duration=time.time() - start)


def _materialize(mapping: MappingLike) -> MappingLike:
    return mapping if isinstance(mapping, ColumnMapping) else [tuple(pair) for pair in mapping]


def reconcile_many(jobs: Sequence[BatchJob], max_workers: Optional[int] = None,
                   timeout: Optional[float] = None) -> List[BatchResult]:
    """
    Reconcile several jobs in parallel and return one result per job, in job order.

    Args:
        jobs: Independent reconciliation inputs
        max_workers: Worker processes; defaults to the CPU count
        timeout: Seconds allowed for the whole batch, or None to wait for every job

    Returns:
        List of BatchResult; a failed or timed-out job carries an error instead of a report
    """
    jobs = [BatchJob(j.name, list(j.gst_records), list(j.tally_records), _materialize(j.mapping), j.settings)
            for j in jobs]
    if not jobs:
        return []

    workers = max_workers or min(len(jobs), multiprocessing.cpu_count())
    if len(jobs) == 1 or workers <= 1:
        if timeout is not None:
            logger.warning("Running batch sequentially; the deadline is only enforced between jobs")
        return _run_sequential(jobs, timeout)

    logger.info(f"Reconciling {len(jobs)} jobs with {workers} worker processes")
    deadline = time.time() + timeout if timeout is not None else None
    results: List[BatchResult] = []
    timed_out = False

    executor = ProcessPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(run_job, job) for job in jobs]
        for job, future in zip(jobs, futures):
            remaining = None if deadline is None else max(deadline - time.time(), 0)
            try:
                results.append(future.result(timeout=remaining))
            except FutureTimeoutError:
                timed_out = True
                future.cancel()
                logger.error(f"Batch job '{job.name}' did not finish before the deadline")
                results.append(BatchResult(job.name, error="Timed out", timed_out=True,
                                           duration=timeout or 0.0))
            except Exception as e:
                logger.error(f"Error in batch job '{job.name}': {e}")
                results.append(BatchResult(job.name, error=str(e)))
    finally:
        executor.shutdown(wait=not timed_out, cancel_futures=True)

    completed = sum(1 for r in results if r.ok)
    logger.info(f"Batch finished: {completed} of {len(jobs)} jobs reconciled")
    return results


def _run_sequential(jobs: List[BatchJob], timeout: Optional[float]) -> List[BatchResult]:
    deadline = time.time() + timeout if timeout is not None else None
    results = []
    for job in jobs:
        if deadline is not None and time.time() >= deadline:
            results.append(BatchResult(job.name, error="Timed out", timed_out=True))
            continue
        results.append(run_job(job))
    return results
