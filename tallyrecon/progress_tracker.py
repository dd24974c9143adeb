"""
Stage-level progress for reconciliation runs
"""

from typing import Dict, List, Any, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Tracks one named run through a fixed number of stages and keeps a history of runs."""

    def __init__(self):
        self.run_name: Optional[str] = None
        self.stage_count = 0
        self.stage = 0
        self.message = ""
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.is_running = False
        self.history: List[Dict[str, Any]] = []

    @property
    def progress(self) -> float:
        if not self.stage_count:
            return 0.0
        return self.stage / self.stage_count * 100

    def begin(self, run_name: str, stage_count: int, message: str = "") -> None:
        self.run_name = run_name
        self.stage_count = stage_count
        self.stage = 0
        self.message = message
        self.started_at = datetime.now()
        self.finished_at = None
        self.is_running = True
        self.history.append({'run': run_name, 'started_at': self.started_at.isoformat(), 'status': 'running'})
        logger.info(f"{run_name}: {message or 'started'}")

    def advance(self, stage: int, message: str) -> None:
        if not self.is_running:
            return
        self.stage = stage
        self.message = message
        logger.info(f"{self.run_name}: [{stage + 1}/{self.stage_count}] {message}")

    def _finish(self, status: str, message: str) -> None:
        self.message = message
        self.finished_at = datetime.now()
        self.is_running = False
        self.history[-1].update({
            'status': status,
            'finished_at': self.finished_at.isoformat(),
            'duration': (self.finished_at - self.started_at).total_seconds(),
        })

    def complete(self, message: str = "Done") -> None:
        if not self.is_running:
            return
        self.stage = self.stage_count
        self._finish('completed', message)
        logger.info(f"{self.run_name} completed: {message}")

    def fail_operation(self, error_message: str) -> None:
        if not self.is_running:
            return
        self._finish('failed', f"Failed: {error_message}")
        self.history[-1]['error'] = error_message
        logger.error(f"{self.run_name} failed: {error_message}")

    def get_status(self) -> Dict[str, Any]:
        elapsed = None
        if self.started_at:
            elapsed = round(((self.finished_at or datetime.now()) - self.started_at).total_seconds(), 1)
        return {
            'run': self.run_name,
            'progress': round(self.progress, 1),
            'stage': self.stage,
            'stage_count': self.stage_count,
            'message': self.message,
            'is_running': self.is_running,
            'elapsed_time': elapsed,
        }


class ReconciliationProgressTracker(ProgressTracker):
    """The four stages of a GST vs Tally run."""

    STAGES = [
        "Detecting date columns",
        "Exact matching",
        "Partial matching",
        "Assembling report",
    ]

    def start_reconciliation(self, gst_count: int, tally_count: int) -> None:
        self.begin("GST vs Tally Reconciliation", len(self.STAGES),
                   f"{gst_count} GST records against {tally_count} Tally records")

    def start_stage(self, stage_index: int) -> None:
        self.advance(stage_index, self.STAGES[stage_index])

    def complete_reconciliation(self, counts: Dict[str, int]) -> None:
        self.complete(
            f"{counts.get('exact_matches', 0)} exact, {counts.get('partial_matches', 0)} partial, "
            f"{counts.get('gst_only', 0)} GST only, {counts.get('tally_only', 0)} Tally only"
        )
