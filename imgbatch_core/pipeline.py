from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from . import state
from .cancellation import CancellationSignal
from .config import Job
from .constants import DEFAULT_SHUTDOWN_TIMEOUT
from .discovery import DiscoveryError, discover_image_files
from .executor import FileTask, TransformOutcome, execute
from .operations import Operation
from .pool import WorkerPool

PROGRESS_EVERY = 25


class JobState(str, Enum):
    VALIDATING = "validating"
    SCANNING = "scanning"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TERMINATED = "terminated"


@dataclass
class JobResult:
    """
    Aggregated outcome of one job run.

    ``state`` ends as COMPLETED or CANCELLED; ``history`` lists every state
    the job passed through, ending with TERMINATED once the pool was shut down.
    ``outcomes`` holds files a strategy ran on; files that were submitted but
    never ran (cancelled) are only counted in ``skipped``.
    """

    state: JobState = JobState.VALIDATING
    history: list[JobState] = field(default_factory=lambda: [JobState.VALIDATING])
    submitted: int = 0
    skipped: int = 0
    drained: bool | None = None
    outcomes: list[TransformOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    @property
    def failures(self) -> list[TransformOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def terminated(self) -> bool:
        return self.history[-1] is JobState.TERMINATED

    def settle_skipped(self) -> int:
        """Count submitted files that never produced an outcome."""
        with self._lock:
            self.skipped = self.submitted - len(self.outcomes)
        return self.skipped

    def transition(self, new_state: JobState) -> None:
        state.log.debug("Job state %s -> %s", self.state.value, new_state.value)
        if new_state is not JobState.TERMINATED:
            self.state = new_state
        self.history.append(new_state)

    def record(self, task: FileTask, outcome: TransformOutcome) -> None:
        """Store the outcome of a file a strategy ran on; cancelled outcomes are ignored."""
        if outcome.cancelled:
            return
        with self._lock:
            self.outcomes.append(outcome)
            finished = len(self.outcomes)
        if outcome.success:
            state.stats.record_success()
        else:
            state.stats.record_error(str(task.path), outcome.error or "unknown error", count_processed=True)
        if finished % PROGRESS_EVERY == 0:
            state.log.info("Progress: %s files finished, %s submitted.", finished, self.submitted)


def _process(
    result: JobResult,
    task: FileTask,
    operation: Operation,
    cancel: CancellationSignal,
) -> TransformOutcome:
    outcome = execute(task, operation, cancel)
    result.record(task, outcome)
    return outcome


def run_job(
    job: Job,
    operation: Operation,
    cancel: CancellationSignal | None = None,
    *,
    workers: int | None = None,
    queue_size: int | None = None,
    shutdown_timeout: float | None = DEFAULT_SHUTDOWN_TIMEOUT,
) -> JobResult:
    """
    Discover the job's images and apply ``operation`` to each on a worker pool.

    Discovery runs on the calling thread and feeds the pool as it goes. The
    pool is always shut down (drained, or cancelled after ``shutdown_timeout``)
    before this returns or raises.

    Raises:
        DiscoveryError: if a directory cannot be listed. Files not yet started
            are cancelled; the error is re-raised after the pool shut down.
    """
    if cancel is None:
        cancel = CancellationSignal()
    result = JobResult()
    exclude = [job.target_dir] if job.target_dir is not None else []
    discovery_failed = False

    result.transition(JobState.SCANNING)
    pool = WorkerPool(
        workers=workers,
        queue_size=queue_size,
        cancel=cancel,
        shutdown_timeout=shutdown_timeout,
    )
    try:
        with pool:
            try:
                for path in discover_image_files(job.source_root, job.recurse, cancel, exclude):
                    if cancel.is_set():
                        break
                    state.stats.record_image_found()
                    pool.submit(_process, result, FileTask(path), operation, cancel)
                    result.submitted += 1
                    if result.state is JobState.SCANNING:
                        result.transition(JobState.RUNNING)
            except DiscoveryError:
                discovery_failed = True
                cancelled = pool.cancel_pending()
                state.log.debug("Discovery failed; cancelled %s queued files.", cancelled)
                raise
            state.log.debug("Discovery finished after %s files.", result.submitted)
    finally:
        result.drained = pool.drained
        state.stats.record_skip(result.settle_skipped())
        if cancel.is_set():
            result.transition(JobState.CANCELLED)
        elif not discovery_failed:
            result.transition(JobState.COMPLETED)
        result.transition(JobState.TERMINATED)

    return result
