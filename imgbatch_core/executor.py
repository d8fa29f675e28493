from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import state
from .cancellation import CancellationSignal
from .constants import CANCELLED_MESSAGE
from .operations import Operation, OperationCancelled


@dataclass(frozen=True)
class FileTask:
    """One discovered file waiting for a worker."""

    path: Path


@dataclass(frozen=True)
class TransformOutcome:
    """Per-file result of applying the job's operation."""

    path: Path
    success: bool
    error: str | None = None

    @property
    def cancelled(self) -> bool:
        return not self.success and self.error == CANCELLED_MESSAGE


def execute(
    task: FileTask,
    operation: Operation,
    cancel: CancellationSignal | None = None,
) -> TransformOutcome:
    """
    Apply ``operation`` to one file and report the result.

    A set cancellation signal short-circuits before the file is touched. Any
    error raised by the strategy becomes a failed outcome for this file only.
    """
    if cancel is not None and cancel.is_set():
        return TransformOutcome(task.path, False, CANCELLED_MESSAGE)

    try:
        operation.apply(task.path, cancel)
    except OperationCancelled:
        state.log.info("[SKIP] %s: cancelled before writing", task.path)
        return TransformOutcome(task.path, False, CANCELLED_MESSAGE)
    except Exception as exc:
        reason = str(exc) or exc.__class__.__name__
        state.log.error("[ERROR] %s failed for %s: %s", operation.describe(), task.path, reason)
        state.log.debug("Traceback for %s", task.path, exc_info=True)
        return TransformOutcome(task.path, False, reason)

    state.log.info("[SUCCESS] %s %s", operation.describe(), task.path)
    return TransformOutcome(task.path, True)
