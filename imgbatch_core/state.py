from dataclasses import dataclass, field
import logging
from secrets import token_hex
import threading


@dataclass
class RunStats:
    """
    In-memory counters for a single imgbatch run.

    Semantics:
    - images_found: count of files yielded by discovery.
    - processed: count of files a strategy actually ran on (success or failure).
    - successes/errors: per-file outcomes.
    - skipped: files that were discovered but never run because of cancellation.

    Worker threads record outcomes concurrently, so every mutation takes the lock.
    """

    images_found: int = 0
    processed: int = 0
    successes: int = 0
    skipped: int = 0
    errors: int = 0
    failed_items: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_image_found(self) -> None:
        """Count a file handed out by discovery."""
        with self._lock:
            self.images_found += 1

    def record_success(self) -> None:
        """Count a successfully transformed file."""
        with self._lock:
            self.processed += 1
            self.successes += 1

    def record_skip(self, count: int = 1) -> None:
        """Count files that were not run (cancelled before they started)."""
        if count <= 0:
            return
        with self._lock:
            self.skipped += count

    def record_error(self, path: str, reason: str, count_processed: bool = False) -> None:
        """Count an error and capture the failing path and reason; per-file failures also count as processed."""
        with self._lock:
            if count_processed:
                self.processed += 1
            self.errors += 1
            self.failed_items.append((path, reason))


run_id = token_hex(4)
stats = RunStats()

# Default logger; configured at runtime by logging_utils.setup_logging
log: logging.LoggerAdapter = logging.LoggerAdapter(logging.getLogger("imgbatch"), {"run_id": run_id})


def reset_state() -> None:
    """
    Reset counters. Useful in tests to isolate runs.
    """
    global stats
    stats = RunStats()
