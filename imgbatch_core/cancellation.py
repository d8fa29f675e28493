from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Iterator, TextIO

from . import state
from .constants import ESCAPE_CHAR


class CancellationSignal:
    """
    Broadcast cancellation flag for one job run.

    One monitor sets it; discovery and every worker read it. Once set it stays
    set; there is no reset, a new run gets a new signal.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> None:
        """Mark the run as cancelled. Safe to call repeatedly and from any thread."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the signal is set or the timeout expires; return the flag."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationSignal(set={self.is_set()})"


@contextmanager
def interrupt_handler(cancel: CancellationSignal) -> Iterator[CancellationSignal]:
    """
    Route SIGINT (Ctrl+C) to ``cancel`` for the duration of the block.

    The previous handler is restored on exit. Signal handlers can only be
    installed from the main thread; elsewhere the block runs unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handle_sigint(signum, frame):  # noqa: ARG001
        if not cancel.is_set():
            state.log.warning("Interrupt received; finishing started files and stopping.")
        cancel.set()

    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, _handle_sigint)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def watch_stream_for_escape(cancel: CancellationSignal, stream: TextIO) -> threading.Thread:
    """
    Start a daemon thread that sets ``cancel`` when Escape is read from ``stream``.

    End of stream stops the watcher without cancelling.
    """

    def _watch() -> None:
        while not cancel.is_set():
            try:
                char = stream.read(1)
            except (OSError, ValueError) as exc:
                state.log.debug("Stopped watching for Escape: %s", exc)
                return
            if not char:
                return
            if char == ESCAPE_CHAR:
                state.log.warning("Escape pressed; cancelling operation.")
                cancel.set()
                return

    thread = threading.Thread(target=_watch, name="imgbatch-escape-watch", daemon=True)
    thread.start()
    return thread
