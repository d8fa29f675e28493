import logging
from pathlib import Path
import sys
from typing import Any

from . import state
from .constants import APP_VERSION
from .state import RunStats

LOGGER_NAME = "imgbatch"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
CLI_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] [run_id=%(run_id)s] %(message)s"
# Worker threads log concurrently; the file log keeps the thread name to tell them apart.
FILE_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] [run_id=%(run_id)s] [%(threadName)s] %(message)s"


class _ColorFormatter(logging.Formatter):
    """Formatter that colors CLI records by level when writing to a terminal."""

    LEVEL_COLORS = {
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno) if self.use_color else None
        return f"{color}{message}{self.RESET}" if color else message


def _level(name: str | None, fallback: int = logging.INFO) -> int:
    """Resolve a level name like "debug" or "WARN"; unknown names fall back."""
    if not name:
        return fallback
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else fallback


def _console_handler(silent: bool, level: int) -> logging.Handler:
    # Silent mode still surfaces fatal errors on stderr.
    if silent:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.CRITICAL)
        handler.setFormatter(logging.Formatter(CLI_FORMAT, DATE_FORMAT))
        return handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_ColorFormatter(sys.stdout.isatty(), CLI_FORMAT, DATE_FORMAT))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(cfg: dict[str, Any], args: Any) -> tuple[logging.LoggerAdapter, dict[str, Any]]:
    """
    (Re)configure the ``imgbatch`` logger from the ``[logging]`` table and CLI flags.

    ``--silent`` and ``--verbose`` win over ``logging.silent`` and
    ``logging.cli_level``. Replaces any handlers installed by a previous call,
    rebinds ``state.log`` and returns it with the effective settings.
    """
    logging_cfg = cfg.get("logging", {}) or {}

    silent = bool(getattr(args, "silent", False) or logging_cfg.get("silent", False))
    cli_level_name = "DEBUG" if getattr(args, "verbose", False) else logging_cfg.get("cli_level", "INFO")
    file_level_name = logging_cfg.get("file_level", "INFO")
    file_enabled = bool(logging_cfg.get("file_enabled", True))
    configured_path = logging_cfg.get("file_path")
    file_path = Path(configured_path).expanduser() if configured_path else Path.cwd() / f"{LOGGER_NAME}.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(_console_handler(silent, _level(cli_level_name)))

    adapter = logging.LoggerAdapter(logger, {"run_id": state.run_id})
    state.log = adapter

    if file_enabled:
        try:
            logger.addHandler(_file_handler(file_path, _level(file_level_name)))
        except OSError as exc:
            adapter.critical("Failed to open log file %s: %s", file_path, exc)
            file_enabled = False

    settings = {
        "silent": silent,
        "cli_level": cli_level_name,
        "file_level": file_level_name,
        "file_path": file_path if file_enabled else None,
    }
    return adapter, settings


def log_run_start(
    *,
    config_path: Path,
    operation: str,
    source_root: Path,
    recurse: bool,
    workers: int | None,
    atomic_writes: bool,
    log_file: Path | None,
) -> None:
    state.log.info(
        "Run started. version=%s, config=%s, operation=%s, source=%s, recurse=%s, workers=%s, "
        "atomic_writes=%s, log_file=%s",
        APP_VERSION,
        config_path,
        operation,
        source_root,
        recurse,
        workers or "auto",
        atomic_writes,
        log_file,
    )


def log_run_summary(stats: RunStats, cancelled: bool = False) -> None:
    """Log the final counters; a cancelled run is reported as a warning instead of "Run completed."."""
    if cancelled:
        state.log.warning(
            "Operation cancelled. %s files were processed before the cancellation took effect.",
            stats.processed,
        )
    else:
        state.log.info("Run completed.")
    state.log.info(
        "Summary: images found=%s, processed=%s, success=%s, skipped=%s, errors=%s",
        stats.images_found,
        stats.processed,
        stats.successes,
        stats.skipped,
        stats.errors,
    )
    failed_files = stats.processed - stats.successes
    if failed_files:
        state.log.error("%s files failed.", failed_files)
    if stats.failed_items:
        state.log.error("Failed items:")
        for path, reason in stats.failed_items:
            state.log.error(" - %s: %s", path, reason)
