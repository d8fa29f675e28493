#!/usr/bin/env python3
import argparse
import math
import sys
from pathlib import Path
from typing import Any


def parse_positive_float(value: str) -> float:
    """Parse a strictly positive, finite float for argparse."""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Expected a number (e.g., 0.5), got {value!r}."
        )
    if not math.isfinite(number) or number <= 0:
        raise argparse.ArgumentTypeError(
            "Scale factor must be a positive number."
        )
    return number


def parse_positive_int(value: str) -> int:
    """Parse a strictly positive integer for argparse."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Expected a whole number, got {value!r}."
        )
    if number <= 0:
        raise argparse.ArgumentTypeError(
            "Value must be a positive integer."
        )
    return number


def parse_non_negative_float(value: str) -> float:
    """Parse a float >= 0 for argparse (timeouts)."""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Expected a number of seconds, got {value!r}."
        )
    if not math.isfinite(number) or number < 0:
        raise argparse.ArgumentTypeError(
            "Timeout must be zero or a positive number of seconds."
        )
    return number

from imgbatch_core import state
from imgbatch_core.cancellation import (
    CancellationSignal,
    interrupt_handler,
    watch_stream_for_escape,
)
from imgbatch_core.config import (
    apply_cli_overrides,
    build_job,
    build_output_settings,
    build_pool_settings,
    ConfigError,
    default_config_path,
    generate_default_config,
    load_config_from_path,
    validate_config_types,
)
from imgbatch_core.constants import DEFAULT_CONFIG_NAME, VALID_DEFAULT_FORMATS
from imgbatch_core.discovery import DiscoveryError
from imgbatch_core.logging_utils import log_run_start, log_run_summary, setup_logging
from imgbatch_core.operations import OperationKind
from imgbatch_core.pipeline import JobState, run_job


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and parse ``argv`` (defaults to sys.argv)."""
    parser = argparse.ArgumentParser(
        description=(
            "Apply one operation to every image (.jpg, .jpeg, .png, .bmp, .gif) in a directory, "
            "using a pool of worker threads.\n\n"
            "- Scale: resize by a factor and overwrite in place.\n"
            "- Negate: invert red/green/blue values and overwrite in place.\n"
            "- Remove: delete the files.\n"
            "- Copy: copy the files into a target directory.\n\n"
            "Press Ctrl+C to cancel: files already started are finished, nothing new is started."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "source_dir",
        nargs="?",
        help="Directory containing the images to process.",
    )

    parser.add_argument(
        "--recurse",
        "-r",
        action="store_true",
        help="Also process images in subdirectories.",
    )

    ops = parser.add_mutually_exclusive_group()
    ops.add_argument(
        "--scale",
        metavar="FACTOR",
        type=parse_positive_float,
        help="Resize images by FACTOR (e.g., 0.5 halves width and height).",
    )
    ops.add_argument(
        "--negate",
        action="store_true",
        help="Invert the colors of each image.",
    )
    ops.add_argument(
        "--remove",
        action="store_true",
        help="Delete each image.",
    )
    ops.add_argument(
        "--copy",
        metavar="TARGET_DIR",
        help="Copy each image into TARGET_DIR (created if missing), overwriting existing files.",
    )

    parser.add_argument(
        "--workers",
        type=parse_positive_int,
        default=None,
        help="Number of worker threads (default: number of CPUs). Overrides config pool.workers.",
    )

    parser.add_argument(
        "--queue-size",
        type=parse_positive_int,
        default=None,
        help="Maximum number of files waiting for a worker. Overrides config pool.queue_size.",
    )

    parser.add_argument(
        "--shutdown-timeout",
        metavar="SECONDS",
        type=parse_non_negative_float,
        default=None,
        help="Seconds to wait for queued and running files when the run ends. Overrides config.",
    )

    parser.add_argument(
        "--default-format",
        choices=VALID_DEFAULT_FORMATS,
        default=None,
        help="Output format for --scale/--negate when a file's extension is not recognized.",
    )

    parser.add_argument(
        "--atomic-writes",
        action="store_true",
        help="Write scaled/negated images to a temp file and rename it over the original.",
    )

    parser.add_argument(
        "--cancel-on-escape",
        action="store_true",
        help="Also cancel when the Escape key is read from standard input.",
    )

    parser.add_argument(
        "--config",
        help=(
            f"Path to TOML config file (default: {DEFAULT_CONFIG_NAME} next to script, if present)."
        ),
    )

    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate a default config file and exit. Does not process images.",
    )

    parser.add_argument(
        "--silent",
        "-s",
        action="store_true",
        help="Suppress CLI output (file logging continues).",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging to CLI (overrides logging.cli_level).",
    )

    return parser.parse_args(argv)


def selected_operation(args: argparse.Namespace) -> tuple[OperationKind, float | None, str | None]:
    """
    Return the operation kind plus its scale factor / target directory.

    Raises:
        ConfigError: when no operation flag was given.
    """
    if args.scale is not None:
        return OperationKind.SCALE, args.scale, None
    if args.negate:
        return OperationKind.NEGATE, None, None
    if args.remove:
        return OperationKind.REMOVE, None, None
    if args.copy is not None:
        return OperationKind.COPY, None, args.copy
    raise ConfigError(
        "Exactly one operation flag (--scale, --negate, --remove, --copy) must be specified."
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    explicit_config = bool(args.config)
    config_path = Path(args.config).expanduser() if explicit_config else default_config_path()

    run_started = False
    cancelled = False
    exit_code = 0
    logging_settings: dict[str, Any] = {}

    try:
        _, logging_settings = setup_logging({"logging": {"file_enabled": False}}, args)

        if args.generate_config:
            generate_default_config(config_path)
            raise SystemExit(0)

        if not args.source_dir:
            state.log.critical("A source directory is required.")
            state.stats.record_error("arguments", "missing source directory")
            raise SystemExit(1)

        try:
            kind, scale_factor, target_dir = selected_operation(args)
            cfg = load_config_from_path(config_path, required=explicit_config)
            cfg = apply_cli_overrides(args, cfg)
            validate_config_types(cfg)
        except ConfigError as exc:
            state.log.critical(str(exc))
            state.stats.record_error("configuration", str(exc))
            raise SystemExit(1)

        _, logging_settings = setup_logging(cfg, args)

        try:
            job = build_job(
                args.source_dir,
                recurse=args.recurse,
                operation=kind,
                scale_factor=scale_factor,
                target_dir=target_dir,
            )
        except ConfigError as exc:
            state.log.critical(str(exc))
            state.stats.record_error("configuration", str(exc))
            raise SystemExit(1)

        output = build_output_settings(cfg)
        pool_settings = build_pool_settings(cfg)
        operation = job.build_operation(output)

        log_run_start(
            config_path=config_path,
            operation=operation.describe(),
            source_root=job.source_root,
            recurse=job.recurse,
            workers=pool_settings.workers,
            atomic_writes=output.atomic_writes,
            log_file=logging_settings["file_path"],
        )
        run_started = True

        cancel = CancellationSignal()
        with interrupt_handler(cancel):
            if args.cancel_on_escape:
                watch_stream_for_escape(cancel, sys.stdin)
            try:
                result = run_job(
                    job,
                    operation,
                    cancel,
                    workers=pool_settings.workers,
                    queue_size=pool_settings.queue_size,
                    shutdown_timeout=pool_settings.shutdown_timeout,
                )
            except DiscoveryError as exc:
                state.log.critical("Discovery failed: %s", exc)
                state.stats.record_error("discovery", str(exc))
                raise SystemExit(1)

        cancelled = result.state is JobState.CANCELLED
        if result.drained is False:
            state.log.warning(
                "Some files were still running after %ss and were abandoned.",
                pool_settings.shutdown_timeout,
            )

    except SystemExit as exc:
        exit_code = exc.code if isinstance(exc.code, int) else 1
    except Exception:
        state.log.exception("Unhandled exception during run.")
        state.stats.record_error("run", "Unhandled exception")
        exit_code = 1
    finally:
        if run_started:
            log_run_summary(state.stats, cancelled=cancelled)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
