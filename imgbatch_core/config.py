from __future__ import annotations

import copy
import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for Python <3.11
    import tomli as tomllib  # type: ignore[no-redef]

from . import state
from .constants import (
    DEFAULT_CONFIG_NAME,
    DEFAULT_JPEG_QUALITY,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TOML_TEMPLATE,
    EXTENSION_TO_FORMAT,
    SECTION_KEY_MAP,
    VALID_DEFAULT_FORMATS,
)
from .operations import Operation, OperationKind, OutputSettings, build_operation


class ConfigError(Exception):
    """Raised when configuration files or job arguments are missing, invalid, or unsupported."""


@dataclass(frozen=True)
class Job:
    """A validated request to apply one operation to the images under ``source_root``."""

    source_root: Path
    recurse: bool
    operation: OperationKind
    scale_factor: float | None = None
    target_dir: Path | None = None

    def build_operation(self, output: OutputSettings | None = None) -> Operation:
        return build_operation(
            self.operation,
            scale_factor=self.scale_factor,
            target_dir=self.target_dir,
            output=output,
        )


@dataclass
class PoolSettings:
    """Resolved worker pool sizing."""

    workers: int | None
    queue_size: int | None
    shutdown_timeout: float


def _merge_section_keys(cfg: dict[str, Any]) -> dict[str, Any]:
    """Lift known section keys to the top level when missing."""
    normalized_sections = {
        name.lower(): value
        for name, value in cfg.items()
        if isinstance(value, dict)
    }
    for section, keys in SECTION_KEY_MAP.items():
        table = normalized_sections.get(section)
        if not isinstance(table, dict):
            continue
        for key in keys:
            if key in table and key not in cfg:
                cfg[key] = table[key]
    return cfg


def default_config_path() -> Path:
    """Return the default config path relative to the repository root."""
    package_root = Path(__file__).resolve().parent.parent
    return package_root / DEFAULT_CONFIG_NAME


def generate_default_config(config_path: Path) -> None:
    """Create a starter TOML config file with safe defaults."""
    if config_path.suffix.lower() != ".toml":
        state.log.critical(
            "Config generation supports only TOML files. "
            "Please use a .toml extension (e.g. imgbatch.toml)."
        )
        sys.exit(1)

    if config_path.exists():
        state.log.error("Config file already exists: %s", config_path)
        sys.exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        DEFAULT_TOML_TEMPLATE.strip() + "\n", encoding="utf-8")

    state.log.info("Config file generated at: %s", config_path)


def load_config_from_path(config_path: Path, required: bool = True) -> dict[str, Any]:
    """
    Load and parse an imgbatch TOML configuration file.

    When ``required`` is False a missing file yields an empty config so the
    built-in defaults apply.

    Raises:
        ConfigError: if the file is missing (and required), not a .toml file,
            or cannot be parsed.
    """
    if config_path.suffix.lower() != ".toml":
        raise ConfigError(
            "Unsupported config format: expected a .toml file "
            "(e.g. imgbatch.toml)."
        )

    if not config_path.exists():
        if not required:
            return {}
        raise ConfigError(
            f"Config file not found: {config_path}. Create one with "
            "--generate-config or omit --config to use defaults."
        )

    try:
        with config_path.open("rb") as f:
            cfg = tomllib.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read config {config_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Failed to parse TOML config {config_path}: {exc}"
        ) from exc

    return _merge_section_keys(cfg)


def validate_config_types(cfg: dict[str, Any]) -> None:
    """
    Validate the loaded configuration for expected types and ranges.

    Raises:
        ConfigError: listing every invalid value found.
    """
    errors: list[str] = []

    def expect_bool(container: dict[str, Any], key: str, context: str) -> None:
        if key in container and not isinstance(container[key], bool):
            errors.append(f"{context}.{key} must be a boolean.")

    def expect_positive_int(container: dict[str, Any], key: str, context: str) -> None:
        if key not in container:
            return
        value = container[key]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{context}.{key} must be an integer.")
        elif value <= 0:
            errors.append(f"{context}.{key} must be greater than zero.")

    def expect_string(container: dict[str, Any], key: str, context: str) -> None:
        if key in container and not isinstance(container[key], str):
            errors.append(f"{context}.{key} must be a string.")

    expect_positive_int(cfg, "workers", "config")
    expect_positive_int(cfg, "queue_size", "config")
    if "shutdown_timeout" in cfg:
        timeout = cfg["shutdown_timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            errors.append("config.shutdown_timeout must be a number.")
        elif timeout < 0:
            errors.append("config.shutdown_timeout must not be negative.")

    expect_string(cfg, "default_format", "config")
    default_format = cfg.get("default_format")
    if isinstance(default_format, str) and default_format.lower() not in EXTENSION_TO_FORMAT:
        errors.append(
            "config.default_format must be one of: " + ", ".join(VALID_DEFAULT_FORMATS) + "."
        )

    if "jpeg_quality" in cfg:
        quality = cfg["jpeg_quality"]
        if isinstance(quality, bool) or not isinstance(quality, int):
            errors.append("config.jpeg_quality must be an integer.")
        elif quality < 1 or quality > 95:
            errors.append("jpeg_quality must be between 1 and 95.")
    expect_bool(cfg, "atomic_writes", "config")

    logging_cfg = cfg.get("logging")
    if logging_cfg is not None:
        if not isinstance(logging_cfg, dict):
            errors.append("config.logging must be a table/object.")
        else:
            expect_string(logging_cfg, "file_path", "config.logging")
            expect_bool(logging_cfg, "file_enabled", "config.logging")
            expect_string(logging_cfg, "file_level", "config.logging")
            expect_string(logging_cfg, "cli_level", "config.logging")
            expect_bool(logging_cfg, "silent", "config.logging")

    if errors:
        raise ConfigError("Invalid configuration values: " + "; ".join(errors))


def apply_cli_overrides(args: Any, cfg: dict[str, Any]) -> dict[str, Any]:
    """Merge CLI overrides into a deep copy of the loaded config."""
    merged = copy.deepcopy(cfg)

    for key in ("workers", "queue_size", "shutdown_timeout", "default_format"):
        value = getattr(args, key, None)
        if value is not None:
            merged[key] = value
    if getattr(args, "atomic_writes", False):
        merged["atomic_writes"] = True

    return merged


def build_output_settings(cfg: dict[str, Any]) -> OutputSettings:
    """Resolve encoding options from a validated config."""
    raw_format = cfg.get("default_format")
    default_format = EXTENSION_TO_FORMAT[raw_format.lower()] if raw_format else DEFAULT_OUTPUT_FORMAT
    return OutputSettings(
        default_format=default_format,
        jpeg_quality=int(cfg.get("jpeg_quality", DEFAULT_JPEG_QUALITY)),
        atomic_writes=bool(cfg.get("atomic_writes", False)),
    )


def build_pool_settings(cfg: dict[str, Any]) -> PoolSettings:
    """Resolve worker pool sizing from a validated config."""
    return PoolSettings(
        workers=cfg.get("workers"),
        queue_size=cfg.get("queue_size"),
        shutdown_timeout=float(cfg.get("shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT)),
    )


def build_job(
    source_dir: str | Path,
    recurse: bool,
    operation: OperationKind,
    scale_factor: float | None = None,
    target_dir: str | Path | None = None,
) -> Job:
    """
    Validate job arguments and return an immutable Job.

    The copy target directory is created when missing. Nothing else on disk
    is touched.

    Raises:
        ConfigError: for a missing source directory, parameters that do not
            match the operation, a non-positive scale factor, or a target
            directory that cannot be created.
    """
    source_root = Path(source_dir).expanduser()
    if not source_root.is_dir():
        raise ConfigError(f"Source directory does not exist or is not a directory: {source_root}")

    if operation is OperationKind.SCALE:
        if scale_factor is None:
            raise ConfigError("The scale operation requires a scale factor.")
        if not math.isfinite(scale_factor) or scale_factor <= 0:
            raise ConfigError(f"Scale factor must be a positive number (got {scale_factor}).")
    elif scale_factor is not None:
        raise ConfigError(f"A scale factor is only valid with the scale operation, not {operation.value}.")

    resolved_target: Path | None = None
    if operation is OperationKind.COPY:
        if target_dir is None:
            raise ConfigError("The copy operation requires a target directory.")
        resolved_target = Path(target_dir).expanduser()
        if resolved_target.resolve() == source_root.resolve():
            raise ConfigError(f"Copy target must differ from the source directory: {resolved_target}")
        if resolved_target.exists() and not resolved_target.is_dir():
            raise ConfigError(f"Copy target exists and is not a directory: {resolved_target}")
        try:
            resolved_target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Cannot create target directory {resolved_target}: {exc}") from exc
    elif target_dir is not None:
        raise ConfigError(f"A target directory is only valid with the copy operation, not {operation.value}.")

    return Job(
        source_root=source_root,
        recurse=bool(recurse),
        operation=operation,
        scale_factor=scale_factor,
        target_dir=resolved_target,
    )
