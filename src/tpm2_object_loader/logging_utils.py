from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAMESPACE = "tpm2_object_loader"
DEFAULT_LOG_FILE = "logs/tpm2-object-loader.log"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_MAX_BYTES = 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3

_ENV_PREFIX = "TPM2_OBJECT_LOADER_"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{_ENV_PREFIX}{name}", default)


def _non_negative_int(value: str | int, name: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {value}") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be >= 0, got: {value}")
    return parsed


def _numeric_level(level: str | int) -> int:
    if not isinstance(level, str):
        return int(level)
    normalized = level.strip().upper()
    if normalized.isdigit():
        return int(normalized)
    numeric = logging.getLevelName(normalized)
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {level}")
    return numeric


def configure_logging(
    *,
    log_file: str | Path | None = None,
    level: str | int | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> logging.Logger:
    """
    Send the tpm2_object_loader logger namespace to a rotating log file.

    Calling this again for the same file only updates the level.

    Environment variable overrides:
    - TPM2_OBJECT_LOADER_LOG_FILE
    - TPM2_OBJECT_LOADER_LOG_LEVEL
    - TPM2_OBJECT_LOADER_LOG_MAX_BYTES
    - TPM2_OBJECT_LOADER_LOG_BACKUP_COUNT
    """

    target = Path(str(log_file or _env("LOG_FILE", DEFAULT_LOG_FILE)))
    numeric_level = _numeric_level(level or _env("LOG_LEVEL", DEFAULT_LOG_LEVEL))
    resolved_max_bytes = _non_negative_int(
        _env("LOG_MAX_BYTES", str(DEFAULT_LOG_MAX_BYTES)) if max_bytes is None else max_bytes,
        "max_bytes",
    )
    resolved_backup_count = _non_negative_int(
        _env("LOG_BACKUP_COUNT", str(DEFAULT_LOG_BACKUP_COUNT))
        if backup_count is None
        else backup_count,
        "backup_count",
    )

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(numeric_level)
    logger.propagate = False

    resolved_target = target.resolve()
    for existing in logger.handlers:
        if (
            isinstance(existing, RotatingFileHandler)
            and Path(existing.baseFilename).resolve() == resolved_target
        ):
            existing.setLevel(numeric_level)
            return logger

    target.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        target,
        maxBytes=resolved_max_bytes,
        backupCount=resolved_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)

    logger.debug(
        "Logging to %s (level=%s, max_bytes=%d, backup_count=%d)",
        target,
        logging.getLevelName(numeric_level),
        resolved_max_bytes,
        resolved_backup_count,
    )
    return logger
