from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from tpm2_object_loader import configure_logging


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    logger = logging.getLogger("tpm2_object_loader")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_configure_logging_creates_rotating_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "tpm2-object-loader.log"
    logger = configure_logging(
        log_file=log_file,
        level="INFO",
        max_bytes=1024,
        backup_count=2,
    )
    logging.getLogger("tpm2_object_loader.resolver").info("resolver test message")

    for handler in logger.handlers:
        handler.flush()

    assert log_file.exists()
    assert "resolver test message" in log_file.read_text(encoding="utf-8")


def test_configure_logging_is_idempotent_per_file(tmp_path: Path) -> None:
    log_file = tmp_path / "loader.log"
    configure_logging(log_file=log_file, level="INFO")
    logger = configure_logging(log_file=log_file, level="DEBUG")

    handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(handlers) == 1
    assert handlers[0].level == logging.DEBUG


def test_configure_logging_reads_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    log_file = tmp_path / "env.log"
    monkeypatch.setenv("TPM2_OBJECT_LOADER_LOG_FILE", str(log_file))
    monkeypatch.setenv("TPM2_OBJECT_LOADER_LOG_LEVEL", "error")

    logger = configure_logging()

    assert logger.level == logging.ERROR
    assert log_file.exists()


@pytest.mark.parametrize(
    "kwargs",
    [{"level": "LOUD"}, {"max_bytes": -1}, {"backup_count": -5}],
)
def test_configure_logging_rejects_bad_values(tmp_path: Path, kwargs: dict) -> None:
    with pytest.raises(ValueError):
        configure_logging(log_file=tmp_path / "bad.log", **kwargs)
