"""structlog on top of stdlib logging, with JSON records in per-run and per-target files."""

from __future__ import annotations

import logging
import logging.config
import os
import re
from pathlib import Path
from typing import Any, Iterable

import structlog
from pythonjsonlogger.jsonlogger import JsonFormatter

LOGGER_NAME = "member_scraper"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get("MEMBER_SCRAPER_HOME")
    root = Path(env_root).expanduser() if env_root else Path.cwd()
    return root / "logs"


def _slug(name: str) -> str:
    return re.sub(r"[^0-9A-Za-z_-]+", "_", name.strip()).strip("_") or "target"


def _file_handler(path: Path, level: str) -> dict[str, Any]:
    path.touch(exist_ok=True)
    return {
        "class": "logging.FileHandler",
        "level": level,
        "filename": str(path),
        "encoding": "utf-8",
        "formatter": "json",
    }


def _logging_dict(log_dir: Path, verbose: bool) -> dict[str, Any]:
    handlers = {
        # console only carries warnings unless verbose
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if verbose else "WARNING",
            "formatter": "json",
        },
        "scraper_file": _file_handler(log_dir / "scraper.log", "INFO"),
        "error_file": _file_handler(log_dir / "error.log", "ERROR"),
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JsonFormatter, "fmt": JSON_FORMAT}},
        "handlers": handlers,
        "loggers": {
            LOGGER_NAME: {
                "handlers": list(handlers),
                "level": "DEBUG" if verbose else "INFO",
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Install handlers once per process and return the application logger."""

    global _LOGGING_INITIALISED
    if not _LOGGING_INITIALISED:
        log_dir = log_dir or _default_log_dir()
        (log_dir / "targets").mkdir(parents=True, exist_ok=True)
        logging.config.dictConfig(_logging_dict(log_dir, verbose))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", key="ts"),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(LOGGER_NAME)


def target_log_path(target: str, log_dir: Path | None = None) -> Path:
    return (log_dir or _default_log_dir()) / "targets" / f"{_slug(target)}.log"


def target_logger(target: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger bound to ``target`` that also writes ``logs/targets/<target>.log``."""

    configure_logging(verbose)
    log_path = target_log_path(target)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    name = f"{LOGGER_NAME}.target.{_slug(target)}"
    std_logger = logging.getLogger(name)
    attached = {getattr(handler, "baseFilename", None) for handler in std_logger.handlers}
    if str(log_path.resolve()) not in attached:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
        std_logger.addHandler(handler)
    return structlog.get_logger(name).bind(target=target)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_target_logs() -> Iterable[Path]:
    targets_dir = _default_log_dir() / "targets"
    if not targets_dir.exists():
        return []
    return sorted(targets_dir.glob("*.log"))


__all__ = [
    "LOGGER_NAME",
    "available_target_logs",
    "configure_logging",
    "tail_log",
    "target_log_path",
    "target_logger",
]
