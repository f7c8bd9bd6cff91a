"""Structured logging configuration using loguru.

Two sinks are installed at bootstrap:

- a colorized console sink for operators watching the process;
- a rotating JSON-lines file sink where every record carries the keyword
  context it was logged with (bankClass, attempt, status code, ...).

A failing source is only observable through these logs and through the age
of its stored record, so logging is initialized before anything else and
refuses to start when the log directory is unusable.
"""

import json
import sys
from datetime import timezone
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import GlobalConfig, get_config
from dollar_rates.exceptions import LoggingInitializationError

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan> | "
    "<level>{message}</level>"
)

LOG_FILE_PATTERN = "dollar_rates_{time:YYYY-MM-DD}.json"

_INTERNAL_EXTRA = frozenset({"serialized", "module"})


def _record_to_json(record: dict[str, Any]) -> str:
    """Render a loguru record as one JSON line.

    The record's own timestamp is used (in UTC), so lines written late by an
    enqueued sink still sort by when the event happened.
    """
    line: dict[str, Any] = {
        "timestamp": record["time"].astimezone(timezone.utc).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["extra"].get("module", record["name"]),
        "function": record["function"],
        "line": record["line"],
    }

    error = record["exception"]
    if error is not None and error.type is not None:
        line["exception"] = {"type": error.type.__name__, "value": str(error.value)}

    context = {key: value for key, value in record["extra"].items() if key not in _INTERNAL_EXTRA}
    if context:
        line["context"] = context

    return json.dumps(line, default=str) + "\n"


def _attach_json(record: dict[str, Any]) -> bool:
    record["extra"]["serialized"] = _record_to_json(record)
    return True


def _prepare_log_dir(log_dir: Path) -> None:
    """Create ``log_dir`` and prove a file can be written into it.

    Raises:
        LoggingInitializationError: If the directory is missing and cannot be
            created, or is read-only.
    """
    probe_file = log_dir / ".write_check"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        probe_file.touch()
        probe_file.unlink()
    except PermissionError as exc:
        raise LoggingInitializationError(str(log_dir), f"Permission denied: {exc}") from exc
    except OSError as exc:
        raise LoggingInitializationError(str(log_dir), f"Unusable log directory: {exc}") from exc


def configure_logging(config: GlobalConfig | None = None) -> None:
    """Install the console and JSON file sinks.

    Call once during bootstrap, before the scheduler starts.

    Raises:
        LoggingInitializationError: If the log directory is unusable.
    """
    config = config or get_config()

    logger.remove()
    logger.configure(extra={"module": config.app_name})
    _prepare_log_dir(config.log_dir)

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=config.log_level,
        colorize=True,
        backtrace=config.debug,
        diagnose=config.debug,
    )
    logger.add(
        str(config.log_dir / LOG_FILE_PATTERN),
        format="{extra[serialized]}",
        level=config.log_level,
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="gz",
        filter=_attach_json,
    )

    logger.info(
        "Logging ready",
        environment=config.environment,
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        database=config.database_url.split(":", 1)[0],
    )


def get_logger(name: str) -> "logger":
    """Logger bound to the calling module.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("Cycle finished", succeeded=2, failed=1)
    """
    return logger.bind(module=name)
