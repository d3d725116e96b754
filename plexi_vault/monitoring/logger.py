"""
Structured logging for the vault engine.

structlog event dicts rendered through stdlib logging: JSON lines by default,
console rendering for local work. Event names are UPPER_SNAKE
(``DEPOSIT_RECORDED``, ``HEDGE_ORDER_REJECTED``...); fields carry the context.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

# Keys whose values never reach a log line
_SECRET_KEYS = frozenset({"private_key", "secret", "api_secret", "password", "authorization"})

_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def _redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in event_dict.keys() & _SECRET_KEYS:
        event_dict[key] = "***"
    return event_dict


def _processors(log_format: str) -> List[Any]:
    chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        chain.append(structlog.processors.JSONRenderer())
    else:
        chain.append(structlog.dev.ConsoleRenderer())
    return chain


def setup_logging(log_level: str = "INFO", log_format: str = "json", log_file: Optional[str] = None) -> None:
    """
    Configure structured logging for the process.

    Safe to call more than once (the CLI calls it per command); handlers are replaced.

    Args:
        log_level: DEBUG/INFO/WARNING/ERROR/CRITICAL
        log_format: ``json`` or ``text``
        log_file: Optional path; adds a rotating file handler next to stdout
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=_LOG_FILE_BACKUPS))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    structlog.configure(
        processors=_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    get_logger(__name__).debug("LOGGING_CONFIGURED", level=log_level, format=log_format, log_file=log_file)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to ``name`` (pass ``__name__``)."""
    return structlog.get_logger(name)
