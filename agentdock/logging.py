import logging
import sys
from contextlib import contextmanager

import structlog

QUIET_LOGGERS = ("httpx", "claude_agent_sdk", "aiosqlite")

# job_id / session_id bound by a worker ride along on every line it emits
shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
]


def _timestamper(json: bool):
    return structlog.processors.TimeStamper(fmt="iso" if json else "%H:%M:%S", utc=json)


def _renderer(json: bool):
    if json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(level: str = "INFO", json: bool = False):
    processors = [*shared_processors, _timestamper(json)]
    if json:
        processors.append(structlog.processors.dict_tracebacks)
    structlog.configure(
        processors=[*processors, _renderer(json)],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None):
    return structlog.get_logger(name or "agentdock")


@contextmanager
def job_context(job_id: str, session_id: str):
    with structlog.contextvars.bound_contextvars(job_id=job_id, session_id=session_id):
        yield


def uvicorn_log_config(level: str = "INFO", json: bool = False) -> dict:
    """dictConfig for uvicorn that renders its stdlib records like our own."""
    formatter = {
        "()": structlog.stdlib.ProcessorFormatter,
        "processor": _renderer(json),
        "foreign_pre_chain": [*shared_processors, _timestamper(json)],
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter, "access": formatter},
        "handlers": {
            "default": {"formatter": "default", "class": "logging.StreamHandler", "stream": "ext://sys.stderr"},
            "access": {"formatter": "access", "class": "logging.StreamHandler", "stream": "ext://sys.stderr"},
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.error": {"level": level},
            "uvicorn.access": {"handlers": ["access"], "level": "WARNING", "propagate": False},
        },
    }
