"""
Logging for poll and checkout runs.

Events go through structlog into stdlib logging. While a run is in
progress its job (and build number, for checkouts) is held in structlog
context variables, so module loggers and the run log share that context.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from hgsync.models.config import LoggingConfig

RUN_LOGGER = "hgsync.run"


def configure_logging(config: LoggingConfig) -> None:
    """
    Route structlog through stdlib logging as ``config`` asks.

    JSON lines suit build agents that collect their logs; the console
    renderer is for running the sync script by hand. When ``log_file`` is
    set, every event is also appended there.

    Example:
        >>> configure_logging(LoggingConfig(log_level="DEBUG", json_logs=False))
    """
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    renderer: Any
    if config.json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def run_context(job: str, **context: Any) -> Iterator[structlog.stdlib.BoundLogger]:
    """
    Bind a run's job and ``context`` (e.g. build_number) for the duration of
    the block and yield the run log.

    The run log stands in for the build console: user-visible messages of a
    poll or checkout are emitted through it.
    """
    with structlog.contextvars.bound_contextvars(job=job, **context):
        yield structlog.stdlib.get_logger(RUN_LOGGER)
