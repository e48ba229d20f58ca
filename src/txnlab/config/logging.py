"""structlog configuration for txnlab.

Two output modes, both on stderr:
- Human (default): console renderer, colored on a TTY
- JSON (--log-json): one JSON object per line

Services log through ``structlog.get_logger(__name__)``; stores use
stdlib ``logging``. Both end up in the same handler and format. Events
emitted from a harness worker carry a ``thread`` field (``actor_0``,
``actor_1``, ...) so interleaved retries and deadlocks can be told apart.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

import structlog

# Loggers that stay at WARNING even with --verbose.
QUIET_LOGGERS = ("sqlalchemy", "networkx")


def add_thread_name(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag events emitted off the main thread with the thread's name."""
    thread = threading.current_thread()
    if thread is not threading.main_thread():
        event_dict.setdefault("thread", thread.name)
    return event_dict


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
) -> None:
    """Route structlog and stdlib records through one stderr handler.

    Args:
        verbose: DEBUG for ``txnlab`` loggers (retries, lock waits, commits).
            Otherwise only warnings such as exhausted retries are shown.
        log_json: Use the JSON renderer instead of the console renderer.

    Safe to call repeatedly; each call replaces the previous handler.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_thread_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger("txnlab").setLevel(logging.DEBUG if verbose else logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
