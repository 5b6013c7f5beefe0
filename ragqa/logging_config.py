"""Structured logging configuration using structlog."""

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for the CLI (console) or the API (JSON lines).

    Args:
        log_level: Python log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Render one JSON object per line instead of coloured text.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_run(run_id: str, tenant_id: str):
    """Bind run identity into contextvars for every log line of a run.

    Usage::

        with bind_run(run.id, run.tenant_id):
            ...
    """
    return structlog.contextvars.bound_contextvars(run_id=run_id, tenant_id=tenant_id)
