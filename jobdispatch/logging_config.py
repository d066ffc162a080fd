"""Structured logging with structlog."""

import logging
import sys
from typing import Optional

import structlog

from . import config


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Route structlog through stdlib logging with a console or JSON renderer."""
    level = (level or config.LOG_LEVEL).upper()
    if json_output is None:
        json_output = config.LOG_FORMAT == "json"

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))
    logging.getLogger().setLevel(getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if json_output:
        formatter = structlog.stdlib.ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    else:
        formatter = structlog.stdlib.ProcessorFormatter(processor=structlog.dev.ConsoleRenderer(colors=False))

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)
