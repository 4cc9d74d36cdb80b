"""structlog setup for service-level events.

Events are rendered by structlog and handed to the stdlib logger of the same
name, so the colorlog console handler and the optional file handler installed
by ``setup_logging`` receive them like any other record.
"""

import logging

import structlog


def configure_logging(level: int = logging.INFO, json_output: bool = True) -> None:
    """Configure structlog key/value events on top of stdlib logging.

    Values bound with ``structlog.contextvars`` (scan id, provider) are merged
    into every event emitted inside the bound block.
    """
    renderer = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
