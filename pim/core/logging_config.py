import logging
from typing import Optional

import structlog
from pim.core.config import settings


def configure_logging(level: Optional[int] = None):
    """Configure structured logging for the category store.

    Callers may bind request-scoped context (actor, request id) with
    ``structlog.contextvars.bind_contextvars``; it is merged into every event.
    """
    if level is None:
        level = logging.DEBUG if settings.DEBUG else logging.INFO

    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=level)
    # Ranged nested-set updates are noisy; only echo SQL when debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)
