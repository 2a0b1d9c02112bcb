import sentry_sdk
import structlog
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from pim.core.config import settings

logger = structlog.get_logger()


def init_monitoring() -> bool:
    """Initialize Sentry error tracking (production only)."""
    if settings.ENVIRONMENT != "production" or not settings.SENTRY_DSN:
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[SqlalchemyIntegration()],
        )
    except Exception as e:
        # Store keeps working without Sentry monitoring
        logger.warning("sentry_init_failed", error=str(e))
        return False

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)
    return True
