import structlog

from pim.core.config import settings
from pim.core.logging_config import configure_logging
from pim.core.monitoring import init_monitoring
from pim.db.init_db import init_db
from pim.db.session import engine

logger = structlog.get_logger()


def startup(bind=None) -> None:
    """Prepare the category store: logging, monitoring and schema."""
    # --------------------------------------------------
    # CONFIGURE LOGGING (FIRST)
    # --------------------------------------------------
    configure_logging()

    # --------------------------------------------------
    # INITIALIZE SENTRY (ONLY IN PRODUCTION)
    # --------------------------------------------------
    init_monitoring()

    # --------------------------------------------------
    # CREATE TABLES
    # --------------------------------------------------
    init_db(bind or engine)
    logger.info("category_store_ready", project=settings.PROJECT_NAME, environment=settings.ENVIRONMENT)
