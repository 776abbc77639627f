"""Registry bootstrap.

Configures logging, creates the schema on the configured database and seeds
the standard environments. Provisioning workflows call init_registry() once at
startup and then use the services with sessions from SessionLocal/get_db.
"""

import logging

from sqlalchemy.engine import Engine

from cluster_registry.config import settings
from cluster_registry.core.logging import setup_logging
from cluster_registry.db.base import Base, SessionLocal, engine
from cluster_registry.services.environment_service import EnvironmentService

# Register models with Base.metadata
import cluster_registry.models.models  # noqa: F401

logger = logging.getLogger(__name__)


def init_registry(bind: Engine = engine, seed_environments: bool | None = None) -> None:
    """Create all tables and optionally seed DEV/QA/UAT/PROD."""
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables initialized: {bind.url.render_as_string(hide_password=True)}")

    if seed_environments is None:
        seed_environments = settings.SEED_ENVIRONMENTS
    if not seed_environments:
        return

    db = SessionLocal(bind=bind)
    try:
        environments = EnvironmentService.ensure_default_environments(db)
        logger.info(f"Environments available: {', '.join(env.name for env in environments)}")
    finally:
        db.close()


def main():
    setup_logging()
    init_registry()


if __name__ == "__main__":
    main()
