"""Service layer for the environment registry.

Environments are a fixed set of deployment stages (DEV, QA, UAT, PROD); each
name exists at most once among live rows.
"""

import logging

from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import ConflictError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import Cluster, Environment, EnvironmentName
from cluster_registry.schemas.schemas import EnvironmentCreate
from cluster_registry.services.common import require_live, soft_delete, validate_input

logger = logging.getLogger(__name__)


class EnvironmentService:
    """Service for managing environments."""

    @staticmethod
    def create_environment(db: Session, data: EnvironmentCreate | dict) -> Environment:
        """Create an environment.

        Args:
            db: Database session
            data: Environment name, one of DEV, QA, UAT, PROD

        Returns:
            Created Environment object

        Raises:
            ValidationError: If the name is not a known stage
            ConflictError: If a live environment with that name exists
        """
        data = validate_input(EnvironmentCreate, data)
        with unit_of_work(db):
            if EnvironmentService.get_environment_by_name(db, data.name) is not None:
                logger.warning(f"Environment already exists: name={data.name.value}")
                raise ConflictError(f"Environment {data.name.value} already exists")
            environment = Environment(name=data.name.value)
            db.add(environment)
        db.refresh(environment)
        logger.info(f"Environment created: id={environment.id}, name={environment.name}")
        return environment

    @staticmethod
    def get_environment(db: Session, environment_id: int) -> Environment:
        return require_live(db, Environment, environment_id)

    @staticmethod
    def get_environment_by_name(db: Session, name: EnvironmentName | str) -> Environment | None:
        return db.query(Environment).filter(
            Environment.name == EnvironmentName(name).value,
            Environment.deleted_at.is_(None),
        ).first()

    @staticmethod
    def list_environments(db: Session) -> list[Environment]:
        return db.query(Environment).filter(Environment.deleted_at.is_(None)).order_by(Environment.id).all()

    @staticmethod
    def ensure_default_environments(db: Session) -> list[Environment]:
        """Create any of DEV, QA, UAT and PROD that do not exist yet.

        Safe to call repeatedly.
        """
        with unit_of_work(db):
            for name in EnvironmentName:
                if EnvironmentService.get_environment_by_name(db, name) is None:
                    db.add(Environment(name=name.value))
                    logger.info(f"Seeding environment: name={name.value}")
        return EnvironmentService.list_environments(db)

    @staticmethod
    def delete_environment(db: Session, environment_id: int) -> Environment:
        """Soft-delete an environment no live cluster is classified under.

        Raises:
            NotFoundError: If the environment is absent or already deleted
            ConflictError: If a live cluster references it
        """
        with unit_of_work(db):
            environment = require_live(db, Environment, environment_id, lock=True)
            in_use = db.query(Cluster).filter(
                Cluster.environment_id == environment_id,
                Cluster.deleted_at.is_(None),
            ).count()
            if in_use:
                logger.warning(f"Refusing to delete environment {environment_id}: {in_use} live cluster(s)")
                raise ConflictError(f"Environment {environment_id} is referenced by {in_use} live cluster(s)")
            soft_delete(environment)
        logger.info(f"Environment deleted: id={environment_id}")
        return environment
