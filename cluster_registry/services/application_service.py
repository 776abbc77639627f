"""Service layer for ArgoCD application bindings.

An application belongs to exactly one live cluster and its (name, namespace)
pair is unique among the cluster's live applications. The sync policy is kept
as opaque text; callers own its format.
"""

import logging

from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import ConflictError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import ApplicationTag, ArgoCDApplication, Cluster, utcnow
from cluster_registry.schemas.schemas import ArgoCDApplicationCreate, ArgoCDApplicationUpdate
from cluster_registry.services.common import (
    merge_update,
    require_live,
    require_reference,
    soft_delete,
    validate_input,
)

logger = logging.getLogger(__name__)


def _ensure_unique(db: Session, cluster_id: int, name: str, namespace: str, exclude_id: int | None = None) -> None:
    query = db.query(ArgoCDApplication).filter(
        ArgoCDApplication.cluster_id == cluster_id,
        ArgoCDApplication.name == name,
        ArgoCDApplication.namespace == namespace,
        ArgoCDApplication.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(ArgoCDApplication.id != exclude_id)
    if query.first() is not None:
        logger.warning(f"Application already exists: cluster_id={cluster_id}, name='{name}', namespace='{namespace}'")
        raise ConflictError(
            f"Application '{name}' already exists in namespace '{namespace}' of cluster {cluster_id}"
        )


class ApplicationService:
    """Service for managing ArgoCD applications."""

    @staticmethod
    def create_application(db: Session, data: ArgoCDApplicationCreate | dict) -> ArgoCDApplication:
        """Bind an application to a cluster.

        Args:
            db: Database session
            data: Application fields including the owning cluster_id

        Returns:
            Created ArgoCDApplication object

        Raises:
            ValidationError: If a required field is missing or empty
            IntegrityError: If the cluster is absent or soft-deleted
            ConflictError: If the cluster already has a live application with
                the same name and namespace
        """
        data = validate_input(ArgoCDApplicationCreate, data)
        with unit_of_work(db):
            # Locking the cluster serializes concurrent creates for it
            require_reference(db, Cluster, data.cluster_id, "cluster_id")
            _ensure_unique(db, data.cluster_id, data.name, data.namespace)
            application = ArgoCDApplication(**data.model_dump())
            db.add(application)
        db.refresh(application)
        logger.info(
            f"Application created: id={application.id}, name='{application.name}', "
            f"namespace='{application.namespace}', cluster_id={application.cluster_id}"
        )
        return application

    @staticmethod
    def get_application(db: Session, application_id: int) -> ArgoCDApplication:
        return require_live(db, ArgoCDApplication, application_id)

    @staticmethod
    def list_applications(db: Session, cluster_id: int, skip: int = 0, limit: int = 100) -> list[ArgoCDApplication]:
        """List the live applications of a cluster in creation order."""
        return (
            db.query(ArgoCDApplication)
            .filter(ArgoCDApplication.cluster_id == cluster_id, ArgoCDApplication.deleted_at.is_(None))
            .order_by(ArgoCDApplication.id)
            .offset(skip).limit(limit).all()
        )

    @staticmethod
    def update_application(db: Session, application_id: int, data: ArgoCDApplicationUpdate | dict) -> ArgoCDApplication:
        """Update an application; a rename is checked against the cluster's other applications."""
        with unit_of_work(db):
            application = require_live(db, ArgoCDApplication, application_id, lock=True)
            merged = merge_update(application, ArgoCDApplicationCreate, ArgoCDApplicationUpdate, data)
            require_reference(db, Cluster, merged.cluster_id, "cluster_id")
            _ensure_unique(db, merged.cluster_id, merged.name, merged.namespace, exclude_id=application_id)
            for name, value in merged.model_dump().items():
                setattr(application, name, value)
        db.refresh(application)
        logger.info(f"Application updated: id={application.id}")
        return application

    @staticmethod
    def delete_application(db: Session, application_id: int) -> ArgoCDApplication:
        """Soft-delete an application and its tag associations."""
        now = utcnow()
        with unit_of_work(db):
            application = require_live(db, ArgoCDApplication, application_id, lock=True)
            db.query(ApplicationTag).filter(
                ApplicationTag.application_id == application_id,
                ApplicationTag.deleted_at.is_(None),
            ).update({ApplicationTag.deleted_at: now}, synchronize_session=False)
            soft_delete(application, now)
        logger.info(f"Application deleted: id={application_id}")
        return application
