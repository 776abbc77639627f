"""Service layer for tags and their cluster/application associations.

Tags are shared key/value labels. Attaching is idempotent and detaching an
absent association is a no-op. Each association records its attach position
so tags list back in the order they were attached.
"""

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from cluster_registry.core.exceptions import ConflictError
from cluster_registry.db.base import unit_of_work
from cluster_registry.models.models import ApplicationTag, ArgoCDApplication, Cluster, ClusterTag, Tag
from cluster_registry.schemas.schemas import TagCreate
from cluster_registry.services.common import require_live, require_reference, soft_delete, validate_input

logger = logging.getLogger(__name__)


def _attach(db: Session, link_model: Any, owner_model: Any, owner_field: str, owner_id: int, tag_id: int) -> Any:
    owner_column = getattr(link_model, owner_field)
    with unit_of_work(db):
        # Locking the owner serializes position assignment for it
        require_reference(db, owner_model, owner_id, owner_field)
        require_reference(db, Tag, tag_id, "tag_id")

        link = db.query(link_model).filter(owner_column == owner_id, link_model.tag_id == tag_id).first()
        if link is not None and link.deleted_at is None:
            logger.debug(f"Tag {tag_id} already attached: {owner_field}={owner_id}")
            return link

        position = db.query(func.coalesce(func.max(link_model.position), 0)).filter(
            owner_column == owner_id
        ).scalar() + 1
        if link is None:
            link = link_model(tag_id=tag_id, position=position, **{owner_field: owner_id})
            db.add(link)
        else:
            link.deleted_at = None
            link.position = position
    logger.info(f"Tag attached: {owner_field}={owner_id}, tag_id={tag_id}")
    return link


def _detach(db: Session, link_model: Any, owner_field: str, owner_id: int, tag_id: int) -> bool:
    owner_column = getattr(link_model, owner_field)
    with unit_of_work(db):
        removed = db.query(link_model).filter(
            owner_column == owner_id,
            link_model.tag_id == tag_id,
        ).delete(synchronize_session=False)
    if removed:
        logger.info(f"Tag detached: {owner_field}={owner_id}, tag_id={tag_id}")
    return bool(removed)


def _tags_for(db: Session, link_model: Any, owner_field: str, owner_id: int) -> Query:
    return (
        db.query(Tag)
        .join(link_model, link_model.tag_id == Tag.id)
        .filter(
            getattr(link_model, owner_field) == owner_id,
            link_model.deleted_at.is_(None),
            Tag.deleted_at.is_(None),
        )
        .order_by(link_model.position)
    )


class TagService:
    """Service for managing tags and tag associations."""

    @staticmethod
    def create_tag(db: Session, data: TagCreate | dict) -> Tag:
        """Create a tag.

        Raises:
            ValidationError: If the key is empty
            ConflictError: If a live tag with the same key and value exists
        """
        data = validate_input(TagCreate, data)
        with unit_of_work(db):
            existing = db.query(Tag).filter(
                Tag.key == data.key,
                Tag.value == data.value,
                Tag.deleted_at.is_(None),
            ).first()
            if existing is not None:
                logger.warning(f"Tag already exists: {data.key}={data.value}, id={existing.id}")
                raise ConflictError(f"Tag {data.key}={data.value} already exists")
            tag = Tag(key=data.key, value=data.value)
            db.add(tag)
        db.refresh(tag)
        logger.info(f"Tag created: id={tag.id}, {tag.key}={tag.value}")
        return tag

    @staticmethod
    def get_tag(db: Session, tag_id: int) -> Tag:
        return require_live(db, Tag, tag_id)

    @staticmethod
    def list_tags(db: Session, key: str | None = None, skip: int = 0, limit: int = 100) -> list[Tag]:
        query = db.query(Tag).filter(Tag.deleted_at.is_(None))
        if key:
            query = query.filter(Tag.key == key)
        return query.order_by(Tag.key, Tag.value).offset(skip).limit(limit).all()

    @staticmethod
    def delete_tag(db: Session, tag_id: int) -> Tag:
        """Soft-delete a tag.

        Existing associations are kept for history; the tag no longer appears
        in tag listings.
        """
        with unit_of_work(db):
            tag = require_live(db, Tag, tag_id, lock=True)
            soft_delete(tag)
        logger.info(f"Tag deleted: id={tag_id}")
        return tag

    # Cluster tags

    @staticmethod
    def attach_cluster_tag(db: Session, cluster_id: int, tag_id: int) -> ClusterTag:
        """Attach a tag to a cluster; attaching it again changes nothing.

        Raises:
            IntegrityError: If the cluster or tag is absent or soft-deleted
        """
        return _attach(db, ClusterTag, Cluster, "cluster_id", cluster_id, tag_id)

    @staticmethod
    def detach_cluster_tag(db: Session, cluster_id: int, tag_id: int) -> bool:
        """Remove a cluster tag association. Returns False if there was none."""
        return _detach(db, ClusterTag, "cluster_id", cluster_id, tag_id)

    @staticmethod
    def list_cluster_tags(db: Session, cluster_id: int) -> Query:
        """Tags attached to a cluster, in attach order.

        Returns an unexecuted query: rows are fetched when it is iterated, and
        every iteration runs it again.
        """
        return _tags_for(db, ClusterTag, "cluster_id", cluster_id)

    # Application tags

    @staticmethod
    def attach_application_tag(db: Session, application_id: int, tag_id: int) -> ApplicationTag:
        """Attach a tag to an application; attaching it again changes nothing.

        Raises:
            IntegrityError: If the application or tag is absent or soft-deleted
        """
        return _attach(db, ApplicationTag, ArgoCDApplication, "application_id", application_id, tag_id)

    @staticmethod
    def detach_application_tag(db: Session, application_id: int, tag_id: int) -> bool:
        return _detach(db, ApplicationTag, "application_id", application_id, tag_id)

    @staticmethod
    def list_application_tags(db: Session, application_id: int) -> Query:
        """Tags attached to an application, in attach order (unexecuted query)."""
        return _tags_for(db, ApplicationTag, "application_id", application_id)
