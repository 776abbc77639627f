"""Helpers shared by the registry services.

Lookups here only ever return live rows (deleted_at IS NULL). Reference
lookups lock the row with SELECT ... FOR UPDATE so a concurrent soft delete
cannot race past the reference being written; SQLite ignores the clause and
serializes writers on its own.
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from cluster_registry.core.exceptions import IntegrityError, NotFoundError, ValidationError
from cluster_registry.models.models import utcnow

ModelType = TypeVar("ModelType")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


def validate_input(schema_cls: type[SchemaType], data: Any) -> SchemaType:
    """Validate caller input against a schema, raising the registry ValidationError."""
    if isinstance(data, schema_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema_cls.model_validate(data)
    except PydanticValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'record'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(
            f"Invalid {schema_cls.__name__}: {messages}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


def merge_update(row: Any, create_cls: type[SchemaType], update_cls: type[BaseModel], data: Any) -> SchemaType:
    """Apply a partial update onto a row's current values and re-validate the result.

    Returns the full validated record; the row itself is not modified.
    """
    changes = validate_input(update_cls, data).model_dump(exclude_unset=True)
    current = {name: getattr(row, name) for name in create_cls.model_fields}
    current.update(changes)
    return validate_input(create_cls, current)


def get_live(db: Session, model: type[ModelType], entity_id: int, lock: bool = False) -> Optional[ModelType]:
    """Get a row by id, or None if it is absent or soft-deleted."""
    query = db.query(model).filter(model.id == entity_id, model.deleted_at.is_(None))
    if lock:
        query = query.with_for_update()
    return query.first()


def require_live(db: Session, model: type[ModelType], entity_id: int, lock: bool = False) -> ModelType:
    """Get a live row by id or raise NotFoundError."""
    row = get_live(db, model, entity_id, lock=lock)
    if row is None:
        raise NotFoundError(model.__name__, entity_id)
    return row


def require_reference(db: Session, model: type[ModelType], entity_id: int, field: str) -> ModelType:
    """Lock and return a live row that a write is about to reference.

    Raises:
        IntegrityError: If the referenced row is absent or soft-deleted
    """
    row = get_live(db, model, entity_id, lock=True)
    if row is None:
        raise IntegrityError(f"{field} references missing or deleted {model.__name__} {entity_id}")
    return row


def soft_delete(row: Any, when=None) -> None:
    row.deleted_at = when or utcnow()
