"""Error taxonomy for registry writes.

Every failed service operation raises exactly one of these and leaves the
database unchanged:

- ValidationError: constraint, enum or range violation on write
- NotFoundError: target id absent or soft-deleted
- ConflictError: uniqueness violation, or delete blocked by a live reference
- IntegrityError: write referencing a nonexistent or soft-deleted foreign row

ConflictError is retryable once the conflicting state is resolved; the others
are not retryable without changing the input.
"""

from sqlalchemy import exc as sa_exc


class ErrorCode:
    """Stable error codes carried by RegistryError."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTEGRITY_ERROR = "INTEGRITY_ERROR"


class RegistryError(Exception):
    """Base class for registry errors."""
    code = "REGISTRY_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(RegistryError):
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(RegistryError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(RegistryError):
    code = ErrorCode.CONFLICT


class IntegrityError(RegistryError):
    code = ErrorCode.INTEGRITY_ERROR


def translate_database_error(error: sa_exc.IntegrityError) -> RegistryError:
    """Map a database constraint failure onto the registry taxonomy.

    SQLite and PostgreSQL word these differently, so the match is on the
    lowercased driver message.
    """
    detail = str(error.orig).lower()
    if "unique" in detail or "duplicate key" in detail:
        return ConflictError(f"Uniqueness violation: {error.orig}")
    if "check constraint" in detail or "violates check" in detail:
        return ValidationError(f"Check constraint violation: {error.orig}")
    if "not null" in detail or "not-null" in detail:
        return ValidationError(f"Missing required value: {error.orig}")
    return IntegrityError(f"Referential integrity violation: {error.orig}")
