"""Exceptions for soft delete operations."""

from typing import Any, Dict, List, Optional


class SoftDeleteError(Exception):
    """Base exception for soft delete operations."""

    retryable = False

    def __init__(self, message: str, entity_type: Optional[str] = None):
        self.entity_type = entity_type
        super().__init__(message)


class NotConfiguredError(SoftDeleteError):
    """Raised when an entity type has no registered cascade configuration."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"Soft delete not configured for entity type: {entity_type}",
            entity_type=entity_type,
        )


class RecordNotFoundError(SoftDeleteError):
    """Raised when a filter matches no record."""

    def __init__(
        self,
        entity_type: str,
        filter: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ):
        self.filter = filter
        super().__init__(
            message or f"Record not found for soft delete: {entity_type} {filter}",
            entity_type=entity_type,
        )


class NotDeletedError(RecordNotFoundError):
    """Raised when restoring a record that is not currently soft-deleted."""

    def __init__(self, entity_type: str, filter: Optional[Dict[str, Any]] = None):
        super().__init__(
            entity_type,
            filter,
            message=f"Soft-deleted record not found for restore: {entity_type} {filter}",
        )


class VersionConflictError(SoftDeleteError):
    """Raised when a concurrent writer changed the record between read and update."""

    retryable = True

    def __init__(self, entity_type: str, record_id: Any, attempts: int):
        self.record_id = record_id
        self.attempts = attempts
        super().__init__(
            f"Version conflict on {entity_type} {record_id} "
            f"after {attempts} attempt(s)",
            entity_type=entity_type,
        )


class CascadeCycleError(SoftDeleteError):
    """Raised when registering a cascade edge would close a cycle."""

    def __init__(self, path: List[str]):
        self.path = path
        super().__init__(
            f"Cascade configuration cycle: {' -> '.join(path)}",
            entity_type=path[0] if path else None,
        )


class CascadeDepthError(SoftDeleteError):
    """Raised when a cascade walk exceeds the configured maximum depth."""

    def __init__(self, entity_type: str, depth: int):
        self.depth = depth
        super().__init__(
            f"Cascade depth {depth} exceeded while processing {entity_type}",
            entity_type=entity_type,
        )


class RegistryFrozenError(SoftDeleteError):
    """Raised when mutating a registry after it has been frozen."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"Cascade registry is frozen; cannot register {entity_type}",
            entity_type=entity_type,
        )


def http_status_for(exc: BaseException) -> int:
    """
    Map an engine error to the HTTP status class callers should return.

    Args:
        exc: Exception raised by a lifecycle operation

    Returns:
        404 for not-found errors, 409 for version conflicts, 500 otherwise
    """
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, VersionConflictError):
        return 409
    return 500
