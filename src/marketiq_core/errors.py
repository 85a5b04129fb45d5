"""Shared error types for marketiq_core."""

from enum import StrEnum


class FailureKind(StrEnum):
    """Classification of a failed dependency interaction."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STORAGE = "storage"
    VALIDATION = "validation"


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class PermanentError(RuntimeError):
    """Dependency failure that retrying with the same input will not fix."""


class StorageError(RuntimeError):
    """Durable key-value store is unreachable or returned an error."""


class StructuredOutputError(ValueError):
    """Structured payload failed schema validation."""


def classify_exception(exc: BaseException) -> FailureKind:
    """Map an exception raised by a dependency call to a failure kind."""
    if isinstance(exc, (TransientError, TimeoutError)):
        return FailureKind.TRANSIENT
    if isinstance(exc, StorageError):
        return FailureKind.STORAGE
    if isinstance(exc, StructuredOutputError):
        return FailureKind.VALIDATION
    return FailureKind.PERMANENT
