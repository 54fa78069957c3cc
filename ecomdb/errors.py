"""
Error types for ecomdb.

This module defines all exception types raised by the store:
- EcomDbError: Base exception
- InvalidShape: Malformed payload or account profile
- ConstraintViolated: Numeric or non-empty bound broken
- UniqueViolation: Duplicate value for a unique attribute
- DanglingReference: Foreign key target missing
- ReferencedByDependents: Restrict delete blocked
- NotFound: Lookup by unknown key

Invariants:
    - All errors inherit from EcomDbError
    - Mutation errors are raised before the store is touched
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class EcomDbError(Exception):
    """Base exception for all ecomdb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ECOMDB_ERROR"
        self.details = details or {}


class InvalidShape(EcomDbError):
    """Payload has the wrong shape.

    Raised when:
    - An account carries both or neither profile field groups
    - A profile field group is only partially populated
    - A patch names unknown or immutable fields
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="INVALID_SHAPE",
            details={"kind": kind, "errors": errors or []},
        )
        self.kind = kind
        self.errors = errors or []


class ConstraintViolated(EcomDbError):
    """A field value is outside its declared bound."""

    def __init__(
        self,
        message: str,
        kind: str,
        field_name: str,
        value: Any = None,
        code: str = "CONSTRAINT_VIOLATED",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"kind": kind, "field": field_name, "value": value},
        )
        self.kind = kind
        self.field_name = field_name
        self.value = value


class UniqueViolation(ConstraintViolated):
    """Another record of the same kind already holds this value."""

    def __init__(self, kind: str, field_name: str, value: Any, existing_key: Any) -> None:
        super().__init__(
            f"{kind}.{field_name}={value!r} already used by {kind} {existing_key!r}",
            kind=kind,
            field_name=field_name,
            value=value,
            code="UNIQUE_VIOLATION",
        )
        self.existing_key = existing_key


class DanglingReference(EcomDbError):
    """A foreign key points at a record that does not exist."""

    def __init__(self, kind: str, field_name: str, target_kind: str, target_key: Any) -> None:
        super().__init__(
            f"{kind}.{field_name} references missing {target_kind} {target_key!r}",
            code="DANGLING_REFERENCE",
            details={
                "kind": kind,
                "field": field_name,
                "target_kind": target_kind,
                "target_key": target_key,
            },
        )
        self.kind = kind
        self.field_name = field_name
        self.target_kind = target_kind
        self.target_key = target_key


class ReferencedByDependents(EcomDbError):
    """Delete refused because restrict-type dependents exist.

    Attributes:
        kind: Kind of the record being deleted
        key: Key of the record being deleted
        dependent_kind: Kind of the blocking dependents
        dependents: Keys of the blocking dependents
    """

    def __init__(self, kind: str, key: Any, dependent_kind: str, dependents: List[Any]) -> None:
        super().__init__(
            f"{kind} {key!r} is referenced by {len(dependents)} {dependent_kind} record(s)",
            code="REFERENCED",
            details={
                "kind": kind,
                "key": key,
                "dependent_kind": dependent_kind,
                "dependents": list(dependents),
            },
        )
        self.kind = kind
        self.key = key
        self.dependent_kind = dependent_kind
        self.dependents = list(dependents)


class NotFound(EcomDbError):
    """Record not found."""

    def __init__(self, kind: str, key: Any) -> None:
        super().__init__(
            f"{kind} {key!r} not found",
            code="NOT_FOUND",
            details={"kind": kind, "key": key},
        )
        self.kind = kind
        self.key = key


class PersistenceError(EcomDbError):
    """The snapshot sink failed after a mutation was committed in memory."""

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message, code="PERSISTENCE_ERROR", details={"kind": kind})
        self.kind = kind


class SeedError(EcomDbError):
    """A seed operation is malformed or names an unknown alias."""

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(message, code="SEED_ERROR", details={"index": index})
        self.index = index
