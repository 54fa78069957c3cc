"""
Model Registry for ecomdb.

The ModelRegistry is the central authority for entity kinds and the
relationships between them. It provides:
- Registration of entity kinds (EntityDef) and foreign keys (ForeignKeyDef)
- Lookup by kind name or model class
- Forward (declared on child) and reverse (pointing at parent) FK lookup
- Schema fingerprinting for snapshot consistency checks
- Freeze mechanism to prevent runtime modifications

Delete behaviour is data here, not code: each ForeignKeyDef carries an
OnDelete policy that the store consults generically.

Invariants:
    - Registry is mutable while being built, frozen before a store uses it
    - Kind names are unique; FK names are unique
    - A SET_NULL foreign key must be nullable
    - Fingerprint changes when the model changes

Example:
    >>> registry = ModelRegistry()
    >>> registry.register_entity(EntityDef("Seller", Seller, unique=("email",)))
    >>> registry.register_entity(EntityDef("Order", Order))
    >>> registry.register_foreign_key(
    ...     ForeignKeyDef("order_seller", "Order", "seller_id", "Seller",
    ...                   OnDelete.SET_NULL, nullable=True)
    ... )
    >>> registry.freeze()
    'sha256:...'
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate kind or FK name."""
    pass


class OnDelete(Enum):
    """What happens to dependents when the referenced record is deleted."""

    CASCADE = "cascade"
    RESTRICT = "restrict"
    SET_NULL = "set_null"


@dataclass(frozen=True)
class Bound:
    """Check constraint on a single field.

    Attributes:
        field_name: Field the bound applies to
        ge: Inclusive lower bound
        gt: Exclusive lower bound
        non_empty: Whether a string value must be non-blank
    """

    field_name: str
    ge: Optional[Decimal] = None
    gt: Optional[Decimal] = None
    non_empty: bool = False

    def violation(self, value: Any) -> Optional[str]:
        """Return a description of the violation, or None if value is within bound."""
        if self.non_empty and (value is None or not str(value).strip()):
            return f"{self.field_name} must not be empty"
        if value is None:
            return None
        if self.ge is not None and value < self.ge:
            return f"{self.field_name} must be >= {self.ge}, got {value}"
        if self.gt is not None and value <= self.gt:
            return f"{self.field_name} must be > {self.gt}, got {value}"
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"field": self.field_name}
        if self.ge is not None:
            result["ge"] = str(self.ge)
        if self.gt is not None:
            result["gt"] = str(self.gt)
        if self.non_empty:
            result["non_empty"] = True
        return result


def bound(
    field_name: str,
    *,
    ge: Union[int, str, Decimal, None] = None,
    gt: Union[int, str, Decimal, None] = None,
    non_empty: bool = False,
) -> Bound:
    """Convenience function to create a Bound.

    Example:
        >>> bound("price", ge=0)
        >>> bound("quantity", gt=0)
        >>> bound("name", non_empty=True)
    """
    return Bound(
        field_name=field_name,
        ge=Decimal(str(ge)) if ge is not None else None,
        gt=Decimal(str(gt)) if gt is not None else None,
        non_empty=non_empty,
    )


@dataclass(frozen=True)
class EntityDef:
    """Definition of an entity kind.

    Attributes:
        name: Kind name (used in errors, snapshots and seed files)
        model: Frozen dataclass holding the records
        key_fields: Fields forming the primary key; ("id",) means the store
            assigns a monotonic integer
        unique: Fields whose values must be unique within the kind
        bounds: Check constraints
        derived: Fields computed by the store, never accepted as input
        description: Human-readable description

    Invariants:
        - key_fields, unique, bounds and derived name real model fields
        - A kind keyed by "id" gets identifiers from the store
    """

    name: str
    model: type
    key_fields: tuple[str, ...] = ("id",)
    unique: tuple[str, ...] = ()
    bounds: tuple[Bound, ...] = dataclass_field(default_factory=tuple)
    derived: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity definition."""
        if not self.name:
            raise ValueError("Entity kind name cannot be empty")
        if not dataclasses.is_dataclass(self.model):
            raise ValueError(f"Model for '{self.name}' must be a dataclass")
        if not self.key_fields:
            raise ValueError(f"Entity kind '{self.name}' needs at least one key field")

        names = {f.name for f in dataclasses.fields(self.model)}
        referenced = (
            list(self.key_fields)
            + list(self.unique)
            + [b.field_name for b in self.bounds]
            + list(self.derived)
        )
        unknown = [n for n in referenced if n not in names]
        if unknown:
            raise ValueError(f"Entity kind '{self.name}' references unknown fields {unknown}")

    @property
    def generated_key(self) -> bool:
        """Whether the store assigns this kind's identifiers."""
        return self.key_fields == ("id",)

    def key_of(self, entity: Any) -> Any:
        """Primary key of a record: an int for generated keys, else a tuple."""
        if self.generated_key:
            return entity.id
        return tuple(getattr(entity, f) for f in self.key_fields)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for fingerprinting."""
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.name for f in dataclasses.fields(self.model)],
            "key_fields": list(self.key_fields),
        }
        if self.unique:
            result["unique"] = list(self.unique)
        if self.bounds:
            result["bounds"] = [b.to_dict() for b in self.bounds]
        if self.derived:
            result["derived"] = list(self.derived)
        return result


@dataclass(frozen=True)
class ForeignKeyDef:
    """A reference from one entity kind to another.

    Attributes:
        name: Unique name of the relationship
        child: Kind holding the reference
        field_name: Field on the child holding the parent key
        parent: Referenced kind
        on_delete: Policy applied to children when a parent is deleted
        nullable: Whether the field may be None

    Example:
        >>> ForeignKeyDef("address_account", "Address", "account_id", "Account",
        ...               OnDelete.CASCADE)
    """

    name: str
    child: str
    field_name: str
    parent: str
    on_delete: OnDelete = OnDelete.RESTRICT
    nullable: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Foreign key name cannot be empty")
        if self.on_delete == OnDelete.SET_NULL and not self.nullable:
            raise ValueError(f"Foreign key '{self.name}' uses SET_NULL but is not nullable")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "child": self.child,
            "field": self.field_name,
            "parent": self.parent,
            "on_delete": self.on_delete.value,
            "nullable": self.nullable,
        }


class ModelRegistry:
    """Registry of entity kinds and foreign keys.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register_entity(account_def)
        >>> registry.register_entity(address_def)
        >>> registry.register_foreign_key(address_account)
        >>> registry.freeze()
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._entities: Dict[str, EntityDef] = {}
        self._entities_by_model: Dict[type, EntityDef] = {}
        self._foreign_keys: Dict[str, ForeignKeyDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Model fingerprint (available after freeze)."""
        return self._fingerprint

    def register_entity(self, entity_def: EntityDef) -> None:
        """Register an entity kind.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If name or model is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity kind '{entity_def.name}': registry is frozen"
                )
            if entity_def.name in self._entities:
                raise DuplicateRegistrationError(
                    f"Entity kind '{entity_def.name}' already registered"
                )
            if entity_def.model in self._entities_by_model:
                existing = self._entities_by_model[entity_def.model]
                raise DuplicateRegistrationError(
                    f"Model {entity_def.model.__name__} already registered as '{existing.name}'"
                )

            self._entities[entity_def.name] = entity_def
            self._entities_by_model[entity_def.model] = entity_def
            logger.debug(f"Registered entity kind: {entity_def.name}")

    def register_foreign_key(self, fk: ForeignKeyDef) -> None:
        """Register a foreign key between two registered kinds.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the FK name is taken
            ValueError: If child/parent kinds or the field are unknown
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register foreign key '{fk.name}': registry is frozen"
                )
            if fk.name in self._foreign_keys:
                raise DuplicateRegistrationError(f"Foreign key '{fk.name}' already registered")

            child = self._entities.get(fk.child)
            if child is None:
                raise ValueError(f"Foreign key '{fk.name}' references unknown child kind '{fk.child}'")
            if fk.parent not in self._entities:
                raise ValueError(
                    f"Foreign key '{fk.name}' references unknown parent kind '{fk.parent}'"
                )
            if fk.field_name not in {f.name for f in dataclasses.fields(child.model)}:
                raise ValueError(
                    f"Foreign key '{fk.name}' names unknown field '{fk.child}.{fk.field_name}'"
                )

            self._foreign_keys[fk.name] = fk
            logger.debug(
                f"Registered foreign key: {fk.child}.{fk.field_name} -> {fk.parent} "
                f"({fk.on_delete.value})"
            )

    def get_entity(self, kind: Union[str, type]) -> Optional[EntityDef]:
        """Get an entity kind by name or model class."""
        if isinstance(kind, str):
            return self._entities.get(kind)
        return self._entities_by_model.get(kind)

    def get_foreign_key(self, name: str) -> Optional[ForeignKeyDef]:
        return self._foreign_keys.get(name)

    def entities(self) -> Iterator[EntityDef]:
        """Iterate over entity kinds in registration order."""
        yield from self._entities.values()

    def foreign_keys(self) -> Iterator[ForeignKeyDef]:
        """Iterate over foreign keys in registration order."""
        yield from self._foreign_keys.values()

    def foreign_keys_from(self, kind: str) -> List[ForeignKeyDef]:
        """Foreign keys declared on ``kind`` (it is the child)."""
        return [fk for fk in self._foreign_keys.values() if fk.child == kind]

    def foreign_keys_to(self, kind: str) -> List[ForeignKeyDef]:
        """Foreign keys pointing at ``kind`` (it is the parent)."""
        return [fk for fk in self._foreign_keys.values() if fk.parent == kind]

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Model registry frozen with {len(self._entities)} entity kinds, "
                f"{len(self._foreign_keys)} foreign keys, fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """SHA-256 over the canonical JSON form of the model."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by name."""
        return {
            "entities": [self._entities[n].to_dict() for n in sorted(self._entities)],
            "foreign_keys": [
                self._foreign_keys[n].to_dict() for n in sorted(self._foreign_keys)
            ],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def validate_all(self) -> list[str]:
        """Validate registered kinds for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for fk in self._foreign_keys.values():
            parent = self._entities[fk.parent]
            if not parent.generated_key:
                errors.append(
                    f"Foreign key '{fk.name}' points at '{fk.parent}', "
                    f"which has a composite key {parent.key_fields}"
                )
            child = self._entities[fk.child]
            if fk.field_name in child.derived:
                errors.append(f"Foreign key '{fk.name}' uses derived field '{fk.field_name}'")
        return errors
