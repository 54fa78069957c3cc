"""
Constraint engine for the entity store.

Pure validation functions, one per invariant class. The store calls them
before touching any table, so a failure leaves the store unchanged:
- Mutual exclusivity: build_profile / check_profile (InvalidShape)
- Domain checks: check_bounds (ConstraintViolated naming the field)
- Derived values: compute_subtotal / compute_order_total
- Referential integrity: check_references (DanglingReference)
- Patch hygiene: check_patch (InvalidShape; derived fields dropped)

Invariants:
    - Functions never mutate their inputs
    - Derived fields supplied by a caller are discarded, never validated
    - compute_order_total is a pure function of the items passed in
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal
from typing import Any

from ..errors import ConstraintViolated, DanglingReference, InvalidShape
from ..schema import codec
from ..schema.registry import EntityDef, ModelRegistry
from ..schema.types import (
    PROFILE_CLASSES,
    ZERO,
    Account,
    AccountType,
    BusinessProfile,
    IndividualProfile,
    OrderItem,
    compute_subtotal,
)

logger = logging.getLogger(__name__)

__all__ = [
    "build_profile",
    "check_profile",
    "entity_from_payload",
    "normalize",
    "check_bounds",
    "check_references",
    "check_patch",
    "compute_subtotal",
    "compute_order_total",
]


def _populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def build_profile(
    account_type: AccountType | str | None,
    fields: Mapping[str, Any],
) -> IndividualProfile | BusinessProfile:
    """Turn a flat account payload into a profile variant.

    Exactly one field group (individual or business) must be populated and
    the other fully absent. The populated group must match ``account_type``
    when one is given, and all of its required fields must be present.

    Args:
        account_type: Declared account type, or None to take it from the payload
        fields: Flat payload; keys outside both groups are ignored

    Returns:
        IndividualProfile or BusinessProfile

    Raises:
        InvalidShape: On both groups, neither group, a partial group or a
            type mismatch
    """
    present = {name for name, value in fields.items() if _populated(value)}
    groups = {
        kind: present & set(cls.REQUIRED + cls.OPTIONAL)
        for kind, cls in PROFILE_CLASSES.items()
    }
    populated = [kind for kind, names in groups.items() if names]

    if len(populated) != 1:
        state = "both" if populated else "neither"
        raise InvalidShape(
            f"Invalid account shape: exactly one of the individual or business "
            f"field groups must be populated, got {state}",
            kind="Account",
        )

    group_type = populated[0]
    if account_type is not None:
        declared = codec.coerce(AccountType, account_type, "type")
        if declared != group_type:
            raise InvalidShape(
                f"Invalid account shape: type is {declared.value} but "
                f"{group_type.value.lower()} fields are populated",
                kind="Account",
            )

    profile_cls = PROFILE_CLASSES[group_type]
    missing = [name for name in profile_cls.REQUIRED if name not in present]
    if missing:
        raise InvalidShape(
            f"Invalid account shape: {group_type.value.lower()} fields missing {missing}",
            kind="Account",
            errors=[f"Field '{name}' is required" for name in missing],
        )

    values = codec.coerce_fields(
        profile_cls,
        {name: fields[name] for name in profile_cls.REQUIRED + profile_cls.OPTIONAL if name in fields},
    )
    return profile_cls(**values)


def check_profile(profile: IndividualProfile | BusinessProfile) -> None:
    """Check that a profile's required fields are all populated.

    Raises:
        InvalidShape: If a required field is empty
    """
    missing = [name for name in profile.REQUIRED if not _populated(getattr(profile, name))]
    if missing:
        raise InvalidShape(
            f"Invalid account shape: {profile.account_type.value.lower()} fields missing {missing}",
            kind="Account",
        )


def _account_from_payload(payload: Mapping[str, Any]) -> Account:
    codec.reject_unknown(Account, payload)
    profile = build_profile(payload.get("type"), payload)
    own = {name: payload[name] for name in ("email", "phone", "created_at", "id") if name in payload}
    values = codec.coerce_fields(Account, own)
    if "email" not in values:
        raise InvalidShape("Field 'email' is required", kind="Account")
    return Account(profile=profile, **values)


def entity_from_payload(model: type, payload: Mapping[str, Any]) -> Any:
    """Build an entity of ``model`` from a flat payload.

    Raises:
        InvalidShape: On unknown, missing or mistyped fields, or an invalid
            account shape
    """
    if model is Account:
        return _account_from_payload(payload)
    return codec.from_dict(model, payload)


def normalize(entity_def: EntityDef, entity: Any) -> Any:
    """Re-check field types of an entity built directly by a caller.

    Returns an equivalent entity whose fields carry their declared types
    (e.g. a Decimal for a price given as a string).

    Raises:
        InvalidShape: If a field cannot be converted
    """
    model = entity_def.model
    values = {f.name: getattr(entity, f.name) for f in codec.init_fields(model)}
    return model(**codec.coerce_fields(model, values))


def check_bounds(entity_def: EntityDef, entity: Any) -> None:
    """Check every declared bound of the entity's kind.

    Raises:
        ConstraintViolated: Naming the first field outside its bound
    """
    for b in entity_def.bounds:
        value = getattr(entity, b.field_name)
        message = b.violation(value)
        if message:
            if isinstance(entity, OrderItem) and b.field_name == "subtotal":
                message = f"discount {entity.discount} exceeds line value {entity.unit_price * entity.quantity}"
            raise ConstraintViolated(
                f"Constraint violated on {entity_def.name}: {message}",
                kind=entity_def.name,
                field_name=b.field_name,
                value=value,
            )


def check_references(
    registry: ModelRegistry,
    entity_def: EntityDef,
    entity: Any,
    exists: Callable[[str, Any], bool],
) -> None:
    """Check that every foreign key of the entity resolves.

    Args:
        registry: Model registry
        entity_def: Kind of ``entity``
        entity: Record about to be written
        exists: Callback answering whether (kind, key) is stored

    Raises:
        DanglingReference: If a reference is missing, or None where the
            foreign key is not nullable
    """
    for fk in registry.foreign_keys_from(entity_def.name):
        value = getattr(entity, fk.field_name)
        if value is None:
            if fk.nullable:
                continue
            raise DanglingReference(entity_def.name, fk.field_name, fk.parent, None)
        if not exists(fk.parent, value):
            raise DanglingReference(entity_def.name, fk.field_name, fk.parent, value)


def check_patch(entity_def: EntityDef, patch: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a patch and return the part that may be applied.

    Derived fields are dropped; key fields and unknown fields are rejected.
    For accounts a "profile" object is expanded into its flat fields, with
    the other variant's fields cleared.

    Raises:
        InvalidShape: On key or unknown fields
    """
    model = entity_def.model
    derived = set(entity_def.derived) | {f.name for f in dataclasses.fields(model) if not f.init}
    cleaned: dict[str, Any] = {}

    for name, value in patch.items():
        if name in derived:
            logger.debug(f"Ignoring derived field {entity_def.name}.{name} in patch")
            continue
        if name in entity_def.key_fields:
            raise InvalidShape(
                f"Field '{name}' is part of the {entity_def.name} key and cannot be changed",
                kind=entity_def.name,
            )
        if model is Account and name == "profile":
            cleaned.update(_flatten_profile(value))
            continue
        cleaned[name] = value

    codec.reject_unknown(model, cleaned, kind=entity_def.name)
    return cleaned


def _flatten_profile(profile: Any) -> dict[str, Any]:
    if not isinstance(profile, (IndividualProfile, BusinessProfile)):
        raise InvalidShape(
            f"Account profile must be IndividualProfile or BusinessProfile, "
            f"got {type(profile).__name__}",
            kind="Account",
        )
    flat: dict[str, Any] = {"type": profile.account_type.value}
    for cls in PROFILE_CLASSES.values():
        for name in cls.REQUIRED + cls.OPTIONAL:
            flat[name] = getattr(profile, name) if isinstance(profile, cls) else None
    return flat


def compute_order_total(items: Iterable[OrderItem]) -> Decimal:
    """Sum of the current subtotals of an order's items."""
    return sum((item.subtotal for item in items), ZERO)
