"""
Conversion between entities and plain dictionaries.

Seed files, patches and persisted snapshots all carry plain values
(strings, numbers, ISO dates). This module turns them into typed entity
fields and back, driven by the dataclass annotations:
- Decimal fields accept int/float/str
- datetime/date fields accept ISO-8601 strings
- Enum fields accept the value ("InTransit") or the member name ("IN_TRANSIT")

Accounts are flattened on the way out: the profile's fields sit next to
the account's own fields together with a "type" tag. Turning a flat account
payload back into a profile is the constraint engine's job
(see store.constraints.build_profile).

Invariants:
    - to_dict output is JSON-serializable
    - Non-init (derived) fields are written but ignored on input
"""

from __future__ import annotations

import dataclasses
import types
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from difflib import get_close_matches
from enum import Enum
from functools import lru_cache
from typing import Any, Union, get_args, get_origin, get_type_hints

from ..errors import InvalidShape
from .types import PROFILE_CLASSES, Account, to_money


@lru_cache(maxsize=None)
def _hints(model: type) -> dict[str, Any]:
    return get_type_hints(model)


def init_fields(model: type) -> list[dataclasses.Field]:
    """Dataclass fields a caller may pass to the constructor."""
    return [f for f in dataclasses.fields(model) if f.init]


def payload_fields(model: type) -> set[str]:
    """Names accepted in a flat payload for ``model``."""
    names = {f.name for f in init_fields(model)}
    if model is Account:
        names.discard("profile")
        names.add("type")
        for profile_cls in PROFILE_CLASSES.values():
            names.update(profile_cls.REQUIRED)
            names.update(profile_cls.OPTIONAL)
    return names


def reject_unknown(model: type, data: Mapping[str, Any], kind: str | None = None) -> None:
    """Raise InvalidShape if ``data`` names fields the model does not have.

    Non-init fields (e.g. OrderItem.subtotal) are tolerated; they are
    recomputed, never read.
    """
    known = payload_fields(model)
    derived = {f.name for f in dataclasses.fields(model) if not f.init}
    unknown = sorted(set(data) - known - derived)
    if not unknown:
        return

    errors = []
    for name in unknown:
        suggestions = get_close_matches(name, sorted(known), n=3)
        if suggestions:
            errors.append(f"Unknown field '{name}'. Did you mean: {suggestions}?")
        else:
            errors.append(f"Unknown field '{name}'")
    kind = kind or model.__name__
    raise InvalidShape(f"Invalid {kind} payload: {'; '.join(errors)}", kind=kind, errors=errors)


def coerce(annotation: Any, value: Any, name: str) -> Any:
    """Convert a plain value to the type named by ``annotation``.

    Raises:
        InvalidShape: If the value cannot represent that type
    """
    origin = get_origin(annotation)

    if origin is Union or origin is types.UnionType:
        args = get_args(annotation)
        non_null = [a for a in args if a is not type(None)]
        if value is None:
            if len(non_null) < len(args):
                return None
            raise InvalidShape(f"Field '{name}' is required")
        if len(non_null) == 1:
            return coerce(non_null[0], value, name)
        if any(isinstance(value, a) for a in non_null):
            return value
        expected = " or ".join(a.__name__ for a in non_null)
        raise InvalidShape(f"Field '{name}' must be {expected}, got {type(value).__name__}")

    if value is None:
        raise InvalidShape(f"Field '{name}' is required")

    if annotation is Any:
        return value

    if origin is dict or annotation is dict:
        if not isinstance(value, Mapping):
            raise InvalidShape(f"Field '{name}' must be a mapping, got {type(value).__name__}")
        return dict(value)

    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return _coerce_enum(annotation, value, name)

    if annotation is Decimal:
        return to_money(value, name)

    if annotation is datetime:
        # Naive datetimes are taken as UTC so all stored times compare.
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                pass
        elif isinstance(value, date) and not isinstance(value, datetime):
            value = datetime(value.year, value.month, value.day)
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        raise InvalidShape(f"Field '{name}' must be an ISO-8601 datetime, got {value!r}")

    if annotation is date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value)
            except ValueError:
                pass
        raise InvalidShape(f"Field '{name}' must be an ISO-8601 date, got {value!r}")

    if annotation is bool:
        if not isinstance(value, bool):
            raise InvalidShape(f"Field '{name}' must be a boolean, got {type(value).__name__}")
        return value

    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidShape(f"Field '{name}' must be an integer, got {type(value).__name__}")
        return value

    if annotation is str:
        if not isinstance(value, str):
            raise InvalidShape(f"Field '{name}' must be a string, got {type(value).__name__}")
        return value

    return value


def _coerce_enum(enum_cls: type[Enum], value: Any, name: str) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    if isinstance(value, str) and value in enum_cls.__members__:
        return enum_cls[value]
    valid = [m.value for m in enum_cls]
    raise InvalidShape(f"Field '{name}' must be one of {valid}, got {value!r}")


def coerce_fields(model: type, data: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce every init field present in ``data``; absent fields are skipped."""
    hints = _hints(model)
    result: dict[str, Any] = {}
    for f in init_fields(model):
        if f.name in data:
            result[f.name] = coerce(hints[f.name], data[f.name], f.name)
    return result


def from_dict(model: type, data: Mapping[str, Any]) -> Any:
    """Build an entity from a plain dict.

    Fields without a default must be present. For accounts, ``data`` must
    already hold a profile object under "profile".

    Raises:
        InvalidShape: On unknown, missing or mistyped fields
    """
    if model is not Account:
        reject_unknown(model, data)
    values = coerce_fields(model, data)
    for f in init_fields(model):
        no_default = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        if no_default and f.name not in values:
            raise InvalidShape(f"Field '{f.name}' is required", kind=model.__name__)
    return model(**values)


def encode(value: Any) -> Any:
    """Encode one field value as a JSON-compatible value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(v) for v in value]
    return value


def to_dict(entity: Any) -> dict[str, Any]:
    """Convert an entity to a flat, JSON-compatible dict."""
    result: dict[str, Any] = {}
    for f in dataclasses.fields(entity):
        value = getattr(entity, f.name)
        if isinstance(entity, Account) and f.name == "profile":
            result["type"] = entity.type.value
            for pf in dataclasses.fields(value):
                result[pf.name] = encode(getattr(value, pf.name))
            continue
        result[f.name] = encode(value)
    return result
