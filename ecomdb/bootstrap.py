"""
YAML/JSON seed format for ecomdb.

A seed document is an ordered list of operations applied through the
normal store operations, so every constraint holds while seeding.

Example seed:
    version: 1
    data:
      - create:
          kind: Account
          as: ana
          payload:
            email: ana@example.com
            type: Individual
            first_name: Ana
            last_name: Silva
            national_id: "123"
      - create:
          kind: Order
          as: first_order
          payload:
            account_id: $ana
      - link:
          kind: ProductSupplier
          payload:
            product_id: $anvil
            supplier_id: $acme
            lead_time_days: 3
      - update:
          kind: Order
          key: $first_order
          patch:
            status: Confirmed
      - delete:
          kind: Order
          key: $first_order

"as" names the created record; "$name" anywhere in a later payload,
patch or key is replaced by that record's key. Composite keys of link
records are written as two-element lists.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import EcomDbError, SeedError
from .store.entity_store import EntityStore

logger = logging.getLogger(__name__)

VALID_OPERATIONS = ("create", "update", "delete", "link")
LINK_KINDS = ("ProductSupplier", "SupplierSeller")
ALIAS_PREFIX = "$"


@dataclass
class SeedOperation:
    """One operation of a seed document."""

    operation: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    key: Any = None
    as_alias: str | None = None

    def validate(self) -> list[str]:
        errors = []
        if self.operation not in VALID_OPERATIONS:
            errors.append(f"invalid operation '{self.operation}'. Valid: {list(VALID_OPERATIONS)}")
        if not self.kind:
            errors.append(f"{self.operation}: 'kind' is required")
        if self.operation in ("update", "delete") and self.key is None:
            errors.append(f"{self.operation} {self.kind}: 'key' is required")
        if self.operation == "link" and self.kind not in LINK_KINDS:
            errors.append(f"link: kind must be one of {list(LINK_KINDS)}, got '{self.kind}'")
        if self.as_alias is not None and self.operation not in ("create", "link"):
            errors.append(f"{self.operation} {self.kind}: 'as' is only valid on create and link")
        return errors

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"kind": self.kind}
        if self.key is not None:
            body["key"] = self.key
        if self.operation == "update":
            body["patch"] = self.payload
        elif self.operation != "delete":
            body["payload"] = self.payload
        if self.as_alias:
            body["as"] = self.as_alias
        return {self.operation: body}


@dataclass
class SeedDocument:
    """A parsed seed file."""

    version: int = 1
    data: list[SeedOperation] = field(default_factory=list)

    def validate(self) -> list[str]:
        errors = []
        aliases: set[str] = set()
        for i, op in enumerate(self.data):
            errors.extend(f"data[{i}]: {e}" for e in op.validate())
            if op.as_alias:
                if op.as_alias in aliases:
                    errors.append(f"data[{i}]: alias '{op.as_alias}' is already defined")
                aliases.add(op.as_alias)
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "data": [op.to_dict() for op in self.data]}

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


def parse_operation(data: Any, index: int | None = None) -> SeedOperation:
    """Parse one ``{operation: {...}}`` entry.

    Raises:
        SeedError: If the entry is not a single-key mapping of a known operation
    """
    if not isinstance(data, Mapping) or len(data) != 1:
        raise SeedError(
            f"Seed operation must be a mapping with exactly one of {list(VALID_OPERATIONS)}",
            index=index,
        )
    (operation, body), = data.items()
    if operation not in VALID_OPERATIONS:
        raise SeedError(
            f"Unknown seed operation '{operation}'. Valid: {list(VALID_OPERATIONS)}", index=index
        )
    if not isinstance(body, Mapping):
        raise SeedError(f"Body of '{operation}' must be a mapping", index=index)

    payload = body.get("patch") if operation == "update" else body.get("payload")
    if payload is not None and not isinstance(payload, Mapping):
        raise SeedError(f"'{operation}' payload must be a mapping", index=index)
    return SeedOperation(
        operation=operation,
        kind=body.get("kind", ""),
        payload=dict(payload or {}),
        key=body.get("key"),
        as_alias=body.get("as"),
    )


def parse_seed(data: Mapping[str, Any]) -> SeedDocument:
    """Parse and validate a seed document from a dict.

    Raises:
        SeedError: On any malformed operation
    """
    if not isinstance(data, Mapping):
        raise SeedError("Seed document must be a mapping with a 'data' list")
    operations = data.get("data") or []
    if not isinstance(operations, list):
        raise SeedError("Seed 'data' must be a list")

    doc = SeedDocument(
        version=data.get("version", 1),
        data=[parse_operation(op, i) for i, op in enumerate(operations)],
    )
    errors = doc.validate()
    if errors:
        raise SeedError(f"Invalid seed: {'; '.join(errors)}")
    return doc


def parse_seed_yaml(yaml_str: str) -> SeedDocument:
    """Parse a seed document from YAML."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise SeedError(f"Invalid YAML: {e}") from e
    return parse_seed(data or {})


def parse_seed_json(json_str: str) -> SeedDocument:
    """Parse a seed document from JSON."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SeedError(f"Invalid JSON: {e}") from e
    return parse_seed(data or {})


def load_seed_file(path: str | Path) -> SeedDocument:
    """Read a seed file; ``.json`` files are parsed as JSON, anything else as YAML."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return parse_seed_json(text)
    return parse_seed_yaml(text)


def _resolve(value: Any, aliases: Mapping[str, Any], index: int) -> Any:
    if isinstance(value, str) and value.startswith(ALIAS_PREFIX):
        name = value[len(ALIAS_PREFIX):]
        if name not in aliases:
            raise SeedError(f"Unknown alias '{value}'", index=index)
        return aliases[name]
    if isinstance(value, list):
        return [_resolve(v, aliases, index) for v in value]
    if isinstance(value, Mapping):
        return {k: _resolve(v, aliases, index) for k, v in value.items()}
    return value


def _key(value: Any) -> Any:
    return tuple(value) if isinstance(value, list) else value


def load_seed(store: EntityStore, data: SeedDocument | Mapping[str, Any]) -> dict[str, Any]:
    """Apply a seed document's operations to a store, in order.

    Args:
        store: Target store
        data: Parsed SeedDocument or the raw document dict

    Returns:
        Alias name -> key of the record created under it

    Raises:
        SeedError: On a malformed document or a failing operation (the
            store error is chained as __cause__). Operations applied before
            the failing one stay applied.
    """
    doc = data if isinstance(data, SeedDocument) else parse_seed(data)
    aliases: dict[str, Any] = {}

    for i, op in enumerate(doc.data):
        payload = _resolve(op.payload, aliases, i)
        try:
            if op.operation in ("create", "link"):
                entity = store.view(op.kind).create(payload)
                if op.as_alias:
                    aliases[op.as_alias] = store.registry.get_entity(op.kind).key_of(entity)
            elif op.operation == "update":
                store.update(op.kind, _key(_resolve(op.key, aliases, i)), payload)
            else:
                store.delete(op.kind, _key(_resolve(op.key, aliases, i)))
        except EcomDbError as e:
            raise SeedError(f"{op.operation} {op.kind} failed: {e.message}", index=i) from e

    logger.info(f"Seed applied: {len(doc.data)} operation(s), {len(aliases)} alias(es)")
    return aliases
