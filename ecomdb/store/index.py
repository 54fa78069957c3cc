"""
Relationship index for the entity store.

For every foreign key in the registry the index keeps a mapping from a
parent key to the ordered set of child keys referencing it:

    order_account:         account_id -> {order_id, ...}
    order_item_order:      order_id   -> {item_id, ...}
    product_supplier_link_product: product_id -> {(product_id, supplier_id), ...}

Many-to-many traversal goes through the link kind's two foreign keys
(product -> links -> suppliers). Ordered sets are dicts with None values,
so iteration follows insertion order.

Invariants:
    - Updated inside the same locked mutation as the tables
    - Never rebuilt by scanning, except on a full restore
    - Empty buckets are removed, so a deleted key leaves no trace
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..schema.registry import EntityDef, ModelRegistry

logger = logging.getLogger(__name__)


class RelationshipIndex:
    """Parent-to-children lookup per foreign key.

    Not thread-safe on its own; the owning store serialises access.

    Example:
        >>> index = RelationshipIndex(registry)
        >>> index.add("order_account", 1, 10)
        >>> index.children("order_account", 1)
        (10,)
    """

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry
        self._children: Dict[str, Dict[Any, Dict[Any, None]]] = {
            fk.name: {} for fk in registry.foreign_keys()
        }

    def add(self, fk_name: str, parent_key: Any, child_key: Any) -> None:
        self._children[fk_name].setdefault(parent_key, {})[child_key] = None

    def remove(self, fk_name: str, parent_key: Any, child_key: Any) -> None:
        buckets = self._children[fk_name]
        bucket = buckets.get(parent_key)
        if bucket is None:
            return
        bucket.pop(child_key, None)
        if not bucket:
            del buckets[parent_key]

    def children(self, fk_name: str, parent_key: Any) -> tuple:
        """Child keys referencing ``parent_key`` through ``fk_name``, in insertion order."""
        return tuple(self._children[fk_name].get(parent_key, ()))

    def count(self, fk_name: str, parent_key: Any) -> int:
        return len(self._children[fk_name].get(parent_key, ()))

    def index_entity(self, entity_def: EntityDef, key: Any, entity: Any) -> None:
        """Record every non-null reference held by a newly stored entity."""
        for fk in self._registry.foreign_keys_from(entity_def.name):
            parent_key = getattr(entity, fk.field_name)
            if parent_key is not None:
                self.add(fk.name, parent_key, key)

    def unindex_entity(self, entity_def: EntityDef, key: Any, entity: Any) -> None:
        """Forget every reference held by an entity that is being removed."""
        for fk in self._registry.foreign_keys_from(entity_def.name):
            parent_key = getattr(entity, fk.field_name)
            if parent_key is not None:
                self.remove(fk.name, parent_key, key)

    def reindex_entity(self, entity_def: EntityDef, key: Any, old: Any, new: Any) -> None:
        """Move references whose value changed between ``old`` and ``new``."""
        for fk in self._registry.foreign_keys_from(entity_def.name):
            before = getattr(old, fk.field_name)
            after = getattr(new, fk.field_name)
            if before == after:
                continue
            if before is not None:
                self.remove(fk.name, before, key)
            if after is not None:
                self.add(fk.name, after, key)

    def drop_parent(self, kind: str, key: Any) -> None:
        """Drop all buckets keyed by a deleted parent."""
        for fk in self._registry.foreign_keys_to(kind):
            self._children[fk.name].pop(key, None)

    def references(self, kind: str, key: Any) -> List[str]:
        """Foreign key names under which (kind, key) still appears.

        Used to verify that a deleted record left nothing behind; scans the
        child side, so it is not meant for hot paths.
        """
        found = []
        for fk in self._registry.foreign_keys_to(kind):
            if key in self._children[fk.name]:
                found.append(fk.name)
        for fk in self._registry.foreign_keys_from(kind):
            if any(key in bucket for bucket in self._children[fk.name].values()):
                found.append(fk.name)
        return found

    def is_empty(self) -> bool:
        return not any(self._children.values())

    def stats(self) -> Dict[str, int]:
        """Number of indexed child keys per foreign key."""
        return {
            name: sum(len(bucket) for bucket in buckets.values())
            for name, buckets in self._children.items()
        }

    def copy(self) -> RelationshipIndex:
        """Independent copy (used for snapshots)."""
        clone = RelationshipIndex.__new__(RelationshipIndex)
        clone._registry = self._registry
        clone._children = {
            name: {parent: dict(bucket) for parent, bucket in buckets.items()}
            for name, buckets in self._children.items()
        }
        return clone
