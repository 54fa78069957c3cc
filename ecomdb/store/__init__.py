"""
Store module for ecomdb.

This module provides the mutable side of the engine:
- EntityStore: typed tables with create/update/delete/get/list per kind
- Constraint engine: shape, bound, reference and derived-value rules
- RelationshipIndex: parent -> children lookup per foreign key
- StoreSnapshot: immutable point-in-time view for reports

Invariants:
    - All writes go through EntityStore and are validated first
    - Index and tables change together under one lock
"""

from .entity_store import EntityStore, KindView, StoreSnapshot
from .index import RelationshipIndex

__all__ = [
    "EntityStore",
    "KindView",
    "StoreSnapshot",
    "RelationshipIndex",
]
