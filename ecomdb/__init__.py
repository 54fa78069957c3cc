"""
ecomdb - Transactional core of an e-commerce platform.

This package implements the data model and integrity/aggregation engine for
accounts, addresses, suppliers, sellers, products, stock, payment methods,
orders, order items, deliveries and payments:
- Typed entities (frozen dataclasses) registered in a model registry
- Declarative foreign keys with Cascade / Restrict / SetNull delete policies
- An in-memory entity store guarded by a constraint engine
- A relationship index for one-to-many and many-to-many traversal
- Read-only reports computed over point-in-time snapshots

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │   Caller    │────▶│ EntityStore  │────▶│ Constraint Engine│
    │ (seed/CLI)  │     │  (locked)    │     └──────────────────┘
    └──────┬──────┘     └──────┬───────┘
           │                   │
           │                   ├──────────▶ RelationshipIndex
           │                   │
           │                   └──────────▶ SnapshotSink (optional)
           │
           ▼
    ┌─────────────┐     ┌──────────────┐
    │ReportService│────▶│StoreSnapshot │
    └─────────────┘     └──────────────┘

Invariants:
    - No mutation leaves the store partially written
    - Identifiers are assigned per kind, monotonically, and never reused
    - Derived values (line subtotal, order total) are never caller input
    - Reports only read committed snapshots

How to change safely:
    - Add new entity kinds to schema/definitions.py with their foreign keys
    - Express new delete behaviour as an OnDelete policy, not as store code
    - Keep report functions pure over StoreSnapshot
"""

from ._version import __version__

__all__ = ["__version__"]
