"""
In-memory entity store for ecomdb.

The EntityStore holds one table per entity kind and is the only way to
mutate the model. Every write:
1. Normalises and validates the record (constraints module)
2. Checks unique attributes and foreign keys against committed state
3. Applies table, unique-map and relationship-index changes together
4. Recomputes order totals affected by order item changes
5. Hands the touched kinds to the snapshot sink, if one is attached

Deletes consult the OnDelete policy of every foreign key pointing at the
record. The whole cascade is planned before anything is removed, so a
Restrict anywhere in the tree refuses the delete with the store untouched.

Invariants:
    - Validation precedes any write; a failed call changes nothing
    - Identifiers are assigned per kind, monotonically, never reused
    - Order.total_amount == sum of the order's item subtotals after every call
    - The relationship index mirrors the tables after every call

Thread safety:
    A single re-entrant lock serialises mutations, since cascades and
    total recomputation span several kinds. snapshot() copies state under
    the same lock; reports then read the snapshot without locking.

Example:
    >>> store = EntityStore()
    >>> acct = store.create(Account(
    ...     email="ana@example.com",
    ...     profile=IndividualProfile("Ana", "Silva", "123"),
    ... ))
    >>> order = store.create(Order(account_id=acct.id))
    >>> store.create(OrderItem(order_id=order.id, product_id=1, unit_price=150,
    ...                        quantity=2, discount=10))
    >>> store.get(Order, order.id).total_amount
    Decimal('290')
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from ..errors import (
    ConstraintViolated,
    DanglingReference,
    InvalidShape,
    NotFound,
    PersistenceError,
    ReferencedByDependents,
    UniqueViolation,
)
from ..persist.base import SnapshotSink
from ..schema import codec
from ..schema.definitions import default_registry
from ..schema.registry import EntityDef, ForeignKeyDef, ModelRegistry, OnDelete
from ..schema.types import (
    ZERO,
    Account,
    Delivery,
    Order,
    OrderItem,
    Payment,
    ProductSupplier,
    Stock,
    SupplierSeller,
)
from . import constraints
from .index import RelationshipIndex

logger = logging.getLogger(__name__)

KindRef = Union[str, type]

ORDER_ITEMS_FK = "order_item_order"


@dataclass
class _State:
    """Everything the store mutates; swapped wholesale on restore."""

    tables: Dict[str, Dict[Any, Any]]
    sequences: Dict[str, int]
    unique: Dict[str, Dict[str, Dict[Any, Any]]]
    index: RelationshipIndex

    @classmethod
    def empty(cls, registry: ModelRegistry) -> _State:
        return cls(
            tables={e.name: {} for e in registry.entities()},
            sequences={e.name: 0 for e in registry.entities() if e.generated_key},
            unique={e.name: {f: {} for f in e.unique} for e in registry.entities()},
            index=RelationshipIndex(registry),
        )


@dataclass
class _DeletePlan:
    deletions: List[Tuple[EntityDef, Any]] = field(default_factory=list)
    nullify: List[Tuple[ForeignKeyDef, Any]] = field(default_factory=list)
    doomed: Set[Tuple[str, Any]] = field(default_factory=set)


class _Traversals:
    """Read helpers shared by EntityStore and StoreSnapshot.

    Subclasses provide _registry, _reading() and _state.
    """

    _registry: ModelRegistry
    _state: _State

    def _reading(self) -> contextlib.AbstractContextManager:
        raise NotImplementedError

    def _entity_def(self, kind: KindRef) -> EntityDef:
        entity_def = self._registry.get_entity(kind)
        if entity_def is None:
            name = kind if isinstance(kind, str) else kind.__name__
            raise InvalidShape(f"Unknown entity kind '{name}'")
        return entity_def

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def find(self, kind: KindRef, key: Any) -> Optional[Any]:
        """Record by key, or None."""
        entity_def = self._entity_def(kind)
        with self._reading():
            return self._state.tables[entity_def.name].get(key)

    def get(self, kind: KindRef, key: Any) -> Any:
        """Record by key.

        Raises:
            NotFound: If no such record exists
        """
        entity_def = self._entity_def(kind)
        with self._reading():
            entity = self._state.tables[entity_def.name].get(key)
        if entity is None:
            raise NotFound(entity_def.name, key)
        return entity

    def list(self, kind: KindRef, predicate: Optional[Callable[[Any], bool]] = None) -> List[Any]:
        """Records of a kind in insertion (= key) order, optionally filtered."""
        entity_def = self._entity_def(kind)
        with self._reading():
            records = list(self._state.tables[entity_def.name].values())
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def count(self, kind: KindRef) -> int:
        entity_def = self._entity_def(kind)
        with self._reading():
            return len(self._state.tables[entity_def.name])

    def children(self, fk_name: str, parent_key: Any) -> List[Any]:
        """Records referencing ``parent_key`` through the named foreign key."""
        fk = self._registry.get_foreign_key(fk_name)
        if fk is None:
            raise InvalidShape(f"Unknown foreign key '{fk_name}'")
        with self._reading():
            table = self._state.tables[fk.child]
            return [table[k] for k in self._state.index.children(fk_name, parent_key)]

    def _linked(self, fk_name: str, parent_key: Any, target: str, target_field: str) -> List[Any]:
        with self._reading():
            table = self._state.tables[target]
            return [table[getattr(link, target_field)] for link in self.children(fk_name, parent_key)]

    def orders_for_account(self, account_id: int) -> List[Order]:
        return self.children("order_account", account_id)

    def items_for_order(self, order_id: int) -> List[OrderItem]:
        return self.children(ORDER_ITEMS_FK, order_id)

    def addresses_for_account(self, account_id: int) -> List[Any]:
        return self.children("address_account", account_id)

    def payment_methods_for_account(self, account_id: int) -> List[Any]:
        return self.children("payment_method_account", account_id)

    def payments_for_order(self, order_id: int) -> List[Payment]:
        return self.children("payment_order", order_id)

    def delivery_for_order(self, order_id: int) -> Optional[Delivery]:
        found = self.children("delivery_order", order_id)
        return found[0] if found else None

    def stock_for_product(self, product_id: int) -> Optional[Stock]:
        found = self.children("stock_product", product_id)
        return found[0] if found else None

    def principal_products(self, supplier_id: int) -> List[Any]:
        """Products naming ``supplier_id`` as their principal supplier."""
        return self.children("product_supplier", supplier_id)

    def supplier_links_for_product(self, product_id: int) -> List[ProductSupplier]:
        return self.children("product_supplier_link_product", product_id)

    def suppliers_for_product(self, product_id: int) -> List[Any]:
        return self._linked("product_supplier_link_product", product_id, "Supplier", "supplier_id")

    def products_for_supplier(self, supplier_id: int) -> List[Any]:
        return self._linked("product_supplier_link_supplier", supplier_id, "Product", "product_id")

    def sellers_for_supplier(self, supplier_id: int) -> List[Any]:
        return self._linked("supplier_seller_link_supplier", supplier_id, "Seller", "seller_id")

    def suppliers_for_seller(self, seller_id: int) -> List[Any]:
        return self._linked("supplier_seller_link_seller", seller_id, "Supplier", "supplier_id")

    def references(self, kind: KindRef, key: Any) -> List[str]:
        """Foreign key names under which the record still appears in the index."""
        entity_def = self._entity_def(kind)
        with self._reading():
            return self._state.index.references(entity_def.name, key)


class StoreSnapshot(_Traversals):
    """Immutable point-in-time view of a store.

    Entities are frozen, so copying the table dicts is enough to isolate
    the snapshot from later mutations.

    Attributes:
        version: Store version the snapshot was taken at
        taken_at: When the snapshot was taken
    """

    def __init__(
        self,
        registry: ModelRegistry,
        state: _State,
        version: int,
        taken_at: datetime,
    ) -> None:
        self._registry = registry
        self._state = state
        self.version = version
        self.taken_at = taken_at

    def _reading(self) -> contextlib.AbstractContextManager:
        return contextlib.nullcontext()


class KindView:
    """Operations of an EntityStore bound to one entity kind.

    Example:
        >>> orders = store.view(Order)
        >>> orders.create({"account_id": 1})
        >>> orders.list(lambda o: o.status is OrderStatus.PENDING)
    """

    def __init__(self, store: EntityStore, entity_def: EntityDef) -> None:
        self._store = store
        self.entity_def = entity_def

    @property
    def name(self) -> str:
        return self.entity_def.name

    def create(self, entity: Any) -> Any:
        """Create from an entity instance or a flat payload mapping."""
        if isinstance(entity, Mapping):
            return self._store.create_from_payload(self.name, entity)
        if not isinstance(entity, self.entity_def.model):
            raise InvalidShape(
                f"Expected {self.entity_def.model.__name__}, got {type(entity).__name__}",
                kind=self.name,
            )
        return self._store.create(entity)

    def update(self, key: Any, patch: Mapping[str, Any]) -> Any:
        return self._store.update(self.name, key, patch)

    def delete(self, key: Any) -> List[Tuple[str, Any]]:
        return self._store.delete(self.name, key)

    def get(self, key: Any) -> Any:
        return self._store.get(self.name, key)

    def find(self, key: Any) -> Optional[Any]:
        return self._store.find(self.name, key)

    def list(self, predicate: Optional[Callable[[Any], bool]] = None) -> List[Any]:
        return self._store.list(self.name, predicate)

    def __len__(self) -> int:
        return self._store.count(self.name)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._store.list(self.name))


class EntityStore(_Traversals):
    """Typed, constraint-checked in-memory store.

    Attributes:
        registry: Model registry (frozen on construction)
        version: Incremented on every committed mutation

    Example:
        >>> store = EntityStore(sink=InMemorySink())
        >>> supplier = store.create(Supplier(name="Acme"))
        >>> product = store.create(Product(sku="A-1", name="Anvil", price=99,
        ...                                supplier_id=supplier.id))
        >>> store.delete(Supplier, supplier.id)
        >>> store.get(Product, product.id).supplier_id is None
        True
    """

    def __init__(
        self,
        registry: Optional[ModelRegistry] = None,
        sink: Optional[SnapshotSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize an empty store.

        Args:
            registry: Model registry (a fresh commerce registry if omitted)
            sink: Optional snapshot sink called after every mutation
            clock: Time source for stamped fields (UTC now if omitted)
        """
        self._registry = registry or default_registry()
        if not self._registry.frozen:
            self._registry.freeze()
        self._state = _State.empty(self._registry)
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self.version = 0

    def _reading(self) -> contextlib.AbstractContextManager:
        return self._lock

    @property
    def sink(self) -> Optional[SnapshotSink]:
        return self._sink

    def view(self, kind: KindRef) -> KindView:
        return KindView(self, self._entity_def(kind))

    def snapshot(self) -> StoreSnapshot:
        """Point-in-time copy of committed state for read-only use."""
        with self._lock:
            state = _State(
                tables={name: dict(table) for name, table in self._state.tables.items()},
                sequences=dict(self._state.sequences),
                unique={},
                index=self._state.index.copy(),
            )
            return StoreSnapshot(self._registry, state, self.version, self._clock())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, entity: Any) -> Any:
        """Validate and store a new record; returns it with its id assigned.

        Raises:
            InvalidShape: Malformed record, or an id supplied by the caller
            ConstraintViolated: A bound is broken (UniqueViolation on duplicates)
            DanglingReference: A foreign key does not resolve
        """
        entity_def = self._entity_def(type(entity))
        name = entity_def.name

        with self._lock:
            entity = constraints.normalize(entity_def, entity)
            if entity_def.generated_key:
                if entity.id is not None:
                    raise InvalidShape(
                        f"{name}.id is assigned by the store, got {entity.id!r}", kind=name
                    )
                key = self._state.sequences[name] + 1
                entity = dataclasses.replace(entity, id=key)
            else:
                key = entity_def.key_of(entity)
                if key in self._state.tables[name]:
                    raise UniqueViolation(name, "+".join(entity_def.key_fields), key, key)

            entity = self._stamp(entity, previous=None)
            self._validate(entity_def, entity, key)

            if entity_def.generated_key:
                self._state.sequences[name] = key
            self._put(entity_def, key, entity, previous=None)
            touched = {name}
            if isinstance(entity, OrderItem):
                touched |= self._recompute_totals({entity.order_id})

            logger.debug(f"Created {name} {key!r}")
            self._commit(touched)
            return entity

    def create_from_payload(self, kind: KindRef, payload: Mapping[str, Any]) -> Any:
        """Create a record from a flat payload (seed files, API adapters).

        Derived fields in the payload are dropped.
        """
        entity_def = self._entity_def(kind)
        derived = set(entity_def.derived)
        cleaned = {k: v for k, v in payload.items() if k not in derived}
        return self.create(constraints.entity_from_payload(entity_def.model, cleaned))

    def update(self, kind: KindRef, key: Any, patch: Mapping[str, Any]) -> Any:
        """Apply a patch to a record and re-validate it.

        Derived fields in the patch are ignored; key fields are rejected.

        Raises:
            NotFound: If the record does not exist
            InvalidShape, ConstraintViolated, DanglingReference: As for create
        """
        entity_def = self._entity_def(kind)
        name = entity_def.name

        with self._lock:
            current = self._require(entity_def, key)
            cleaned = constraints.check_patch(entity_def, patch)
            merged = {**codec.to_dict(current), **cleaned}
            updated = constraints.entity_from_payload(entity_def.model, merged)
            updated = self._stamp(updated, previous=current)
            self._validate(entity_def, updated, key)

            self._put(entity_def, key, updated, previous=current)
            touched = {name}
            if isinstance(updated, OrderItem):
                touched |= self._recompute_totals({current.order_id, updated.order_id})

            logger.debug(f"Updated {name} {key!r}: {sorted(cleaned)}")
            self._commit(touched)
            return self._state.tables[name][key]

    def delete(self, kind: KindRef, key: Any) -> List[Tuple[str, Any]]:
        """Delete a record, applying each dependent's OnDelete policy.

        Returns:
            (kind, key) of every removed record, dependents before parents

        Raises:
            NotFound: If the record does not exist
            ReferencedByDependents: If a Restrict dependent exists anywhere
                in the cascade
        """
        entity_def = self._entity_def(kind)

        with self._lock:
            self._require(entity_def, key)
            plan = self._plan_delete(entity_def, key)
            touched: Set[str] = set()

            for fk, child_key in plan.nullify:
                if (fk.child, child_key) in plan.doomed:
                    continue
                child_def = self._entity_def(fk.child)
                old = self._state.tables[fk.child][child_key]
                new = dataclasses.replace(old, **{fk.field_name: None})
                self._put(child_def, child_key, new, previous=old)
                touched.add(fk.child)
                logger.info(f"Cleared {fk.child}.{fk.field_name} on {child_key!r}")

            orders_to_recompute: Set[int] = set()
            for doomed_def, doomed_key in plan.deletions:
                removed = self._remove(doomed_def, doomed_key)
                touched.add(doomed_def.name)
                if isinstance(removed, OrderItem):
                    orders_to_recompute.add(removed.order_id)

            surviving = {
                oid for oid in orders_to_recompute if oid in self._state.tables["Order"]
            }
            touched |= self._recompute_totals(surviving)

            removed_keys = [(d.name, k) for d, k in plan.deletions]
            logger.debug(f"Deleted {entity_def.name} {key!r} ({len(removed_keys)} record(s))")
            self._commit(touched)
            return removed_keys

    def link_product_supplier(
        self,
        product_id: int,
        supplier_id: int,
        supplier_sku: str = "",
        lead_time_days: int = 0,
    ) -> ProductSupplier:
        return self.create(ProductSupplier(product_id, supplier_id, supplier_sku, lead_time_days))

    def link_supplier_seller(self, supplier_id: int, seller_id: int) -> SupplierSeller:
        return self.create(SupplierSeller(supplier_id, seller_id))

    def adjust_stock(self, product_id: int, delta: int) -> Stock:
        """Add ``delta`` (may be negative) to a product's stock.

        Creates the stock record when the product has none and delta >= 0.

        Raises:
            ConstraintViolated: If the quantity would drop below zero
            DanglingReference: If the product does not exist
        """
        with self._lock:
            if not self._exists("Product", product_id):
                raise DanglingReference("Stock", "product_id", "Product", product_id)
            stock = self.stock_for_product(product_id)
            if stock is None:
                if delta < 0:
                    raise ConstraintViolated(
                        f"Constraint violated on Stock: product {product_id} has no stock to remove",
                        kind="Stock",
                        field_name="quantity",
                        value=delta,
                    )
                return self.create(Stock(product_id=product_id, quantity=delta))
            return self.update(Stock, stock.id, {"quantity": stock.quantity + delta})

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, sink: Optional[SnapshotSink] = None) -> int:
        """Replace the store's contents with what a sink holds.

        The new state is built and fully validated aside, then swapped in;
        on error the store keeps its previous contents.

        Returns:
            Number of records loaded

        Raises:
            InvalidShape, ConstraintViolated, DanglingReference: If the
                snapshot breaks an invariant
        """
        source = sink or self._sink
        if source is None:
            raise PersistenceError("No sink to restore from")
        loaded = source.load()

        state = _State.empty(self._registry)
        with self._lock:
            previous, self._state = self._state, state
            try:
                total = self._load_state(loaded.records, loaded.sequences)
            except Exception:
                self._state = previous
                raise
            self.version += 1

        logger.info(f"Restored {total} record(s) from {type(source).__name__}")
        return total

    def _load_state(self, records: Mapping[str, List[Dict[str, Any]]], sequences: Mapping[str, int]) -> int:
        total = 0
        entities: List[Tuple[EntityDef, Any, Any]] = []
        for entity_def in self._registry.entities():
            for record in records.get(entity_def.name, []):
                entity = constraints.entity_from_payload(entity_def.model, record)
                key = entity_def.key_of(entity)
                if key is None:
                    raise InvalidShape(f"{entity_def.name} record without id", kind=entity_def.name)
                existing = self._state.tables[entity_def.name].get(key)
                if existing is not None:
                    raise UniqueViolation(entity_def.name, "id", key, key)
                entities.append((entity_def, key, entity))
                self._state.tables[entity_def.name][key] = entity

        for entity_def, key, entity in entities:
            self._validate(entity_def, entity, key)
            self._put(entity_def, key, entity, previous=None)
            total += 1

        for entity_def in self._registry.entities():
            if entity_def.generated_key:
                keys = self._state.tables[entity_def.name].keys()
                self._state.sequences[entity_def.name] = max(
                    [sequences.get(entity_def.name, 0), *keys]
                )

        self._recompute_totals(set(self._state.tables["Order"]))
        return total

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, entity_def: EntityDef, key: Any) -> Any:
        entity = self._state.tables[entity_def.name].get(key)
        if entity is None:
            raise NotFound(entity_def.name, key)
        return entity

    def _exists(self, kind: str, key: Any) -> bool:
        return key in self._state.tables[kind]

    def _stamp(self, entity: Any, previous: Optional[Any]) -> Any:
        """Fill store-maintained fields."""
        now = self._clock()
        if isinstance(entity, Account) and entity.created_at is None:
            created = previous.created_at if previous is not None else now
            return dataclasses.replace(entity, created_at=created)
        if isinstance(entity, Order):
            changes: Dict[str, Any] = {}
            if entity.order_date is None:
                changes["order_date"] = now
            total = previous.total_amount if previous is not None else ZERO
            if entity.total_amount != total:
                changes["total_amount"] = total
            return dataclasses.replace(entity, **changes) if changes else entity
        if isinstance(entity, Stock):
            return dataclasses.replace(entity, last_updated=now)
        if isinstance(entity, Payment) and entity.payment_date is None:
            return dataclasses.replace(entity, payment_date=now)
        return entity

    def _validate(self, entity_def: EntityDef, entity: Any, key: Any) -> None:
        if isinstance(entity, Account):
            constraints.check_profile(entity.profile)
        constraints.check_bounds(entity_def, entity)
        constraints.check_references(self._registry, entity_def, entity, self._exists)
        self._check_unique(entity_def, entity, key)

    def _check_unique(self, entity_def: EntityDef, entity: Any, key: Any) -> None:
        for field_name in entity_def.unique:
            value = getattr(entity, field_name)
            if value is None:
                continue
            holder = self._state.unique[entity_def.name][field_name].get(value)
            if holder is not None and holder != key:
                raise UniqueViolation(entity_def.name, field_name, value, holder)

    def _put(self, entity_def: EntityDef, key: Any, entity: Any, previous: Optional[Any]) -> None:
        """Write a validated record and keep unique maps and index in step."""
        name = entity_def.name
        self._state.tables[name][key] = entity
        for field_name in entity_def.unique:
            values = self._state.unique[name][field_name]
            if previous is not None:
                old = getattr(previous, field_name)
                if values.get(old) == key:
                    del values[old]
            new = getattr(entity, field_name)
            if new is not None:
                values[new] = key
        if previous is None:
            self._state.index.index_entity(entity_def, key, entity)
        else:
            self._state.index.reindex_entity(entity_def, key, previous, entity)

    def _remove(self, entity_def: EntityDef, key: Any) -> Any:
        name = entity_def.name
        entity = self._state.tables[name].pop(key)
        for field_name in entity_def.unique:
            values = self._state.unique[name][field_name]
            value = getattr(entity, field_name)
            if values.get(value) == key:
                del values[value]
        self._state.index.unindex_entity(entity_def, key, entity)
        self._state.index.drop_parent(name, key)
        return entity

    def _plan_delete(self, root_def: EntityDef, root_key: Any) -> _DeletePlan:
        """Walk dependents depth-first, collecting deletions children-first."""
        plan = _DeletePlan()

        def visit(entity_def: EntityDef, key: Any) -> None:
            if (entity_def.name, key) in plan.doomed:
                return
            plan.doomed.add((entity_def.name, key))
            for fk in self._registry.foreign_keys_to(entity_def.name):
                dependents = [
                    child_key
                    for child_key in self._state.index.children(fk.name, key)
                    if (fk.child, child_key) not in plan.doomed
                ]
                if not dependents:
                    continue
                if fk.on_delete is OnDelete.RESTRICT:
                    raise ReferencedByDependents(entity_def.name, key, fk.child, dependents)
                if fk.on_delete is OnDelete.CASCADE:
                    child_def = self._entity_def(fk.child)
                    for child_key in dependents:
                        visit(child_def, child_key)
                else:
                    plan.nullify.extend((fk, child_key) for child_key in dependents)
            plan.deletions.append((entity_def, key))

        visit(root_def, root_key)
        return plan

    def _recompute_totals(self, order_ids: Set[Any]) -> Set[str]:
        """Set each order's total to the sum of its item subtotals.

        Returns:
            {"Order"} if any total changed, else an empty set
        """
        changed = False
        orders = self._state.tables["Order"]
        items = self._state.tables["OrderItem"]
        for order_id in order_ids:
            order = orders.get(order_id)
            if order is None:
                continue
            total = constraints.compute_order_total(
                items[k] for k in self._state.index.children(ORDER_ITEMS_FK, order_id)
            )
            if total != order.total_amount:
                orders[order_id] = dataclasses.replace(order, total_amount=total)
                changed = True
                logger.debug(f"Order {order_id} total {order.total_amount} -> {total}")
        return {"Order"} if changed else set()

    def _commit(self, touched: Set[str]) -> None:
        """Bump the version and mirror touched kinds to the sink."""
        self.version += 1
        if self._sink is None:
            return
        for kind in sorted(touched):
            records = [codec.to_dict(e) for e in self._state.tables[kind].values()]
            sequence = self._state.sequences.get(kind, 0)
            try:
                self._sink.save(kind, records, sequence)
            except Exception as e:
                logger.error(f"Snapshot sink failed for {kind}: {e}")
                raise PersistenceError(
                    f"Mutation committed in memory but saving {kind} failed: {e}", kind=kind
                ) from e
