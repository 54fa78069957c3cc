"""
Unit tests for the entity store.

Tests cover:
- Create/get/list/update with validation
- Identifier assignment
- Derived order totals
- Cascade, restrict and set-null deletes
- Atomicity of failed mutations
- Traversals and kind views
- Snapshots and stock adjustment
"""

import threading
from decimal import Decimal

import pytest

from ecomdb.errors import (
    ConstraintViolated,
    DanglingReference,
    InvalidShape,
    NotFound,
    PersistenceError,
    ReferencedByDependents,
    UniqueViolation,
)
from ecomdb.schema import codec
from ecomdb.schema.types import (
    Account,
    AccountType,
    Address,
    BusinessProfile,
    IndividualProfile,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductSupplier,
    Seller,
    Stock,
    Supplier,
    SupplierSeller,
)
from ecomdb.store import EntityStore
from tests.conftest import NOW, fixed_clock, individual


def _state(store):
    """Everything observable about a store, for before/after comparisons."""
    return {
        e.name: [codec.to_dict(r) for r in store.list(e.name)]
        for e in store.registry.entities()
    }


class TestCreate:
    """Tests for record creation."""

    def test_assigns_identifiers(self, store):
        """Identifiers start at 1 per kind."""
        a = store.create(Supplier(name="A"))
        b = store.create(Supplier(name="B"))
        s = store.create(Seller(name="S", email="s@example.com"))

        assert (a.id, b.id, s.id) == (1, 2, 1)
        assert store.get(Supplier, 2) == b

    def test_caller_identifier_rejected(self, store):
        """Ids are assigned by the store only."""
        with pytest.raises(InvalidShape, match="assigned by the store"):
            store.create(Supplier(name="A", id=7))

    def test_identifiers_never_reused(self, store):
        """Deleting the newest record does not free its id."""
        store.create(Supplier(name="A"))
        b = store.create(Supplier(name="B"))
        store.delete(Supplier, b.id)

        assert store.create(Supplier(name="C")).id == 3

    def test_stamps_created_at(self, store):
        """Accounts get a creation time from the clock."""
        acct = store.create(individual("a@example.com", "Ana", "Silva", "1"))
        assert acct.created_at == NOW

    def test_fields_normalised(self, store):
        """Money given as a string is stored as Decimal."""
        product = store.create(Product(sku="A", name="A", price="9.90"))
        assert product.price == Decimal("9.90")

    def test_unique_email(self, store):
        """Two accounts cannot share an email."""
        store.create(individual("a@example.com", "Ana", "Silva", "1"))
        with pytest.raises(UniqueViolation) as exc_info:
            store.create(individual("a@example.com", "Bia", "Melo", "2"))
        assert exc_info.value.field_name == "email"
        assert exc_info.value.existing_key == 1

    def test_one_stock_record_per_product(self, store):
        """Stock.product_id is unique."""
        p = store.create(Product(sku="A", name="A", price=1))
        store.create(Stock(product_id=p.id, quantity=1))
        with pytest.raises(UniqueViolation):
            store.create(Stock(product_id=p.id, quantity=2))

    def test_duplicate_link_rejected(self, store):
        """A link pair can exist once."""
        p = store.create(Product(sku="A", name="A", price=1))
        s = store.create(Supplier(name="S"))
        store.link_product_supplier(p.id, s.id)
        with pytest.raises(UniqueViolation):
            store.link_product_supplier(p.id, s.id)

    def test_dangling_reference(self, store):
        """References must resolve."""
        with pytest.raises(DanglingReference) as exc_info:
            store.create(Order(account_id=42))
        assert exc_info.value.target_key == 42

    def test_bound_violation_names_field(self, store):
        """Negative prices are rejected with the field name."""
        with pytest.raises(ConstraintViolated) as exc_info:
            store.create(Product(sku="A", name="A", price=-5))
        assert exc_info.value.field_name == "price"

    @pytest.mark.parametrize("value", ["NaN", "Infinity"])
    def test_non_finite_price_rejected(self, store, value):
        """NaN and infinite prices fail as InvalidShape and store nothing."""
        with pytest.raises(InvalidShape, match="'price' must be a finite number"):
            store.create_from_payload("Product", {"sku": "A", "name": "A", "price": value})
        assert store.count(Product) == 0

    @pytest.mark.parametrize(
        "kind,payload",
        [
            ("OrderItem", {"unit_price": "Infinity"}),
            ("OrderItem", {"unit_price": "10", "discount": "NaN"}),
            ("Payment", {"amount": "-Infinity"}),
        ],
    )
    def test_non_finite_amounts_rejected(self, shop, kind, payload):
        """Order totals never become NaN or infinite."""
        before = _state(shop.store)
        refs = {"OrderItem": {"product_id": shop["anvil"]}, "Payment": {}}[kind]

        with pytest.raises(InvalidShape, match="must be a finite number"):
            shop.store.create_from_payload(kind, {"order_id": shop["o2"], **refs, **payload})

        assert _state(shop.store) == before

    def test_failed_create_changes_nothing(self, shop):
        """A rejected create leaves every table untouched."""
        before = _state(shop.store)
        version = shop.store.version

        with pytest.raises(ConstraintViolated):
            shop.store.create(
                OrderItem(order_id=shop["o1"], product_id=shop["anvil"], unit_price=1, discount=5)
            )

        assert _state(shop.store) == before
        assert shop.store.version == version

    def test_failed_create_does_not_consume_id(self, store):
        """Identifiers are only handed out on success."""
        with pytest.raises(ConstraintViolated):
            store.create(Supplier(name=""))
        assert store.create(Supplier(name="A")).id == 1

    def test_create_from_payload(self, store):
        """Flat payloads create typed records."""
        acct = store.create_from_payload(
            "Account",
            {"email": "biz@example.com", "type": "Business", "legal_name": "Acme", "tax_id": "9"},
        )
        assert acct.type is AccountType.BUSINESS

    def test_payload_with_both_groups_rejected(self, store):
        """Accounts carrying both field groups are invalid."""
        with pytest.raises(InvalidShape, match="got both"):
            store.create_from_payload(
                "Account",
                {
                    "email": "x@example.com",
                    "first_name": "Ana",
                    "last_name": "Silva",
                    "national_id": "1",
                    "legal_name": "Acme",
                    "tax_id": "9",
                },
            )
        assert store.count(Account) == 0

    def test_payload_derived_fields_dropped(self, store):
        """A caller-supplied subtotal or total is ignored."""
        acct = store.create(individual("a@example.com", "Ana", "Silva", "1"))
        p = store.create(Product(sku="A", name="A", price=10))
        order = store.create_from_payload("Order", {"account_id": acct.id, "total_amount": "999"})
        item = store.create_from_payload(
            "OrderItem",
            {"order_id": order.id, "product_id": p.id, "unit_price": 10, "quantity": 2, "subtotal": 1},
        )

        assert item.subtotal == Decimal("20")
        assert store.get(Order, order.id).total_amount == Decimal("20")

    def test_unknown_kind(self, store):
        """Unknown kind names are invalid."""
        with pytest.raises(InvalidShape, match="Unknown entity kind 'Coupon'"):
            store.list("Coupon")


class TestOrderTotals:
    """Tests for derived order totals."""

    @pytest.fixture
    def order_setup(self, store):
        acct = store.create(individual("a@example.com", "Ana", "Silva", "1"))
        anvil = store.create(Product(sku="ANV", name="Anvil", price=150))
        hammer = store.create(Product(sku="HAM", name="Hammer", price=40))
        order = store.create(Order(account_id=acct.id))
        return store, order, anvil, hammer

    def test_total_follows_items(self, order_setup):
        """Adding items recomputes the total."""
        store, order, anvil, hammer = order_setup

        store.create(OrderItem(order.id, anvil.id, unit_price=150, quantity=2, discount=10))
        assert store.get(Order, order.id).total_amount == Decimal("290")

        store.create(OrderItem(order.id, hammer.id, unit_price=40))
        assert store.get(Order, order.id).total_amount == Decimal("330")

    def test_total_follows_item_update(self, order_setup):
        """Changing quantity recomputes subtotal and total."""
        store, order, anvil, _ = order_setup
        item = store.create(OrderItem(order.id, anvil.id, unit_price=150, quantity=2, discount=10))

        updated = store.update(OrderItem, item.id, {"quantity": 1})

        assert updated.subtotal == Decimal("140")
        assert store.get(Order, order.id).total_amount == Decimal("140")

    def test_total_follows_item_delete(self, order_setup):
        """Removing an item recomputes the total."""
        store, order, anvil, hammer = order_setup
        store.create(OrderItem(order.id, anvil.id, unit_price=150))
        item = store.create(OrderItem(order.id, hammer.id, unit_price=40))

        store.delete(OrderItem, item.id)

        assert store.get(Order, order.id).total_amount == Decimal("150")

    def test_item_moved_between_orders(self, order_setup):
        """Moving an item recomputes both orders."""
        store, first, anvil, _ = order_setup
        second = store.create(Order(account_id=first.account_id))
        item = store.create(OrderItem(first.id, anvil.id, unit_price=150))

        store.update(OrderItem, item.id, {"order_id": second.id})

        assert store.get(Order, first.id).total_amount == Decimal("0")
        assert store.get(Order, second.id).total_amount == Decimal("150")

    def test_total_not_patchable(self, order_setup):
        """Patching total_amount is ignored."""
        store, order, anvil, _ = order_setup
        store.create(OrderItem(order.id, anvil.id, unit_price=150))

        updated = store.update(Order, order.id, {"total_amount": 1, "status": "Confirmed"})

        assert updated.total_amount == Decimal("150")
        assert updated.status is OrderStatus.CONFIRMED

    def test_explicit_total_replaced_on_create(self, order_setup):
        """A new order starts at zero whatever the caller passed."""
        store, order, _, _ = order_setup
        other = store.create(Order(account_id=order.account_id, total_amount=Decimal("77")))
        assert other.total_amount == Decimal("0")


class TestUpdate:
    """Tests for patches."""

    def test_update_returns_new_record(self, shop):
        """Updates replace the stored record."""
        seller = shop.store.update(Seller, shop["bright"], {"name": "Brighter Store"})
        assert shop.store.get(Seller, shop["bright"]) == seller
        assert seller.name == "Brighter Store"

    def test_non_finite_patch_rejected(self, shop):
        """Patching a price to infinity is rejected."""
        with pytest.raises(InvalidShape, match="must be a finite number"):
            shop.store.update(Product, shop["anvil"], {"price": "Infinity"})
        assert shop.store.get(Product, shop["anvil"]).price == Decimal("150")

    def test_update_missing(self, store):
        """Updating a missing record raises NotFound."""
        with pytest.raises(NotFound):
            store.update(Supplier, 9, {"name": "X"})

    def test_update_unique_conflict(self, shop):
        """Updates keep unique attributes unique."""
        with pytest.raises(UniqueViolation):
            shop.store.update(Product, shop["hammer"], {"sku": "ANV-1"})
        assert shop.store.get(Product, shop["hammer"]).sku == "HAM-1"

    def test_update_frees_old_unique_value(self, shop):
        """A changed unique value can be reused."""
        shop.store.update(Product, shop["hammer"], {"sku": "HAM-2"})
        p = shop.store.create(Product(sku="HAM-1", name="Hammer classic", price=35))
        assert p.sku == "HAM-1"

    def test_account_switches_variant(self, shop):
        """A profile patch replaces the whole variant."""
        acct = shop.store.update(
            Account, shop["eva"], {"profile": BusinessProfile("Eva Lima ME", "77.777")}
        )
        assert acct.type is AccountType.BUSINESS
        assert acct.created_at == NOW

    def test_account_flat_patch_cannot_mix_groups(self, shop):
        """Adding business fields to an individual is invalid."""
        with pytest.raises(InvalidShape, match="got both"):
            shop.store.update(Account, shop["eva"], {"tax_id": "1"})

    def test_reference_update_checked(self, shop):
        """Updated references must resolve."""
        with pytest.raises(DanglingReference):
            shop.store.update(Order, shop["o2"], {"seller_id": 99})

    def test_update_moves_index_entry(self, shop):
        """Changing a reference updates traversals."""
        shop.store.update(Order, shop["o2"], {"account_id": shop["eva"]})

        assert [o.id for o in shop.store.orders_for_account(shop["ana"])] == [shop["o1"]]
        assert [o.id for o in shop.store.orders_for_account(shop["eva"])] == [shop["o2"]]

    def test_link_key_not_patchable(self, shop):
        """Composite key fields of links cannot change."""
        with pytest.raises(InvalidShape, match="part of the ProductSupplier key"):
            shop.store.update(
                ProductSupplier, (shop["anvil"], shop["globex"]), {"supplier_id": shop["initech"]}
            )

    def test_link_attributes_patchable(self, shop):
        """Non-key link attributes can change."""
        link = shop.store.update(
            ProductSupplier, (shop["anvil"], shop["globex"]), {"lead_time_days": 4}
        )
        assert link.lead_time_days == 4


class TestDelete:
    """Tests for deletes and their policies."""

    def test_restrict_blocks_account_with_orders(self, shop):
        """Accounts with orders cannot be deleted."""
        before = _state(shop.store)

        with pytest.raises(ReferencedByDependents) as exc_info:
            shop.store.delete(Account, shop["ana"])

        assert exc_info.value.dependent_kind == "Order"
        assert exc_info.value.dependents == [shop["o1"], shop["o2"]]
        assert _state(shop.store) == before

    def test_cascade_account_without_orders(self, shop):
        """Addresses and payment methods go with their account."""
        store = shop.store
        addr = store.create(Address(shop["eva"], "Rua A 1", "Recife", "PE", "50000-000"))

        removed = store.delete(Account, shop["eva"])

        assert removed == [("Address", addr.id), ("Account", shop["eva"])]
        assert store.find(Address, addr.id) is None

    def test_cascade_order(self, shop):
        """Items, delivery and payments go with their order."""
        store = shop.store
        removed = store.delete(Order, shop["o4"])

        kinds = [kind for kind, _ in removed]
        assert kinds == ["OrderItem", "OrderItem", "Delivery", "Payment", "Order"]
        assert store.items_for_order(shop["o4"]) == []
        assert store.delivery_for_order(shop["o4"]) is None

    def test_restrict_product_in_orders(self, shop):
        """Products referenced by order items cannot be deleted."""
        with pytest.raises(ReferencedByDependents) as exc_info:
            shop.store.delete(Product, shop["hammer"])
        assert exc_info.value.dependent_kind == "OrderItem"
        assert shop.store.stock_for_product(shop["hammer"]) is not None

    def test_cascade_product_without_orders(self, shop):
        """Stock and supplier links go with an unsold product."""
        store = shop.store
        p = store.create(Product(sku="NEW", name="New", price=1, supplier_id=shop["globex"]))
        store.create(Stock(product_id=p.id, quantity=3))
        store.link_product_supplier(p.id, shop["initech"])

        removed = store.delete(Product, p.id)

        assert [k for k, _ in removed] == ["ProductSupplier", "Stock", "Product"]
        assert store.products_for_supplier(shop["initech"]) == []

    def test_set_null_on_supplier_delete(self, shop):
        """Deleting a supplier clears products' principal supplier."""
        store = shop.store
        removed = store.delete(Supplier, shop["acme_tools"])

        assert store.get(Product, shop["anvil"]).supplier_id is None
        assert store.get(Product, shop["hammer"]).supplier_id is None
        assert ("ProductSupplier", (shop["anvil"], shop["acme_tools"])) in removed
        assert ("SupplierSeller", (shop["acme_tools"], shop["bright"])) in removed
        assert [s.id for s in store.suppliers_for_product(shop["anvil"])] == [shop["globex"]]
        assert store.principal_products(shop["acme_tools"]) == []

    def test_set_null_on_seller_delete(self, shop):
        """Deleting a seller detaches its orders."""
        store = shop.store
        store.delete(Seller, shop["bright"])

        assert store.get(Order, shop["o1"]).seller_id is None
        assert store.suppliers_for_seller(shop["bright"]) == []

    def test_set_null_on_payment_method_delete(self, shop):
        """Deleting a payment method keeps the orders that used it."""
        store = shop.store
        store.delete("PaymentMethod", shop["ana_card"])
        assert store.get(Order, shop["o1"]).payment_method_id is None

    def test_delete_missing(self, store):
        """Deleting a missing record raises NotFound."""
        with pytest.raises(NotFound):
            store.delete(Order, 1)

    def test_round_trip_leaves_no_trace(self, shop):
        """Create then delete restores observable state."""
        store = shop.store
        before = _state(store)
        stats = store.snapshot()._state.index.stats()

        order = store.create(Order(account_id=shop["eva"], seller_id=shop["bright"]))
        store.create(OrderItem(order.id, shop["widget"], unit_price=25))
        store.delete(Order, order.id)

        assert _state(store) == before
        assert store.references(Order, order.id) == []
        assert store.snapshot()._state.index.stats() == stats

    def test_delete_link(self, shop):
        """Links are deleted by their composite key."""
        store = shop.store
        store.delete(SupplierSeller, (shop["globex"], shop["globex_seller"]))
        assert store.sellers_for_supplier(shop["globex"]) == []


class TestTraversals:
    """Tests for index-backed traversals."""

    def test_orders_for_account(self, shop):
        """Orders come back in creation order."""
        orders = shop.store.orders_for_account(shop["ana"])
        assert [o.id for o in orders] == [shop["o1"], shop["o2"]]

    def test_many_to_many(self, shop):
        """Products and suppliers traverse through the link kind."""
        store = shop.store
        assert [s.name for s in store.suppliers_for_product(shop["anvil"])] == ["Acme Tools", "Globex"]
        assert [p.name for p in store.products_for_supplier(shop["globex"])] == ["Widget", "Anvil"]
        assert [s.name for s in store.sellers_for_supplier(shop["acme_tools"])] == ["Bright Store"]

    def test_account_children(self, shop):
        """Payment methods and payments are reachable from their parents."""
        store = shop.store
        assert [m.id for m in store.payment_methods_for_account(shop["ana"])] == [shop["ana_card"]]
        assert [p.amount for p in store.payments_for_order(shop["o1"])] == [Decimal("290")]
        assert store.addresses_for_account(shop["ana"]) == []

    def test_list_with_predicate(self, shop):
        """list filters with a predicate."""
        cheap = shop.store.list(Product, lambda p: p.price < 50)
        assert [p.sku for p in cheap] == ["HAM-1", "WID-1"]

    def test_unknown_foreign_key(self, shop):
        """children() rejects unknown FK names."""
        with pytest.raises(InvalidShape, match="Unknown foreign key"):
            shop.store.children("order_customer", 1)


class TestKindView:
    """Tests for KindView."""

    def test_view_operations(self, store):
        """A view binds create/get/update/delete/list to one kind."""
        suppliers = store.view(Supplier)
        a = suppliers.create(Supplier(name="A"))
        b = suppliers.create({"name": "B"})
        suppliers.update(a.id, {"contact": "Ana"})

        assert suppliers.get(a.id).contact == "Ana"
        assert len(suppliers) == 2
        assert [s.name for s in suppliers] == ["A", "B"]

        suppliers.delete(b.id)
        assert suppliers.find(b.id) is None

    def test_view_rejects_other_kinds(self, store):
        """Instances of another kind are rejected."""
        with pytest.raises(InvalidShape, match="Expected Supplier"):
            store.view("Supplier").create(Seller(name="S", email="s@example.com"))


class TestStock:
    """Tests for stock adjustment."""

    def test_adjust_existing(self, shop):
        """Deltas are applied to the current quantity."""
        stock = shop.store.adjust_stock(shop["widget"], -5)
        assert stock.quantity == 10
        assert stock.last_updated == NOW

    def test_adjust_below_zero(self, shop):
        """Stock cannot go negative."""
        with pytest.raises(ConstraintViolated) as exc_info:
            shop.store.adjust_stock(shop["widget"], -16)
        assert exc_info.value.field_name == "quantity"
        assert shop.store.stock_for_product(shop["widget"]).quantity == 15

    def test_adjust_creates_record(self, shop):
        """A product without stock gets a record on a positive delta."""
        p = shop.store.create(Product(sku="NEW", name="New", price=1))
        assert shop.store.adjust_stock(p.id, 4).quantity == 4

    @pytest.mark.parametrize("delta", [-1, 0, 3])
    def test_adjust_unknown_product(self, shop, delta):
        """Unknown products are dangling references whatever the delta."""
        with pytest.raises(DanglingReference) as exc_info:
            shop.store.adjust_stock(999, delta)
        assert exc_info.value.target_kind == "Product"


class TestSnapshot:
    """Tests for snapshots and concurrency."""

    def test_snapshot_is_isolated(self, shop):
        """Later mutations do not show in an earlier snapshot."""
        snap = shop.store.snapshot()
        shop.store.delete(Order, shop["o6"])

        assert snap.find(Order, shop["o6"]) is not None
        assert [o.id for o in snap.orders_for_account(shop["delta"])] == [shop["o6"]]
        assert shop.store.find(Order, shop["o6"]) is None
        assert snap.version < shop.store.version

    def test_concurrent_stock_adjustments(self, shop):
        """Concurrent deltas are all applied."""
        store = shop.store

        def worker():
            for _ in range(50):
                store.adjust_stock(shop["anvil"], 1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.stock_for_product(shop["anvil"]).quantity == 250


class TestSink:
    """Tests for the snapshot sink hook."""

    def test_touched_kinds_saved(self, shop):
        """Item writes save both items and orders."""
        saves = dict(shop.sink.saves)
        shop.store.create(OrderItem(shop["o2"], shop["widget"], unit_price=25))

        assert shop.sink.saves["OrderItem"] == saves["OrderItem"] + 1
        assert shop.sink.saves["Order"] == saves["Order"] + 1
        assert shop.sink.saves["Supplier"] == saves["Supplier"]

    def test_sink_failure_after_commit(self):
        """Sink errors surface as PersistenceError; memory keeps the write."""

        class FailingSink:
            def save(self, kind, records, sequence):
                raise OSError("disk full")

            def load(self):
                raise AssertionError("not used")

        store = EntityStore(sink=FailingSink(), clock=fixed_clock)
        with pytest.raises(PersistenceError, match="disk full"):
            store.create(Supplier(name="A"))
        assert store.get(Supplier, 1).name == "A"

    def test_restore_rebuilds_store(self, shop):
        """A new store restored from the sink matches the original."""
        clone = EntityStore(clock=fixed_clock)
        loaded = clone.restore(shop.sink)

        assert loaded == sum(shop.store.count(e.name) for e in shop.store.registry.entities())
        assert _state(clone) == _state(shop.store)
        assert [o.id for o in clone.orders_for_account(shop["ana"])] == [shop["o1"], shop["o2"]]
        assert clone.create(Supplier(name="Umbrella")).id == 4

    def test_restore_without_sink(self, store):
        """restore() needs a sink."""
        with pytest.raises(PersistenceError, match="No sink"):
            store.restore()

    def test_restore_invalid_snapshot_keeps_state(self, shop):
        """A snapshot with a dangling reference is refused."""
        from ecomdb.persist import InMemorySink

        bad = InMemorySink()
        bad.save("Order", [{"account_id": 99, "id": 1}], 1)
        before = _state(shop.store)

        with pytest.raises(DanglingReference):
            shop.store.restore(bad)
        assert _state(shop.store) == before


def test_individual_profile_round_trip(store):
    """A stored individual keeps its profile."""
    acct = store.create(Account(email="a@example.com", profile=IndividualProfile("Ana", "Silva", "1")))
    assert store.get(Account, acct.id).profile.last_name == "Silva"
