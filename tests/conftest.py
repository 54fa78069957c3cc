"""
Shared fixtures for ecomdb tests.

The ``shop`` fixture builds a small but complete store:

    Accounts  1 Ana (Individual)      orders 1, 2   spend 330
              2 Bruno (Individual)    order 3       spend 100
              3 Carla (Individual)    order 5       spend 40
              4 Acme Retail (Business) order 4      spend 500
              5 Delta (Business)      order 6       spend 100
              6 Eva (Individual)      no orders
    Suppliers 1 Acme Tools, 2 Globex, 3 Initech (no products)
    Sellers   1 GLOBEX, 2 Bright Store
    Products  1 Anvil 150 (stock 50), 2 Hammer 40 (stock 30), 3 Widget 25 (stock 15)
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict

import pytest

from ecomdb.persist import InMemorySink
from ecomdb.schema import (
    Account,
    BusinessProfile,
    Delivery,
    DeliveryStatus,
    IndividualProfile,
    Order,
    OrderItem,
    Payment,
    PaymentMethod,
    PaymentMethodType,
    PaymentStatus,
    Product,
    Seller,
    Stock,
    Supplier,
)
from ecomdb.store import EntityStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@dataclass
class Shop:
    store: EntityStore
    sink: InMemorySink
    ids: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.ids[name]


def individual(email: str, first: str, last: str, national_id: str) -> Account:
    return Account(email=email, profile=IndividualProfile(first, last, national_id))


def business(email: str, legal: str, tax_id: str, trade: str = None) -> Account:
    return Account(email=email, profile=BusinessProfile(legal, tax_id, trade))


def build_shop() -> Shop:
    sink = InMemorySink()
    store = EntityStore(sink=sink, clock=fixed_clock)
    shop = Shop(store=store, sink=sink)
    ids = shop.ids

    ids["ana"] = store.create(individual("ana@example.com", "Ana", "Silva", "111")).id
    ids["bruno"] = store.create(individual("bruno@example.com", "Bruno", "Costa", "222")).id
    ids["carla"] = store.create(individual("carla@example.com", "Carla", "Dias", "333")).id
    ids["acme_retail"] = store.create(
        business("buy@acme-retail.example.com", "Acme Retail Ltda", "44.444", "Acme Retail")
    ).id
    ids["delta"] = store.create(business("delta@example.com", "Delta Comercio", "55.555")).id
    ids["eva"] = store.create(individual("eva@example.com", "Eva", "Lima", "666")).id

    ids["acme_tools"] = store.create(Supplier(name="Acme Tools", email="sales@acme.example.com")).id
    ids["globex"] = store.create(Supplier(name="Globex")).id
    ids["initech"] = store.create(Supplier(name="Initech")).id

    ids["globex_seller"] = store.create(Seller(name="GLOBEX ", email="shop@globex.example.com")).id
    ids["bright"] = store.create(Seller(name="Bright Store", email="hello@bright.example.com")).id
    store.link_supplier_seller(ids["acme_tools"], ids["bright"])
    store.link_supplier_seller(ids["globex"], ids["globex_seller"])

    ids["anvil"] = store.create(
        Product(sku="ANV-1", name="Anvil", price=150, supplier_id=ids["acme_tools"])
    ).id
    ids["hammer"] = store.create(
        Product(sku="HAM-1", name="Hammer", price=40, supplier_id=ids["acme_tools"])
    ).id
    ids["widget"] = store.create(
        Product(sku="WID-1", name="Widget", price=25, supplier_id=ids["globex"])
    ).id
    store.create(Stock(product_id=ids["anvil"], quantity=50))
    store.create(Stock(product_id=ids["hammer"], quantity=30))
    store.create(Stock(product_id=ids["widget"], quantity=15))

    store.link_product_supplier(ids["anvil"], ids["acme_tools"], "AT-ANV", 3)
    store.link_product_supplier(ids["hammer"], ids["acme_tools"], "AT-HAM", 2)
    store.link_product_supplier(ids["widget"], ids["globex"], "GX-WID", 5)
    store.link_product_supplier(ids["anvil"], ids["globex"], "GX-ANV", 10)

    ids["ana_card"] = store.create(
        PaymentMethod(
            account_id=ids["ana"],
            method_type=PaymentMethodType.CREDIT_CARD,
            provider="Visa",
            details={"last4": "4242"},
            is_default=True,
        )
    ).id
    ids["acme_transfer"] = store.create(
        PaymentMethod(account_id=ids["acme_retail"], method_type=PaymentMethodType.BANK_TRANSFER)
    ).id

    def order(name, account, when, lines, **extra):
        ids[name] = store.create(Order(account_id=ids[account], order_date=when, **extra)).id
        for product, quantity, discount in lines:
            store.create(
                OrderItem(
                    order_id=ids[name],
                    product_id=ids[product],
                    unit_price=store.get(Product, ids[product]).price,
                    quantity=quantity,
                    discount=discount,
                )
            )

    order(
        "o1", "ana", utc(2024, 1, 10), [("anvil", 2, 10)],
        seller_id=ids["bright"], payment_method_id=ids["ana_card"],
    )
    order("o2", "ana", utc(2024, 2, 1), [("hammer", 1, 0)])
    order("o3", "bruno", utc(2024, 1, 15), [("widget", 4, 0)], seller_id=ids["globex_seller"])
    order(
        "o4", "acme_retail", utc(2024, 3, 1), [("anvil", 3, 0), ("widget", 2, 0)],
        payment_method_id=ids["acme_transfer"],
    )
    order("o5", "carla", utc(2024, 2, 20), [("hammer", 1, 0)])
    order("o6", "delta", utc(2024, 2, 25), [("widget", 4, 0)])

    store.create(
        Delivery(
            order_id=ids["o1"], carrier="Correios", tracking_code="BR1",
            status=DeliveryStatus.DELIVERED, estimated_date=date(2024, 1, 15),
        )
    )
    store.create(
        Delivery(order_id=ids["o3"], carrier="DHL", tracking_code="DH3",
                 status=DeliveryStatus.IN_TRANSIT)
    )
    store.create(Delivery(order_id=ids["o4"], carrier="FedEx", tracking_code="FX4"))

    store.create(Payment(order_id=ids["o1"], amount=290, status=PaymentStatus.APPROVED))
    store.create(Payment(order_id=ids["o4"], amount=500))

    return shop


@pytest.fixture
def shop():
    """Store seeded with the reference shop."""
    return build_shop()


@pytest.fixture
def store():
    """Empty store with a fixed clock."""
    return EntityStore(clock=fixed_clock)
