"""
Read-only reports over a store snapshot.

Each report is a pure function of a StoreSnapshot plus explicit
parameters and returns a list of frozen row records. Reports never mutate
the store and never fail on well-formed input; an empty list is a valid
answer.

Join semantics follow the usual SQL reading:
- "per account" reports keep accounts without orders (left join)
- order/delivery keeps orders without a delivery (left join, None fields)
- thresholds on aggregates are applied after grouping

Invariants:
    - Output order is deterministic (ties broken by ascending id)
    - Money values are Decimal; derived charges are rounded to cents

Example:
    >>> snap = store.snapshot()
    >>> [row.account_id for row in top_spenders(snap, 3)]
    [4, 1, 2]
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from ..schema.types import ZERO, AccountType, DeliveryStatus, OrderStatus
from ..store.entity_store import StoreSnapshot

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.18")
SHIPPING_FEE = Decimal("15.00")
CENTS = Decimal("0.01")


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Row records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountOrders:
    account_id: int
    display_name: str
    email: str
    account_type: AccountType
    order_count: int
    total_spent: Decimal


@dataclass(frozen=True)
class SellerSupplierPair:
    """A seller/supplier pair found either through the link table or by name."""

    seller_id: int
    seller_name: str
    supplier_id: int
    supplier_name: str


@dataclass(frozen=True)
class CatalogRow:
    product_id: int
    sku: str
    name: str
    price: Decimal
    supplier_name: Optional[str]
    stock_quantity: int


@dataclass(frozen=True)
class SupplierProductRow:
    supplier_id: int
    supplier_name: str
    product_id: Optional[int]
    product_name: Optional[str]
    supplier_sku: Optional[str]
    lead_time_days: Optional[int]


@dataclass(frozen=True)
class OrderTotalRow:
    order_id: int
    account_id: int
    item_count: int
    items_total: Decimal


@dataclass(frozen=True)
class AccountSpend:
    account_id: int
    display_name: str
    total_spent: Decimal
    order_count: int


@dataclass(frozen=True)
class LowStockRow:
    product_id: int
    sku: str
    name: str
    quantity: int


@dataclass(frozen=True)
class OrderDeliveryRow:
    order_id: int
    account_id: int
    order_date: datetime
    order_status: OrderStatus
    delivery_status: Optional[DeliveryStatus]
    carrier: Optional[str]
    tracking_code: Optional[str]


@dataclass(frozen=True)
class SupplierRevenue:
    supplier_id: int
    supplier_name: str
    revenue: Decimal
    order_count: int


@dataclass(frozen=True)
class OrderItemStats:
    order_id: int
    item_count: int
    average_quantity: Decimal


@dataclass(frozen=True)
class LatestOrder:
    account_id: int
    latest_order_id: Optional[int]


@dataclass(frozen=True)
class AccountOrderCount:
    account_id: int
    display_name: str
    order_count: int


@dataclass(frozen=True)
class OrderSummary:
    order_id: int
    account_id: int
    status: OrderStatus
    total_amount: Decimal


@dataclass(frozen=True)
class OrderCharges:
    """Order total with tax and shipping added; nothing here is stored."""

    order_id: int
    total_amount: Decimal
    tax: Decimal
    shipping: Decimal
    grand_total: Decimal


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def orders_per_account(snap: StoreSnapshot) -> List[AccountOrders]:
    """Order count and total spend per account, accounts without orders included.

    Ordered by order count descending, then account id.
    """
    rows = []
    for account in snap.list("Account"):
        orders = snap.orders_for_account(account.id)
        rows.append(
            AccountOrders(
                account_id=account.id,
                display_name=account.display_name,
                email=account.email,
                account_type=account.type,
                order_count=len(orders),
                total_spent=sum((o.total_amount for o in orders), ZERO),
            )
        )
    rows.sort(key=lambda r: (-r.order_count, r.account_id))
    return rows


def sellers_linked_as_suppliers(snap: StoreSnapshot) -> List[SellerSupplierPair]:
    """Seller/supplier pairs recorded in the SupplierSeller link table."""
    rows = []
    for link in snap.list("SupplierSeller"):
        seller = snap.get("Seller", link.seller_id)
        supplier = snap.get("Supplier", link.supplier_id)
        rows.append(SellerSupplierPair(seller.id, seller.name, supplier.id, supplier.name))
    rows.sort(key=lambda r: (r.seller_id, r.supplier_id))
    return rows


def _name_key(name: str) -> str:
    return name.strip().casefold()


def sellers_matching_supplier_names(snap: StoreSnapshot) -> List[SellerSupplierPair]:
    """Seller/supplier pairs whose names are equal ignoring case.

    This is a heuristic independent of the link table; the two results are
    not reconciled.
    """
    suppliers_by_name: Dict[str, List[Any]] = defaultdict(list)
    for supplier in snap.list("Supplier"):
        suppliers_by_name[_name_key(supplier.name)].append(supplier)

    rows = []
    for seller in snap.list("Seller"):
        for supplier in suppliers_by_name.get(_name_key(seller.name), []):
            rows.append(SellerSupplierPair(seller.id, seller.name, supplier.id, supplier.name))
    rows.sort(key=lambda r: (r.seller_id, r.supplier_id))
    return rows


def product_catalog(snap: StoreSnapshot) -> List[CatalogRow]:
    """Products with principal supplier name and stock (0 without a stock record)."""
    rows = []
    for product in snap.list("Product"):
        supplier = snap.find("Supplier", product.supplier_id) if product.supplier_id else None
        stock = snap.stock_for_product(product.id)
        rows.append(
            CatalogRow(
                product_id=product.id,
                sku=product.sku,
                name=product.name,
                price=product.price,
                supplier_name=supplier.name if supplier else None,
                stock_quantity=stock.quantity if stock else 0,
            )
        )
    rows.sort(key=lambda r: (r.name, r.product_id))
    return rows


def supplier_product_fanout(snap: StoreSnapshot) -> List[SupplierProductRow]:
    """Every supplier with every product it supplies through the link table.

    Suppliers without links appear once with empty product fields.
    """
    rows = []
    for supplier in snap.list("Supplier"):
        links = snap.children("product_supplier_link_supplier", supplier.id)
        if not links:
            rows.append(SupplierProductRow(supplier.id, supplier.name, None, None, None, None))
            continue
        for link in links:
            product = snap.get("Product", link.product_id)
            rows.append(
                SupplierProductRow(
                    supplier_id=supplier.id,
                    supplier_name=supplier.name,
                    product_id=product.id,
                    product_name=product.name,
                    supplier_sku=link.supplier_sku,
                    lead_time_days=link.lead_time_days,
                )
            )
    rows.sort(key=lambda r: (r.supplier_name, r.supplier_id, r.product_name or "", r.product_id or 0))
    return rows


def orders_above_total(snap: StoreSnapshot, threshold: Decimal | int | str) -> List[OrderTotalRow]:
    """Orders whose summed item subtotals exceed ``threshold``.

    Grouped over order items first, then filtered, so orders without items
    never appear. Ordered by total descending, then order id.
    """
    limit = Decimal(str(threshold))
    rows = []
    for order in snap.list("Order"):
        items = snap.items_for_order(order.id)
        if not items:
            continue
        running = ZERO
        for item in items:
            running += item.subtotal
        if running > limit:
            rows.append(OrderTotalRow(order.id, order.account_id, len(items), running))
    rows.sort(key=lambda r: (-r.items_total, r.order_id))
    return rows


def top_spenders(snap: StoreSnapshot, n: int) -> List[AccountSpend]:
    """The ``n`` accounts with the highest total spend.

    Ties are broken by ascending account id.

    Raises:
        ValueError: If n is negative
    """
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    rows = []
    for account in snap.list("Account"):
        orders = snap.orders_for_account(account.id)
        rows.append(
            AccountSpend(
                account_id=account.id,
                display_name=account.display_name,
                total_spent=sum((o.total_amount for o in orders), ZERO),
                order_count=len(orders),
            )
        )
    rows.sort(key=lambda r: (-r.total_spent, r.account_id))
    return rows[:n]


def low_stock(snap: StoreSnapshot, threshold: int) -> List[LowStockRow]:
    """Products whose stock quantity is below ``threshold``, lowest first."""
    rows = []
    for stock in snap.list("Stock", lambda s: s.quantity < threshold):
        product = snap.get("Product", stock.product_id)
        rows.append(LowStockRow(product.id, product.sku, product.name, stock.quantity))
    rows.sort(key=lambda r: (r.quantity, r.product_id))
    return rows


def order_deliveries(snap: StoreSnapshot) -> List[OrderDeliveryRow]:
    """Orders with delivery status and tracking code, newest first.

    Orders without a delivery keep None delivery fields.
    """
    rows = []
    for order in snap.list("Order"):
        delivery = snap.delivery_for_order(order.id)
        rows.append(
            OrderDeliveryRow(
                order_id=order.id,
                account_id=order.account_id,
                order_date=order.order_date,
                order_status=order.status,
                delivery_status=delivery.status if delivery else None,
                carrier=delivery.carrier if delivery else None,
                tracking_code=delivery.tracking_code if delivery else None,
            )
        )
    rows.sort(key=lambda r: (r.order_date, r.order_id), reverse=True)
    return rows


def supplier_revenue(snap: StoreSnapshot) -> List[SupplierRevenue]:
    """Revenue and distinct order count per principal supplier.

    Each order item is attributed to its product's principal supplier;
    items of products without one are not counted. Ordered by revenue
    descending, then supplier id.
    """
    revenue: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    orders: Dict[int, set] = defaultdict(set)
    for item in snap.list("OrderItem"):
        product = snap.get("Product", item.product_id)
        if product.supplier_id is None:
            continue
        revenue[product.supplier_id] += item.subtotal
        orders[product.supplier_id].add(item.order_id)

    rows = [
        SupplierRevenue(
            supplier_id=supplier_id,
            supplier_name=snap.get("Supplier", supplier_id).name,
            revenue=amount,
            order_count=len(orders[supplier_id]),
        )
        for supplier_id, amount in revenue.items()
    ]
    rows.sort(key=lambda r: (-r.revenue, r.supplier_id))
    return rows


def order_item_stats(snap: StoreSnapshot) -> List[OrderItemStats]:
    """Average item quantity and item count for orders with at least one item."""
    rows = []
    for order in snap.list("Order"):
        items = snap.items_for_order(order.id)
        if not items:
            continue
        total_quantity = sum(item.quantity for item in items)
        rows.append(
            OrderItemStats(
                order_id=order.id,
                item_count=len(items),
                average_quantity=_cents(Decimal(total_quantity) / len(items)),
            )
        )
    return rows


def latest_order_per_account(snap: StoreSnapshot) -> List[LatestOrder]:
    """Each account's most recent order id (None if it has no orders)."""
    rows = []
    for account in snap.list("Account"):
        orders = snap.orders_for_account(account.id)
        latest = max(orders, key=lambda o: (o.order_date, o.id), default=None)
        rows.append(LatestOrder(account.id, latest.id if latest else None))
    return rows


def order_counts_for_type(
    snap: StoreSnapshot,
    account_type: AccountType | str = AccountType.INDIVIDUAL,
) -> List[AccountOrderCount]:
    """Order counts for accounts of one type, most orders first."""
    wanted = AccountType(account_type) if isinstance(account_type, str) else account_type
    rows = [
        AccountOrderCount(a.id, a.display_name, len(snap.orders_for_account(a.id)))
        for a in snap.list("Account", lambda a: a.type is wanted)
    ]
    rows.sort(key=lambda r: (-r.order_count, r.account_id))
    return rows


def orders_without_payment_method(snap: StoreSnapshot) -> List[OrderSummary]:
    return [
        OrderSummary(o.id, o.account_id, o.status, o.total_amount)
        for o in snap.list("Order", lambda o: o.payment_method_id is None)
    ]


def orders_with_charges(
    snap: StoreSnapshot,
    tax_rate: Decimal | str = TAX_RATE,
    shipping_fee: Decimal | str = SHIPPING_FEE,
) -> List[OrderCharges]:
    """Each order's total with tax and a flat shipping fee added.

    Tax is rounded half-up to cents. The stored total is left as is.
    """
    rate = Decimal(str(tax_rate))
    shipping = Decimal(str(shipping_fee))
    rows = []
    for order in snap.list("Order"):
        tax = _cents(order.total_amount * rate)
        rows.append(
            OrderCharges(
                order_id=order.id,
                total_amount=order.total_amount,
                tax=tax,
                shipping=shipping,
                grand_total=order.total_amount + tax + shipping,
            )
        )
    return rows


REPORTS: Dict[str, Callable[..., List[Any]]] = {
    "orders-per-account": orders_per_account,
    "sellers-linked": sellers_linked_as_suppliers,
    "sellers-by-name": sellers_matching_supplier_names,
    "catalog": product_catalog,
    "supplier-products": supplier_product_fanout,
    "orders-above": orders_above_total,
    "top-spenders": top_spenders,
    "low-stock": low_stock,
    "deliveries": order_deliveries,
    "supplier-revenue": supplier_revenue,
    "item-stats": order_item_stats,
    "latest-orders": latest_order_per_account,
    "orders-by-type": order_counts_for_type,
    "unpaid-orders": orders_without_payment_method,
    "order-charges": orders_with_charges,
}
