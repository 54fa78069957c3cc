"""
The commerce model: entity kinds, bounds and foreign keys.

Every store gets its own registry from default_registry(); there is no
process-wide model state.

Delete policies:
    Account  -> Address, PaymentMethod cascade; Order restricts
    Order    -> OrderItem, Delivery, Payment cascade
    Product  -> Stock, ProductSupplier cascade; OrderItem restricts
    Supplier -> ProductSupplier, SupplierSeller cascade; Product.supplier_id set null
    Seller   -> SupplierSeller cascade; Order.seller_id set null
    PaymentMethod -> Order.payment_method_id set null
"""

from __future__ import annotations

from .registry import EntityDef, ForeignKeyDef, ModelRegistry, OnDelete, bound
from .types import (
    Account,
    Address,
    Delivery,
    Order,
    OrderItem,
    Payment,
    PaymentMethod,
    Product,
    ProductSupplier,
    Seller,
    Stock,
    Supplier,
    SupplierSeller,
)

ENTITY_DEFS: tuple[EntityDef, ...] = (
    EntityDef("Account", Account, unique=("email",), bounds=(bound("email", non_empty=True),)),
    EntityDef("Address", Address),
    EntityDef("PaymentMethod", PaymentMethod),
    EntityDef("Supplier", Supplier, bounds=(bound("name", non_empty=True),)),
    EntityDef(
        "Seller",
        Seller,
        unique=("email",),
        bounds=(bound("name", non_empty=True), bound("email", non_empty=True)),
    ),
    EntityDef(
        "SupplierSeller",
        SupplierSeller,
        key_fields=("supplier_id", "seller_id"),
        description="Which sellers a supplier supplies",
    ),
    EntityDef(
        "Product",
        Product,
        unique=("sku",),
        bounds=(bound("sku", non_empty=True), bound("price", ge=0)),
    ),
    EntityDef(
        "ProductSupplier",
        ProductSupplier,
        key_fields=("product_id", "supplier_id"),
        bounds=(bound("lead_time_days", ge=0),),
        description="Alternative suppliers of a product",
    ),
    EntityDef("Stock", Stock, unique=("product_id",), bounds=(bound("quantity", ge=0),)),
    EntityDef(
        "Order",
        Order,
        bounds=(bound("total_amount", ge=0),),
        derived=("total_amount",),
    ),
    EntityDef(
        "OrderItem",
        OrderItem,
        bounds=(
            bound("unit_price", ge=0),
            bound("quantity", gt=0),
            bound("discount", ge=0),
            bound("subtotal", ge=0),
        ),
        derived=("subtotal",),
    ),
    EntityDef("Delivery", Delivery, unique=("order_id",)),
    EntityDef("Payment", Payment, bounds=(bound("amount", ge=0),)),
)

FOREIGN_KEYS: tuple[ForeignKeyDef, ...] = (
    ForeignKeyDef("address_account", "Address", "account_id", "Account", OnDelete.CASCADE),
    ForeignKeyDef(
        "payment_method_account", "PaymentMethod", "account_id", "Account", OnDelete.CASCADE
    ),
    ForeignKeyDef("order_account", "Order", "account_id", "Account", OnDelete.RESTRICT),
    ForeignKeyDef(
        "order_seller", "Order", "seller_id", "Seller", OnDelete.SET_NULL, nullable=True
    ),
    ForeignKeyDef(
        "order_payment_method",
        "Order",
        "payment_method_id",
        "PaymentMethod",
        OnDelete.SET_NULL,
        nullable=True,
    ),
    ForeignKeyDef(
        "product_supplier", "Product", "supplier_id", "Supplier", OnDelete.SET_NULL, nullable=True
    ),
    ForeignKeyDef(
        "product_supplier_link_product",
        "ProductSupplier",
        "product_id",
        "Product",
        OnDelete.CASCADE,
    ),
    ForeignKeyDef(
        "product_supplier_link_supplier",
        "ProductSupplier",
        "supplier_id",
        "Supplier",
        OnDelete.CASCADE,
    ),
    ForeignKeyDef(
        "supplier_seller_link_supplier",
        "SupplierSeller",
        "supplier_id",
        "Supplier",
        OnDelete.CASCADE,
    ),
    ForeignKeyDef(
        "supplier_seller_link_seller", "SupplierSeller", "seller_id", "Seller", OnDelete.CASCADE
    ),
    ForeignKeyDef("stock_product", "Stock", "product_id", "Product", OnDelete.CASCADE),
    ForeignKeyDef("order_item_order", "OrderItem", "order_id", "Order", OnDelete.CASCADE),
    ForeignKeyDef("order_item_product", "OrderItem", "product_id", "Product", OnDelete.RESTRICT),
    ForeignKeyDef("delivery_order", "Delivery", "order_id", "Order", OnDelete.CASCADE),
    ForeignKeyDef("payment_order", "Payment", "order_id", "Order", OnDelete.CASCADE),
)


def build_registry(freeze: bool = True) -> ModelRegistry:
    """Create a registry holding the commerce model.

    Args:
        freeze: Whether to freeze the registry before returning it. Pass
            False to register extra kinds first.

    Returns:
        New ModelRegistry
    """
    registry = ModelRegistry()
    for entity_def in ENTITY_DEFS:
        registry.register_entity(entity_def)
    for fk in FOREIGN_KEYS:
        registry.register_foreign_key(fk)

    errors = registry.validate_all()
    if errors:
        raise ValueError(f"Invalid commerce model: {errors}")

    if freeze:
        registry.freeze()
    return registry


def default_registry() -> ModelRegistry:
    """Fresh, frozen registry with the commerce model."""
    return build_registry(freeze=True)
