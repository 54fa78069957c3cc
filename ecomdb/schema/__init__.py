"""
Schema module for ecomdb.

This module provides the data model of the commerce core:
- Entity dataclasses and enums (types)
- Entity kind and foreign key definitions with delete policies (registry)
- The commerce model wired into a registry (definitions)
- Conversion between entities and plain dicts (codec)

Invariants:
    - Kind names and FK names are unique within a registry
    - Delete behaviour is declared per foreign key, never hand-coded
    - Registries are built per store; there is no global registry

How to change safely:
    - Add new kinds and FKs in definitions.py
    - Add new optional fields with defaults
    - Check the fingerprint of persisted snapshots after model changes
"""

from .definitions import build_registry, default_registry
from .registry import (
    Bound,
    DuplicateRegistrationError,
    EntityDef,
    ForeignKeyDef,
    ModelRegistry,
    OnDelete,
    RegistryFrozenError,
    bound,
)
from .types import (
    Account,
    AccountType,
    Address,
    BusinessProfile,
    Delivery,
    DeliveryStatus,
    IndividualProfile,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentMethodType,
    PaymentStatus,
    Product,
    ProductSupplier,
    Seller,
    Stock,
    Supplier,
    SupplierSeller,
)

__all__ = [
    # Entities
    "Account",
    "AccountType",
    "Address",
    "BusinessProfile",
    "Delivery",
    "DeliveryStatus",
    "IndividualProfile",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentMethodType",
    "PaymentStatus",
    "Product",
    "ProductSupplier",
    "Seller",
    "Stock",
    "Supplier",
    "SupplierSeller",
    # Registry
    "Bound",
    "bound",
    "EntityDef",
    "ForeignKeyDef",
    "OnDelete",
    "ModelRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "build_registry",
    "default_registry",
]
