"""
Entity definitions for the ecomdb data model.

This module defines the records held by the entity store:
- Account (with an IndividualProfile or BusinessProfile variant)
- Address, PaymentMethod
- Supplier, Seller, SupplierSeller (link)
- Product, ProductSupplier (link), Stock
- Order, OrderItem, Delivery, Payment

Invariants:
    - Entities are immutable; the store replaces them on update
    - An account's type is derived from its profile variant, never stored
    - OrderItem.subtotal is computed from its inputs, never passed in
    - Money is held as Decimal

How to change safely:
    - Add new optional fields with defaults at the end of a class
    - Register foreign keys and bounds for new fields in definitions.py
    - Never make a derived field an init argument

Example:
    >>> acct = Account(
    ...     email="ana@example.com",
    ...     profile=IndividualProfile("Ana", "Silva", "123.456.789-00"),
    ... )
    >>> acct.type
    <AccountType.INDIVIDUAL: 'Individual'>
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Union

from ..errors import InvalidShape

ZERO = Decimal("0")


class AccountType(Enum):
    """Kind of customer account."""

    INDIVIDUAL = "Individual"
    BUSINESS = "Business"


class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class DeliveryStatus(Enum):
    AWAITING = "Awaiting"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    LOST = "Lost"


class PaymentStatus(Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DECLINED = "Declined"
    REFUNDED = "Refunded"


class PaymentMethodType(Enum):
    CREDIT_CARD = "CreditCard"
    DEBIT_CARD = "DebitCard"
    BANK_TRANSFER = "BankTransfer"
    DIGITAL_WALLET = "DigitalWallet"
    BANK_SLIP = "BankSlip"


def to_money(value: Any, name: str = "amount") -> Decimal:
    """Convert a numeric value to Decimal.

    Floats go through str() so 19.9 becomes Decimal('19.9'), not its
    binary expansion.

    Raises:
        InvalidShape: If the value is not numeric, or is NaN or infinite
    """
    if isinstance(value, bool) or value is None:
        raise InvalidShape(f"Field '{name}' must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise InvalidShape(f"Field '{name}' must be numeric, got {value!r}") from None
    if not result.is_finite():
        raise InvalidShape(f"Field '{name}' must be a finite number, got {value!r}")
    return result


def compute_subtotal(unit_price: Decimal, quantity: int, discount: Decimal) -> Decimal:
    """Line subtotal: unit_price x quantity - discount."""
    return unit_price * quantity - discount


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndividualProfile:
    """Fields only an individual account carries."""

    first_name: str
    last_name: str
    national_id: str
    birth_date: date | None = None

    REQUIRED: ClassVar[tuple[str, ...]] = ("first_name", "last_name", "national_id")
    OPTIONAL: ClassVar[tuple[str, ...]] = ("birth_date",)
    account_type: ClassVar[AccountType] = AccountType.INDIVIDUAL

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class BusinessProfile:
    """Fields only a business account carries."""

    legal_name: str
    tax_id: str
    trade_name: str | None = None

    REQUIRED: ClassVar[tuple[str, ...]] = ("legal_name", "tax_id")
    OPTIONAL: ClassVar[tuple[str, ...]] = ("trade_name",)
    account_type: ClassVar[AccountType] = AccountType.BUSINESS

    @property
    def display_name(self) -> str:
        return self.trade_name or self.legal_name


Profile = Union[IndividualProfile, BusinessProfile]

PROFILE_CLASSES: dict[AccountType, type] = {
    AccountType.INDIVIDUAL: IndividualProfile,
    AccountType.BUSINESS: BusinessProfile,
}


@dataclass(frozen=True)
class Account:
    """Customer account.

    The profile is a tagged variant: an account is individual or business
    depending on which profile class it holds, so it can never carry both
    field groups at once.

    Attributes:
        email: Unique contact address
        profile: IndividualProfile or BusinessProfile
        phone: Contact phone
        created_at: Creation time (stamped by the store when None)
        id: Store-assigned identifier
    """

    email: str
    profile: Profile
    phone: str = ""
    created_at: datetime | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.profile, (IndividualProfile, BusinessProfile)):
            raise InvalidShape(
                f"Account profile must be IndividualProfile or BusinessProfile, "
                f"got {type(self.profile).__name__}",
                kind="Account",
            )

    @property
    def type(self) -> AccountType:
        return self.profile.account_type

    @property
    def display_name(self) -> str:
        return self.profile.display_name


@dataclass(frozen=True)
class Address:
    account_id: int
    street: str
    city: str
    state: str
    zip_code: str
    label: str = "home"
    id: int | None = None


@dataclass(frozen=True)
class PaymentMethod:
    """A stored way to pay, owned by an account.

    ``details`` is opaque to the store (card tail, wallet handle, ...).
    """

    account_id: int
    method_type: PaymentMethodType
    provider: str = ""
    details: dict[str, Any] = dataclass_field(default_factory=dict)
    is_default: bool = False
    id: int | None = None


# ---------------------------------------------------------------------------
# Supply side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Supplier:
    name: str
    contact: str = ""
    email: str = ""
    id: int | None = None


@dataclass(frozen=True)
class Seller:
    name: str
    email: str
    id: int | None = None


@dataclass(frozen=True)
class SupplierSeller:
    """Link between a supplier and a seller it supplies."""

    supplier_id: int
    seller_id: int


@dataclass(frozen=True)
class Product:
    """Catalog product.

    Attributes:
        sku: Unique stock keeping unit
        name: Display name
        price: List price (>= 0)
        supplier_id: Principal supplier, cleared when that supplier is deleted
        description: Free text
        id: Store-assigned identifier
    """

    sku: str
    name: str
    price: Decimal
    supplier_id: int | None = None
    description: str = ""
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", to_money(self.price, "price"))


@dataclass(frozen=True)
class ProductSupplier:
    """Link between a product and one of its (possibly many) suppliers."""

    product_id: int
    supplier_id: int
    supplier_sku: str = ""
    lead_time_days: int = 0


@dataclass(frozen=True)
class Stock:
    product_id: int
    quantity: int
    last_updated: datetime | None = None
    id: int | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Order:
    """Customer order.

    total_amount is maintained by the store from the order's items; any
    value passed in is replaced on write.
    """

    account_id: int
    order_date: datetime | None = None
    status: OrderStatus = OrderStatus.PENDING
    seller_id: int | None = None
    payment_method_id: int | None = None
    total_amount: Decimal = ZERO
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "total_amount", to_money(self.total_amount, "total_amount"))


@dataclass(frozen=True)
class OrderItem:
    """Order line. ``subtotal`` is derived and cannot be passed in."""

    order_id: int
    product_id: int
    unit_price: Decimal
    quantity: int = 1
    discount: Decimal = ZERO
    id: int | None = None
    subtotal: Decimal = dataclass_field(init=False, default=ZERO)

    def __post_init__(self) -> None:
        unit_price = to_money(self.unit_price, "unit_price")
        discount = to_money(self.discount, "discount")
        object.__setattr__(self, "unit_price", unit_price)
        object.__setattr__(self, "discount", discount)
        object.__setattr__(self, "subtotal", compute_subtotal(unit_price, self.quantity, discount))


@dataclass(frozen=True)
class Delivery:
    order_id: int
    carrier: str
    tracking_code: str = ""
    status: DeliveryStatus = DeliveryStatus.AWAITING
    estimated_date: date | None = None
    shipped_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class Payment:
    order_id: int
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    payment_date: datetime | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_money(self.amount, "amount"))
