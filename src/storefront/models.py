"""Data models for storefront."""

import math
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import OrderValidationError


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new order ID."""
    return str(uuid.uuid4())


def to_decimal(value: Any, name: str = "amount") -> Decimal:
    """Convert a stored or submitted amount to Decimal without passing through float."""
    if isinstance(value, float):
        raise OrderValidationError("amounts must not be floating point", field=name)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise OrderValidationError(f"not a decimal amount: {value!r}", field=name)
    if not result.is_finite():
        raise OrderValidationError(f"not a decimal amount: {value!r}", field=name)
    return result


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Status moves an admin may make. Everything else belongs to the customer
# (cancel) or to the payment flows (confirm).
FULFILLMENT_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
}


@dataclass(frozen=True)
class Identity:
    """An authenticated caller, as supplied by the auth layer."""

    id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class AddressSnapshot:
    """Address copied onto an order at creation time."""

    first_name: str
    last_name: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
        if self.phone is not None:
            result["phone"] = self.phone
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AddressSnapshot":
        return cls(
            first_name=data["first_name"],
            last_name=data["last_name"],
            street=data["street"],
            city=data["city"],
            state=data.get("state", ""),
            postal_code=data["postal_code"],
            country=data["country"],
            phone=data.get("phone"),
        )


@dataclass
class LineItem:
    """A purchased product line; prices are copied, not referenced."""

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    total: Decimal
    variant_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "total": str(self.total),
        }
        if self.variant_name is not None:
            result["variant_name"] = self.variant_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            product_id=data["product_id"],
            product_name=data["product_name"],
            unit_price=to_decimal(data["unit_price"], "unit_price"),
            quantity=data["quantity"],
            total=to_decimal(data["total"], "total"),
            variant_name=data.get("variant_name"),
        )

    @classmethod
    def create(
        cls,
        product_id: str,
        product_name: str,
        unit_price: Decimal,
        quantity: int,
        variant_name: str | None = None,
    ) -> "LineItem":
        """Create a line item, deriving its total from price and quantity."""
        if quantity < 1:
            raise OrderValidationError("must be at least 1", field="quantity")
        if unit_price < 0:
            raise OrderValidationError("must not be negative", field="unit_price")
        return cls(
            product_id=product_id,
            product_name=product_name,
            unit_price=unit_price,
            quantity=quantity,
            total=unit_price * quantity,
            variant_name=variant_name,
        )


@dataclass(frozen=True)
class PaymentMetadata:
    """What the payment provider has told us about an order, accumulated.

    Values are only ever added: ``merge`` keeps every field the other side
    leaves unset, so the trail of earlier attempts survives later ones.
    """

    version: int = 1
    provider_order_id: str | None = None
    provider_status: str | None = None
    capture_id: str | None = None
    capture_status: str | None = None
    captured_at: str | None = None
    approved_at: str | None = None
    failed_at: str | None = None
    denied_reason: str | None = None
    refund_id: str | None = None
    refund_amount: str | None = None
    refunded_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "PaymentMetadata") -> "PaymentMetadata":
        changes: dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("version", "extra"):
                continue
            value = getattr(other, f.name)
            if value is not None:
                changes[f.name] = value
        changes["extra"] = {**self.extra, **other.extra}
        changes["version"] = max(self.version, other.version)
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"version": self.version}
        for f in fields(self):
            if f.name in ("version", "extra"):
                continue
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = value
        if self.extra:
            result["extra"] = dict(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PaymentMetadata":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        # Keys written by other tools end up in the extension map.
        extra = dict(data.get("extra", {}))
        extra.update({k: v for k, v in data.items() if k not in known})
        kwargs["extra"] = extra
        return cls(**kwargs)


@dataclass
class Order:
    """A customer's order and its payment/fulfillment progress."""

    id: str
    order_number: str
    owner_id: str | None  # None for guest checkout
    status: OrderStatus
    payment_status: PaymentStatus
    items: list[LineItem]
    shipping_address: AddressSnapshot
    billing_address: AddressSnapshot
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    currency: str = "USD"
    provider_reference: str | None = None
    payment_metadata: PaymentMetadata = field(default_factory=PaymentMetadata)
    tracking_number: str | None = None
    notes: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def check_totals(self) -> None:
        """
        Verify the money fields agree with each other.

        Raises:
            OrderValidationError: If subtotal or total don't add up.
        """
        if not self.items:
            raise OrderValidationError("an order needs at least one item", field="items")
        for item in self.items:
            if item.total != item.unit_price * item.quantity:
                raise OrderValidationError(
                    f"line total {item.total} != {item.unit_price} x {item.quantity}",
                    field="items",
                )
        items_total = sum((item.total for item in self.items), Decimal("0"))
        if self.subtotal != items_total:
            raise OrderValidationError(
                f"subtotal {self.subtotal} != item total {items_total}", field="subtotal"
            )
        if self.total != self.subtotal + self.tax + self.shipping:
            raise OrderValidationError(
                f"total {self.total} != subtotal + tax + shipping", field="total"
            )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_number": self.order_number,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "items": [item.to_dict() for item in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "billing_address": self.billing_address.to_dict(),
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "total": str(self.total),
            "currency": self.currency,
            "payment_metadata": self.payment_metadata.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.provider_reference is not None:
            result["provider_reference"] = self.provider_reference
        if self.tracking_number is not None:
            result["tracking_number"] = self.tracking_number
        if self.notes is not None:
            result["notes"] = self.notes
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            owner_id=data.get("owner_id"),
            status=OrderStatus(data["status"]),
            payment_status=PaymentStatus(data["payment_status"]),
            items=[LineItem.from_dict(i) for i in data.get("items", [])],
            shipping_address=AddressSnapshot.from_dict(data["shipping_address"]),
            billing_address=AddressSnapshot.from_dict(data["billing_address"]),
            subtotal=to_decimal(data["subtotal"], "subtotal"),
            tax=to_decimal(data["tax"], "tax"),
            shipping=to_decimal(data["shipping"], "shipping"),
            total=to_decimal(data["total"], "total"),
            currency=data.get("currency", "USD"),
            provider_reference=data.get("provider_reference"),
            payment_metadata=PaymentMetadata.from_dict(data.get("payment_metadata")),
            tracking_number=data.get("tracking_number"),
            notes=data.get("notes"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        owner_id: str | None,
        items: list[LineItem],
        shipping_address: AddressSnapshot,
        billing_address: AddressSnapshot | None = None,
        tax: Decimal = Decimal("0"),
        shipping: Decimal = Decimal("0"),
        currency: str = "USD",
        order_number: str | None = None,
    ) -> "Order":
        """Create a new PENDING/UNPAID order with totals fixed from its items."""
        from .utils import generate_order_number

        subtotal = sum((item.total for item in items), Decimal("0"))
        now = _utc_now()
        order = cls(
            id=_generate_id(),
            order_number=order_number or generate_order_number(),
            owner_id=owner_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            items=list(items),
            shipping_address=shipping_address,
            billing_address=billing_address or replace(shipping_address),
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=subtotal + tax + shipping,
            currency=currency,
            created_at=now,
            updated_at=now,
        )
        order.check_totals()
        return order


@dataclass
class Pagination:
    """Page arithmetic for list responses."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }
