"""Utility functions for storefront."""

import secrets
import string
from datetime import datetime, timezone

from .errors import OrderValidationError
from .models import Order, OrderStatus

SORT_FIELDS = ("created_at", "total", "status", "order_number")
SORT_ORDERS = ("asc", "desc")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now: datetime | None = None) -> str:
    """
    Generate a human-readable order number.

    Format: "YYYYMMDDhhmmss-XXXX" with a random uppercase/digit suffix,
    e.g. "20231225103045-7QK2".
    """
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{now.strftime('%Y%m%d%H%M%S')}-{suffix}"


def parse_status(value: str | None) -> OrderStatus | None:
    """
    Parse an order status filter (case-insensitive).

    Raises:
        OrderValidationError: If the value isn't a known status.
    """
    if value is None or value == "":
        return None
    try:
        return OrderStatus(value.upper())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise OrderValidationError(f"expected one of {allowed}", field="status")


def check_list_params(page: int, limit: int, sort_by: str, sort_order: str) -> int:
    """
    Validate list parameters and return the row offset for the page.

    Raises:
        OrderValidationError: If any parameter is out of range.
    """
    if page < 1:
        raise OrderValidationError("must be at least 1", field="page")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise OrderValidationError(f"must be between 1 and {MAX_PAGE_SIZE}", field="limit")
    if sort_by not in SORT_FIELDS:
        raise OrderValidationError(f"expected one of {', '.join(SORT_FIELDS)}", field="sort_by")
    if sort_order not in SORT_ORDERS:
        raise OrderValidationError("expected 'asc' or 'desc'", field="sort_order")
    return (page - 1) * limit


def format_order(order: Order, verbose: bool = False) -> str:
    """Format an order for display."""
    line = (
        f"  {order.id[:8]}  {order.order_number}  "
        f"{order.status.value:<10} {order.payment_status.value:<8} "
        f"{order.total} {order.currency}"
    )
    if not verbose:
        return line

    lines = [line]
    for item in order.items:
        variant = f" ({item.variant_name})" if item.variant_name else ""
        lines.append(
            f"      {item.quantity} x {item.product_name}{variant} @ {item.unit_price} = {item.total}"
        )
    lines.append(
        f"      subtotal {order.subtotal}  tax {order.tax}  shipping {order.shipping}"
    )
    addr = order.shipping_address
    lines.append(
        f"      ship to: {addr.first_name} {addr.last_name}, {addr.street}, "
        f"{addr.city} {addr.postal_code}, {addr.country}"
    )
    if order.provider_reference:
        lines.append(f"      payment ref: {order.provider_reference}")
    if order.tracking_number:
        lines.append(f"      tracking: {order.tracking_number}")
    return "\n".join(lines)
