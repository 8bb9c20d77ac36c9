"""Tests for storefront data models."""

from decimal import Decimal

import pytest

from storefront.errors import OrderValidationError
from storefront.models import (
    LineItem,
    Order,
    OrderStatus,
    Pagination,
    PaymentMetadata,
    PaymentStatus,
    to_decimal,
)

from .conftest import make_address, make_order


class TestOrderCreate:
    def test_new_order_is_pending_and_unpaid(self):
        order = make_order()

        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.UNPAID
        assert order.provider_reference is None

    def test_totals_are_exact_decimals(self):
        order = make_order()

        assert order.subtotal == Decimal("138.00")
        assert order.total == Decimal("154.20")
        assert order.total == order.subtotal + order.tax + order.shipping

    def test_billing_address_defaults_to_copy_of_shipping(self):
        order = make_order()

        assert order.billing_address == order.shipping_address
        assert order.billing_address is not order.shipping_address

    def test_order_number_format(self):
        order = make_order()
        stamp, suffix = order.order_number.split("-")

        assert len(stamp) == 14 and stamp.isdigit()
        assert len(suffix) == 4

    def test_empty_order_rejected(self):
        with pytest.raises(OrderValidationError):
            Order.create(owner_id="U1", items=[], shipping_address=make_address())

    def test_check_totals_detects_tampered_total(self):
        order = make_order()
        order.total = order.total + Decimal("0.01")

        with pytest.raises(OrderValidationError, match="total"):
            order.check_totals()

    def test_guest_order_has_no_owner(self):
        order = make_order(owner_id=None)
        assert order.owner_id is None


class TestLineItem:
    def test_total_derived_from_quantity(self):
        item = LineItem.create("p1", "Pillowcase", Decimal("12.99"), 3)
        assert item.total == Decimal("38.97")

    def test_zero_quantity_rejected(self):
        with pytest.raises(OrderValidationError, match="quantity"):
            LineItem.create("p1", "Pillowcase", Decimal("12.99"), 0)


class TestToDecimal:
    def test_accepts_strings_and_ints(self):
        assert to_decimal("19.99") == Decimal("19.99")
        assert to_decimal(5) == Decimal("5")

    def test_rejects_floats(self):
        with pytest.raises(OrderValidationError):
            to_decimal(19.99)

    def test_rejects_garbage(self):
        with pytest.raises(OrderValidationError):
            to_decimal("twelve")


class TestPaymentMetadata:
    def test_merge_keeps_existing_keys(self):
        existing = PaymentMetadata(provider_order_id="PP-1", extra={"foo": 1})
        merged = existing.merge(PaymentMetadata(capture_id="X", captured_at="2024-01-01T00:00:00Z"))

        assert merged.provider_order_id == "PP-1"
        assert merged.capture_id == "X"
        assert merged.captured_at == "2024-01-01T00:00:00Z"
        assert merged.extra == {"foo": 1}

    def test_merge_new_values_win(self):
        merged = PaymentMetadata(provider_status="CREATED").merge(
            PaymentMetadata(provider_status="APPROVED")
        )
        assert merged.provider_status == "APPROVED"

    def test_merge_does_not_mutate_original(self):
        original = PaymentMetadata(extra={"a": 1})
        original.merge(PaymentMetadata(extra={"b": 2}))
        assert original.extra == {"a": 1}

    def test_unknown_keys_land_in_extra(self):
        meta = PaymentMetadata.from_dict({"capture_id": "C9", "foo": 1})

        assert meta.capture_id == "C9"
        assert meta.extra == {"foo": 1}

    def test_to_dict_omits_unset_fields(self):
        assert PaymentMetadata(capture_id="C1").to_dict() == {"version": 1, "capture_id": "C1"}


class TestOrderSerialization:
    def test_roundtrip_preserves_money_and_snapshots(self):
        order = make_order(provider_reference="PP-1")
        order.payment_metadata = PaymentMetadata(provider_order_id="PP-1", extra={"foo": 1})

        restored = Order.from_dict(order.to_dict())

        assert restored == order
        assert isinstance(restored.total, Decimal)

    def test_money_serialized_as_strings(self):
        data = make_order().to_dict()

        assert data["total"] == "154.20"
        assert data["items"][0]["unit_price"] == "24.50"


class TestPagination:
    def test_middle_page(self):
        p = Pagination.compute(page=2, limit=10, total=25)

        assert p.total_pages == 3
        assert p.has_next is True
        assert p.has_prev is True

    def test_empty(self):
        p = Pagination.compute(page=1, limit=10, total=0)

        assert p.total_pages == 0
        assert p.has_next is False
        assert p.has_prev is False
