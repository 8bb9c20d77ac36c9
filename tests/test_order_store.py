"""Tests for OrderStore."""

import json
import threading
from decimal import Decimal

import pytest

from storefront.errors import InvalidSchemaVersionError, OrderValidationError
from storefront.models import OrderStatus, PaymentMetadata, PaymentStatus
from storefront.order_store import ANY_OWNER, OrderStore

from .conftest import make_order


class TestOrderStore:
    """Tests for OrderStore class."""

    def test_empty_store(self, store):
        assert not store.exists()
        assert store.count() == 0
        assert store.get_order("missing") is None

    def test_add_and_get(self, store):
        order = store.add_order(make_order())

        assert store.exists()
        loaded = store.get_order(order.id)
        assert loaded == order
        assert loaded.total == Decimal("154.20")

    def test_file_format(self, store):
        order = store.add_order(make_order())

        data = json.loads(store.config_path.read_text())
        assert data["schema_version"] == 1
        assert data["orders"][0]["id"] == order.id
        assert data["orders"][0]["total"] == "154.20"

    def test_duplicate_id_rejected(self, store):
        order = store.add_order(make_order())

        with pytest.raises(OrderValidationError, match="id"):
            store.add_order(order)

    def test_duplicate_order_number_rejected(self, store):
        first = store.add_order(make_order())

        with pytest.raises(OrderValidationError, match="order_number"):
            store.add_order(make_order(order_number=first.order_number))

    def test_bad_totals_rejected(self, store):
        order = make_order()
        order.tax = Decimal("1.00")

        with pytest.raises(OrderValidationError):
            store.add_order(order)
        assert store.count() == 0

    def test_unsupported_schema_version(self, temp_dir):
        (temp_dir / "orders.json").write_text(json.dumps({"schema_version": 99, "orders": []}))

        with pytest.raises(InvalidSchemaVersionError):
            OrderStore(temp_dir).count()


class TestOwnership:
    def test_owner_filter_masks_foreign_order(self, store):
        order = store.add_order(make_order(owner_id="U1"))

        assert store.get_order(order.id, owner_id="U1") is not None
        assert store.get_order(order.id, owner_id="U2") is None
        assert store.get_order(order.id, owner_id=ANY_OWNER) is not None

    def test_guest_order_only_visible_to_any_owner(self, store):
        order = store.add_order(make_order(owner_id=None))

        assert store.get_order(order.id, owner_id="U1") is None
        assert store.get_order(order.id) is not None

    def test_lookups_by_number_and_capture(self, store):
        order = make_order()
        order.payment_metadata = PaymentMetadata(capture_id="CAP-9")
        store.add_order(order)

        assert store.find_by_order_number(order.order_number).id == order.id
        assert store.find_by_capture_id("CAP-9").id == order.id
        assert store.find_by_capture_id("nope") is None


class TestQuery:
    @pytest.fixture
    def populated(self, store):
        orders = []
        for i, status in enumerate(
            [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PENDING, OrderStatus.SHIPPED]
        ):
            orders.append(
                store.add_order(
                    make_order(owner_id="U1", status=status, created_at=f"2024-01-0{i + 1}T00:00:00Z")
                )
            )
        store.add_order(make_order(owner_id="U2"))
        return orders

    def test_only_owner_rows(self, store, populated):
        orders, total = store.query(owner_id="U1")

        assert total == 4
        assert {o.owner_id for o in orders} == {"U1"}

    def test_status_filter(self, store, populated):
        orders, total = store.query(owner_id="U1", status=OrderStatus.PENDING)

        assert total == 2
        assert all(o.status == OrderStatus.PENDING for o in orders)

    def test_payment_status_filter(self, store, populated):
        _, total = store.query(owner_id="U1", payment_status=PaymentStatus.PAID)
        assert total == 0

    def test_default_sort_newest_first(self, store, populated):
        orders, _ = store.query(owner_id="U1")
        assert [o.id for o in orders] == [o.id for o in reversed(populated)]

    def test_ascending_sort(self, store, populated):
        orders, _ = store.query(owner_id="U1", sort_order="asc")
        assert [o.id for o in orders] == [o.id for o in populated]

    def test_pagination_slice_and_total(self, store, populated):
        orders, total = store.query(owner_id="U1", sort_order="asc", offset=2, limit=2)

        assert total == 4
        assert [o.id for o in orders] == [populated[2].id, populated[3].id]

    def test_page_past_end_is_empty(self, store, populated):
        orders, total = store.query(owner_id="U1", offset=10, limit=10)

        assert orders == []
        assert total == 4


class TestCompareAndSet:
    def test_applies_when_condition_holds(self, store):
        order = store.add_order(make_order())

        def cancel(o):
            o.status = OrderStatus.CANCELLED

        updated = store.compare_and_set(
            order.id, condition=lambda o: o.status == OrderStatus.PENDING, apply=cancel
        )

        assert updated.status == OrderStatus.CANCELLED
        assert store.get_order(order.id).status == OrderStatus.CANCELLED
        assert updated.updated_at >= order.updated_at

    def test_noop_when_condition_fails(self, store):
        order = store.add_order(make_order())
        before = store.config_path.read_text()

        def cancel(o):
            o.status = OrderStatus.CANCELLED

        assert store.compare_and_set(order.id, condition=lambda o: False, apply=cancel) is None
        assert store.config_path.read_text() == before

    def test_owner_restriction(self, store):
        order = store.add_order(make_order(owner_id="U1"))

        result = store.compare_and_set(
            order.id, condition=lambda o: True, apply=lambda o: None, owner_id="U2"
        )

        assert result is None

    def test_concurrent_writers_apply_once(self, store):
        order = store.add_order(make_order())
        winners = []
        start = threading.Barrier(8)

        def mark_paid(o):
            o.payment_status = PaymentStatus.PAID

        def worker():
            start.wait(timeout=5)
            result = store.compare_and_set(
                order.id,
                condition=lambda o: o.payment_status != PaymentStatus.PAID,
                apply=mark_paid,
            )
            if result is not None:
                winners.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert store.get_order(order.id).payment_status == PaymentStatus.PAID
