"""Pytest fixtures for storefront tests."""

import tempfile
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from storefront.lifecycle import OrderLifecycleManager
from storefront.models import AddressSnapshot, Identity, LineItem, Order
from storefront.order_store import OrderStore
from storefront.paypal import CaptureResult, ProviderOrder
from storefront.webhook_store import WebhookEventStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    """An OrderStore in a temporary data directory."""
    return OrderStore(temp_dir)


@pytest.fixture
def events(temp_dir):
    """A WebhookEventStore in a temporary data directory."""
    return WebhookEventStore(temp_dir)


def make_address(**overrides: Any) -> AddressSnapshot:
    data = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "street": "12 Linen Lane",
        "city": "Portland",
        "state": "OR",
        "postal_code": "97201",
        "country": "United States",
    }
    data.update(overrides)
    return AddressSnapshot(**data)


def make_order(
    owner_id: str | None = "U1",
    provider_reference: str | None = None,
    **overrides: Any,
) -> Order:
    """Build a PENDING/UNPAID order: 2 x 24.50 towels + 1 x 89.00 duvet, tax 11.20, shipping 5.00."""
    items = [
        LineItem.create("towel-1", "Bath Towel", Decimal("24.50"), 2, variant_name="Sage"),
        LineItem.create("duvet-1", "Linen Duvet", Decimal("89.00"), 1),
    ]
    order = Order.create(
        owner_id=owner_id,
        items=items,
        shipping_address=make_address(),
        tax=Decimal("11.20"),
        shipping=Decimal("5.00"),
    )
    order.provider_reference = provider_reference
    for key, value in overrides.items():
        setattr(order, key, value)
    return order


@pytest.fixture
def order_factory(store):
    """Store and return a fresh order."""

    def _create(**kwargs: Any) -> Order:
        return store.add_order(make_order(**kwargs))

    return _create


class FakeProvider:
    """In-memory PaymentProvider double."""

    def __init__(self, capture_status: str = "COMPLETED", capture_id: str = "C1"):
        self.capture_status = capture_status
        self.capture_id = capture_id
        self.capture_error: Exception | None = None
        self.signature_valid = True
        self.created: list[str] = []
        self.captured: list[str] = []
        self.capture_barrier: threading.Barrier | None = None
        self._lock = threading.Lock()
        self._counter = 0

    def create_order(self, order: Order, return_url: str, cancel_url: str) -> ProviderOrder:
        with self._lock:
            self._counter += 1
            provider_id = f"PP-{self._counter}"
        self.created.append(order.id)
        return ProviderOrder(
            id=provider_id,
            status="CREATED",
            approval_url=f"https://www.sandbox.paypal.com/checkoutnow?token={provider_id}",
        )

    def get_order(self, provider_order_id: str) -> ProviderOrder:
        return ProviderOrder(
            id=provider_order_id,
            status="CREATED",
            approval_url=f"https://www.sandbox.paypal.com/checkoutnow?token={provider_order_id}",
        )

    def capture_order(self, provider_order_id: str) -> CaptureResult:
        if self.capture_barrier is not None:
            # Line racing captures up so both pass their reads first.
            self.capture_barrier.wait(timeout=5)
        if self.capture_error is not None:
            raise self.capture_error
        with self._lock:
            self.captured.append(provider_order_id)
        return CaptureResult(
            status=self.capture_status,
            capture_id=self.capture_id,
            amount="154.20",
            currency="USD",
        )

    def verify_webhook_signature(self, headers: dict[str, str], event: dict[str, Any], webhook_id: str) -> bool:
        return self.signature_valid


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def manager(store, provider):
    return OrderLifecycleManager(store, provider)


@pytest.fixture
def customer():
    return Identity(id="U1")


@pytest.fixture
def other_customer():
    return Identity(id="U2")


@pytest.fixture
def admin():
    return Identity(id="A1", role="admin")
