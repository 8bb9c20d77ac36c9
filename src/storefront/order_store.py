"""Order storage for storefront."""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from .config import Settings
from .errors import InvalidSchemaVersionError, OrderValidationError
from .models import Order, OrderStatus, PaymentStatus, _utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ORDERS_FILE = "orders.json"
LOCK_FILE = ".orders.lock"


class _AnyOwner:
    def __repr__(self) -> str:
        return "ANY_OWNER"


# Owner filter that matches every order, guest orders included. Only the
# admin and webhook paths use it; customer paths always pass an owner id.
ANY_OWNER: Any = _AnyOwner()


def _owner_matches(data: dict[str, Any], owner_id: Any) -> bool:
    return owner_id is ANY_OWNER or data.get("owner_id") == owner_id


class OrderStore:
    """Manages reading and writing orders.

    Every read-modify-write happens under an exclusive lock on a sidecar
    lock file, so ``compare_and_set`` is atomic with respect to every other
    writer using the same data directory.
    """

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize OrderStore.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or Settings.from_env().data_dir
        self.config_path = self.config_dir / ORDERS_FILE

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the orders file for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.config_dir / LOCK_FILE
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_data(self) -> dict[str, Any]:
        """Load orders data from disk."""
        if not self.config_path.exists():
            return {"schema_version": SCHEMA_VERSION, "orders": []}

        with open(self.config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)
        return data

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save orders data to disk atomically."""
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(
            dir=self.config_dir, prefix=".orders_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.config_path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def exists(self) -> bool:
        """Check if the orders file exists."""
        return self.config_path.exists()

    def count(self) -> int:
        """Number of stored orders."""
        return len(self._load_data().get("orders", []))

    def add_order(self, order: Order) -> Order:
        """
        Add a new order.

        Raises:
            OrderValidationError: If totals don't add up, or the id or order
                number is already taken.
        """
        order.check_totals()
        with self._lock():
            data = self._load_data()
            for existing in data["orders"]:
                if existing["id"] == order.id:
                    raise OrderValidationError(f"duplicate order id {order.id}", field="id")
                if existing["order_number"] == order.order_number:
                    raise OrderValidationError(
                        f"duplicate order number {order.order_number}", field="order_number"
                    )
            data["orders"].append(order.to_dict())
            self._save_data(data)

        logger.info("Stored order %s (%s)", order.id, order.order_number)
        return order

    def get_order(self, order_id: str, owner_id: Any = ANY_OWNER) -> Order | None:
        """
        Get an order by ID, restricted to an owner.

        Returns None both when the order doesn't exist and when it belongs
        to somebody else.
        """
        for data in self._load_data().get("orders", []):
            if data["id"] == order_id and _owner_matches(data, owner_id):
                return Order.from_dict(data)
        return None

    def find_by_order_number(self, order_number: str) -> Order | None:
        """Get an order by its human-readable number."""
        for data in self._load_data().get("orders", []):
            if data["order_number"] == order_number:
                return Order.from_dict(data)
        return None

    def find_by_capture_id(self, capture_id: str) -> Order | None:
        """Get the order whose payment metadata records the given capture."""
        for data in self._load_data().get("orders", []):
            if data.get("payment_metadata", {}).get("capture_id") == capture_id:
                return Order.from_dict(data)
        return None

    def query(
        self,
        owner_id: Any,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Order], int]:
        """
        List orders matching the filters.

        The owner filter is applied to raw records before any order is built,
        so other owners' orders are never materialized.

        Returns:
            (page of orders, total number of matches)
        """
        matches = [
            data
            for data in self._load_data().get("orders", [])
            if _owner_matches(data, owner_id)
            and (status is None or data["status"] == status.value)
            and (payment_status is None or data["payment_status"] == payment_status.value)
        ]
        orders = [Order.from_dict(d) for d in matches]

        def sort_key(order: Order) -> Any:
            if sort_by == "total":
                return order.total
            if sort_by == "status":
                return order.status.value
            if sort_by == "order_number":
                return order.order_number
            return order.created_at

        # Stable order for ties regardless of direction.
        orders.sort(key=lambda o: o.id)
        orders.sort(key=sort_key, reverse=(sort_order == "desc"))

        total = len(orders)
        end = None if limit is None else offset + limit
        return orders[offset:end], total

    def compare_and_set(
        self,
        order_id: str,
        condition: Callable[[Order], bool],
        apply: Callable[[Order], None],
        owner_id: Any = ANY_OWNER,
    ) -> Order | None:
        """
        Atomically update an order if it still satisfies a condition.

        ``condition`` and ``apply`` both see the current stored record while
        the lock is held; nothing is written unless ``condition`` holds.

        Args:
            order_id: Order ID.
            condition: Predicate over the stored order.
            apply: Mutates the order in place.
            owner_id: Restrict the match to this owner.

        Returns:
            The updated order, or None if no order matched or the condition
            was false.
        """
        with self._lock():
            data = self._load_data()
            orders = data.get("orders", [])

            for i, raw in enumerate(orders):
                if raw["id"] != order_id or not _owner_matches(raw, owner_id):
                    continue

                order = Order.from_dict(raw)
                if not condition(order):
                    return None

                apply(order)
                order.updated_at = _utc_now()
                orders[i] = order.to_dict()
                self._save_data(data)
                return order

            return None
