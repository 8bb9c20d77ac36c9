"""Order lifecycle: cancellation, payment initiation and capture, fulfillment."""

import logging
from typing import Any

from .errors import (
    AlreadyPaidError,
    ForbiddenError,
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentCaptureError,
    ReferenceMismatchError,
    UnauthenticatedError,
)
from .models import (
    FULFILLMENT_TRANSITIONS,
    Identity,
    Order,
    OrderStatus,
    Pagination,
    PaymentMetadata,
    PaymentStatus,
    _utc_now,
)
from .order_store import ANY_OWNER, OrderStore
from .paypal import CaptureResult, PaymentProvider, ProviderOrder
from .utils import DEFAULT_PAGE_SIZE, check_list_params

logger = logging.getLogger(__name__)


def _require_identity(identity: Identity | None) -> Identity:
    if identity is None:
        raise UnauthenticatedError()
    return identity


def _require_admin(identity: Identity | None) -> Identity:
    identity = _require_identity(identity)
    if not identity.is_admin:
        raise ForbiddenError("admin")
    return identity


class OrderLifecycleManager:
    """Owns every status and payment-status change an order goes through.

    Customer-facing operations look orders up with a single predicate on
    (id, owner); a foreign order and a missing one both raise
    OrderNotFoundError. Writes go through OrderStore.compare_and_set so the
    precondition is re-checked atomically with the write.
    """

    def __init__(self, store: OrderStore, provider: PaymentProvider | None = None):
        self.store = store
        self.provider = provider

    def _owned_order(self, identity: Identity, order_id: str) -> Order:
        order = self.store.get_order(order_id, owner_id=identity.id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _payment_provider(self) -> PaymentProvider:
        if self.provider is None:
            raise PaymentCaptureError("No payment provider configured")
        return self.provider

    def _log_ignored(self, what: str, order_id: str) -> None:
        current = self.store.get_order(order_id)
        state = current.payment_status.value if current is not None else "missing"
        logger.warning("Ignoring %s for order %s in payment state %s", what, order_id, state)

    # --- Queries ---

    def get_order(self, identity: Identity | None, order_id: str) -> Order:
        """Get one of the caller's orders."""
        identity = _require_identity(identity)
        return self._owned_order(identity, order_id)

    def list_orders(
        self,
        identity: Identity | None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        status: OrderStatus | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[Order], Pagination]:
        """List the caller's orders, one page at a time."""
        identity = _require_identity(identity)
        offset = check_list_params(page, limit, sort_by, sort_order)
        orders, total = self.store.query(
            owner_id=identity.id,
            status=status,
            sort_by=sort_by,
            sort_order=sort_order,
            offset=offset,
            limit=limit,
        )
        return orders, Pagination.compute(page, limit, total)

    # --- Customer cancellation ---

    def cancel_order(self, identity: Identity | None, order_id: str) -> Order:
        """
        Cancel one of the caller's orders.

        Only PENDING orders can be cancelled; payment status, totals and
        addresses are left alone.

        Raises:
            UnauthenticatedError: No identity.
            OrderNotFoundError: Missing or not the caller's.
            InvalidTransitionError: The order isn't PENDING.
        """
        identity = _require_identity(identity)

        def set_cancelled(order: Order) -> None:
            order.status = OrderStatus.CANCELLED

        updated = self.store.compare_and_set(
            order_id,
            condition=lambda o: o.status == OrderStatus.PENDING,
            apply=set_cancelled,
            owner_id=identity.id,
        )
        if updated is not None:
            logger.info("Order %s cancelled by %s", order_id, identity.id)
            return updated

        current = self._owned_order(identity, order_id)
        logger.warning(
            "Rejected cancellation of order %s in status %s", order_id, current.status.value
        )
        raise InvalidTransitionError(order_id, current.status.value, OrderStatus.CANCELLED.value)

    # --- Payment initiation ---

    def initiate_payment(
        self,
        identity: Identity | None,
        order_id: str,
        return_url: str,
        cancel_url: str,
    ) -> ProviderOrder:
        """
        Create the provider-side order for a pending order.

        The provider reference is written once. A second call returns the
        provider order that is already on file instead of creating another.

        Raises:
            InvalidTransitionError: The order isn't PENDING.
            AlreadyPaidError: The order is already paid.
            PaymentProviderError: The provider call failed.
        """
        identity = _require_identity(identity)
        order = self._owned_order(identity, order_id)

        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyPaidError(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransitionError(order_id, order.status.value)

        provider = self._payment_provider()
        if order.provider_reference:
            return provider.get_order(order.provider_reference)

        created = provider.create_order(order, return_url=return_url, cancel_url=cancel_url)

        def set_reference(o: Order) -> None:
            o.provider_reference = created.id
            o.payment_metadata = o.payment_metadata.merge(
                PaymentMetadata(provider_order_id=created.id, provider_status=created.status)
            )

        updated = self.store.compare_and_set(
            order_id,
            condition=lambda o: o.provider_reference is None,
            apply=set_reference,
            owner_id=identity.id,
        )
        if updated is None:
            # A concurrent initiation got there first; keep its reference.
            winner = self._owned_order(identity, order_id)
            logger.warning(
                "Discarding provider order %s for %s, %s already on file",
                created.id,
                order_id,
                winner.provider_reference,
            )
            return provider.get_order(winner.provider_reference or created.id)

        logger.info("Order %s linked to provider order %s", order_id, created.id)
        return created

    # --- Payment capture ---

    def capture_payment(
        self,
        identity: Identity | None,
        order_id: str,
        provider_reference: str,
    ) -> tuple[Order, CaptureResult]:
        """
        Capture payment for an order and confirm it.

        Checks, first failure wins: identity, ownership, matching provider
        reference, not already paid, still PENDING, provider reports the
        capture COMPLETED. The confirming write is conditioned on the order
        still being unpaid and pending, so two racing captures can't both
        succeed.

        Raises:
            UnauthenticatedError, OrderNotFoundError, ReferenceMismatchError,
            AlreadyPaidError, InvalidTransitionError, PaymentCaptureError
        """
        identity = _require_identity(identity)
        order = self._owned_order(identity, order_id)

        if order.provider_reference != provider_reference:
            logger.warning(
                "Capture for order %s named provider order %s", order_id, provider_reference
            )
            raise ReferenceMismatchError(order_id, provider_reference)
        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyPaidError(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransitionError(order_id, order.status.value, OrderStatus.CONFIRMED.value)

        # Provider failures raise PaymentProviderError, itself a PaymentCaptureError.
        result = self._payment_provider().capture_order(provider_reference)
        if result is None or not result.completed:
            status = result.status if result is not None else "no result"
            logger.error("Capture of %s for order %s returned %s", provider_reference, order_id, status)
            raise PaymentCaptureError()

        captured = PaymentMetadata(
            capture_id=result.capture_id,
            capture_status=result.status,
            captured_at=_utc_now(),
        )

        def confirm(o: Order) -> None:
            o.status = OrderStatus.CONFIRMED
            o.payment_status = PaymentStatus.PAID
            o.payment_metadata = o.payment_metadata.merge(captured)

        updated = self.store.compare_and_set(
            order_id,
            condition=lambda o: (
                o.payment_status != PaymentStatus.PAID
                and o.status == OrderStatus.PENDING
                and o.provider_reference == provider_reference
            ),
            apply=confirm,
            owner_id=identity.id,
        )
        if updated is not None:
            logger.info("Order %s confirmed, capture %s", order_id, result.capture_id)
            return updated, result

        current = self._owned_order(identity, order_id)
        if current.payment_status == PaymentStatus.PAID:
            logger.warning("Duplicate capture for order %s lost the race", order_id)
            raise AlreadyPaidError(order_id)
        logger.error(
            "Capture %s succeeded but order %s is now %s; needs manual reconciliation",
            result.capture_id,
            order_id,
            current.status.value,
        )
        raise InvalidTransitionError(order_id, current.status.value, OrderStatus.CONFIRMED.value)

    # --- Provider-driven updates (webhooks) ---

    def confirm_capture(
        self,
        order_number: str,
        capture_id: str | None,
        capture_status: str,
        amount: str | None = None,
        currency: str | None = None,
    ) -> Order | None:
        """
        Confirm an order from a provider capture notification.

        Returns the updated order, or None when there is nothing to do
        (unknown order, already paid, no longer pending).
        """
        order = self.store.find_by_order_number(order_number)
        if order is None:
            logger.error("No order found with order number %s", order_number)
            return None

        extra: dict[str, Any] = {}
        if amount is not None:
            extra["captured_amount"] = amount
        if currency is not None:
            extra["captured_currency"] = currency
        captured = PaymentMetadata(
            capture_id=capture_id,
            capture_status=capture_status,
            captured_at=_utc_now(),
            extra=extra,
        )

        def confirm(o: Order) -> None:
            o.status = OrderStatus.CONFIRMED
            o.payment_status = PaymentStatus.PAID
            o.payment_metadata = o.payment_metadata.merge(captured)

        updated = self.store.compare_and_set(
            order.id,
            condition=lambda o: (
                o.payment_status != PaymentStatus.PAID and o.status == OrderStatus.PENDING
            ),
            apply=confirm,
        )
        if updated is None:
            logger.info("Order %s already processed, skipping capture notification", order.id)
            return None
        logger.info("Order %s payment confirmed via provider notification", order.id)
        return updated

    def record_capture_denied(
        self, order_number: str, capture_id: str | None, reason: str | None
    ) -> Order | None:
        """Mark an unpaid order's payment as failed."""
        order = self.store.find_by_order_number(order_number)
        if order is None:
            logger.error("No order found with order number %s", order_number)
            return None

        denied = PaymentMetadata(
            capture_id=capture_id,
            capture_status="DENIED",
            denied_reason=reason,
            failed_at=_utc_now(),
        )

        def fail(o: Order) -> None:
            o.payment_status = PaymentStatus.FAILED
            o.payment_metadata = o.payment_metadata.merge(denied)

        updated = self.store.compare_and_set(
            order.id,
            condition=lambda o: o.payment_status in (PaymentStatus.UNPAID, PaymentStatus.FAILED),
            apply=fail,
        )
        if updated is None:
            self._log_ignored("denied capture", order.id)
            return None
        logger.info("Order %s payment denied", order.id)
        return updated

    def record_refund(
        self, capture_id: str, refund_id: str | None, amount: str | None
    ) -> Order | None:
        """Mark a paid order's payment as refunded."""
        order = self.store.find_by_capture_id(capture_id)
        if order is None:
            logger.error("No order found with capture id %s", capture_id)
            return None

        refunded = PaymentMetadata(
            refund_id=refund_id,
            refund_amount=amount,
            refunded_at=_utc_now(),
        )

        def refund(o: Order) -> None:
            o.payment_status = PaymentStatus.REFUNDED
            o.payment_metadata = o.payment_metadata.merge(refunded)

        updated = self.store.compare_and_set(
            order.id,
            condition=lambda o: o.payment_status == PaymentStatus.PAID,
            apply=refund,
        )
        if updated is None:
            self._log_ignored("refund", order.id)
            return None
        logger.info("Order %s refunded", order.id)
        return updated

    def record_approval(self, order_number: str) -> Order | None:
        """Note that the payer approved the provider order."""
        order = self.store.find_by_order_number(order_number)
        if order is None:
            logger.error("No order found with order number %s", order_number)
            return None

        def approve(o: Order) -> None:
            o.payment_metadata = o.payment_metadata.merge(
                PaymentMetadata(approved_at=_utc_now(), extra={"provider_order_approved": True})
            )

        return self.store.compare_and_set(order.id, condition=lambda o: True, apply=approve)

    # --- Admin ---

    def admin_get_order(self, identity: Identity | None, order_id: str) -> Order:
        """Get any order, guest orders included."""
        _require_admin(identity)
        order = self.store.get_order(order_id, owner_id=ANY_OWNER)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def admin_update_order(
        self,
        identity: Identity | None,
        order_id: str,
        status: OrderStatus | None = None,
        tracking_number: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """
        Move an order along fulfillment and/or edit tracking and notes.

        Status moves follow FULFILLMENT_TRANSITIONS. A paid order is never
        cancelled here, and payment status can't be set at all.

        Raises:
            ForbiddenError: The caller isn't an admin.
            OrderNotFoundError: No such order.
            InvalidTransitionError: The status move isn't allowed.
        """
        admin = _require_admin(identity)
        current = self.admin_get_order(admin, order_id)
        observed = current.status

        if status is not None and status != observed:
            if status not in FULFILLMENT_TRANSITIONS.get(observed, set()):
                raise InvalidTransitionError(order_id, observed.value, status.value)

        def condition(o: Order) -> bool:
            if o.status != observed:
                return False
            if status == OrderStatus.CANCELLED and o.payment_status == PaymentStatus.PAID:
                return False
            return True

        def apply(o: Order) -> None:
            if status is not None:
                o.status = status
            if tracking_number is not None:
                o.tracking_number = tracking_number or None
            if notes is not None:
                o.notes = notes or None

        updated = self.store.compare_and_set(order_id, condition=condition, apply=apply)
        if updated is None:
            latest = self.admin_get_order(admin, order_id)
            requested = status.value if status is not None else None
            raise InvalidTransitionError(order_id, latest.status.value, requested)

        if status is not None and status != observed:
            logger.info(
                "Order %s moved %s -> %s by admin %s",
                order_id,
                observed.value,
                status.value,
                admin.id,
            )
        return updated
