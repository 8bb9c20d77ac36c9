"""PayPal webhook handling."""

import logging
from typing import Any

from .errors import ConfigurationError, OrderValidationError, WebhookVerificationError
from .lifecycle import OrderLifecycleManager
from .paypal import WEBHOOK_HEADERS, PaymentProvider
from .webhook_store import WebhookEventStore

logger = logging.getLogger(__name__)

PROVIDER = "PAYPAL"


def _capture_id_from_refund(refund: dict[str, Any]) -> str | None:
    """The refunded capture is the last path segment of the refund's "up" link."""
    for link in refund.get("links", []):
        if link.get("rel") == "up" and link.get("href"):
            return link["href"].rstrip("/").split("/")[-1]
    return None


class PayPalWebhookHandler:
    """Verifies PayPal webhook deliveries and applies them to orders."""

    def __init__(
        self,
        manager: OrderLifecycleManager,
        provider: PaymentProvider,
        events: WebhookEventStore,
        webhook_id: str | None,
    ):
        self.manager = manager
        self.provider = provider
        self.events = events
        self.webhook_id = webhook_id

    def handle(self, headers: dict[str, str], event: dict[str, Any]) -> bool:
        """
        Process one webhook delivery.

        Returns:
            True if the event was applied, False if it had already been
            processed.

        Raises:
            ConfigurationError: No webhook id configured.
            WebhookVerificationError: The signature didn't verify.
            OrderValidationError: The payload isn't a webhook event.
        """
        if not self.webhook_id:
            raise ConfigurationError("PAYPAL_WEBHOOK_ID")

        event_id = event.get("id")
        event_type = event.get("event_type")
        if not isinstance(event_id, str) or not event_id or not event_type:
            raise OrderValidationError("missing event id or type", field="event")

        relevant = {k.lower(): v for k, v in headers.items() if k.lower() in WEBHOOK_HEADERS}
        if not self.provider.verify_webhook_signature(relevant, event, self.webhook_id):
            logger.error("Invalid PayPal webhook signature for event %s", event_id)
            raise WebhookVerificationError(event_id)

        logger.info("Processing PayPal webhook %s (%s)", event_id, event_type)
        if not self.events.record(event_id, PROVIDER, event_type):
            logger.info("Event %s already processed, skipping", event_id)
            return False

        self._dispatch(event_type, event.get("resource") or {})
        self.events.mark_processed(event_id)
        return True

    def _dispatch(self, event_type: str, resource: dict[str, Any]) -> None:
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            order_number = resource.get("custom_id") or resource.get("invoice_id")
            if not order_number:
                logger.error("No custom id in PayPal capture event")
                return
            amount = resource.get("amount") or {}
            self.manager.confirm_capture(
                order_number,
                capture_id=resource.get("id"),
                capture_status=resource.get("status", "COMPLETED"),
                amount=amount.get("value"),
                currency=amount.get("currency_code"),
            )

        elif event_type == "PAYMENT.CAPTURE.DENIED":
            order_number = resource.get("custom_id") or resource.get("invoice_id")
            if not order_number:
                logger.error("No custom id in PayPal capture denied event")
                return
            self.manager.record_capture_denied(
                order_number,
                capture_id=resource.get("id"),
                reason=(resource.get("status_details") or {}).get("reason"),
            )

        elif event_type == "PAYMENT.CAPTURE.REFUNDED":
            capture_id = _capture_id_from_refund(resource)
            if not capture_id:
                logger.error("No capture id in PayPal refund event")
                return
            self.manager.record_refund(
                capture_id,
                refund_id=resource.get("id"),
                amount=(resource.get("amount") or {}).get("value"),
            )

        elif event_type == "CHECKOUT.ORDER.APPROVED":
            units = resource.get("purchase_units") or []
            order_number = units[0].get("custom_id") if units else None
            if not order_number:
                logger.error("No custom id in PayPal order approved event")
                return
            self.manager.record_approval(order_number)

        else:
            logger.info("Unhandled PayPal event type: %s", event_type)
