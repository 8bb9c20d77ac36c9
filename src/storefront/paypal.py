"""PayPal payment provider integration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import httpx

from .config import Settings
from .errors import ConfigurationError, PaymentProviderError
from .models import Order

logger = logging.getLogger(__name__)

BRAND_NAME = "Home Textile Store"

# ISO 3166-1 alpha-2 codes for country names the checkout form produces.
COUNTRY_CODES = {
    "United States": "US",
    "United States of America": "US",
    "USA": "US",
    "Canada": "CA",
    "United Kingdom": "GB",
    "UK": "GB",
    "Germany": "DE",
    "France": "FR",
    "Italy": "IT",
    "Spain": "ES",
    "Netherlands": "NL",
    "Belgium": "BE",
    "Switzerland": "CH",
    "Austria": "AT",
    "Sweden": "SE",
    "Norway": "NO",
    "Denmark": "DK",
    "Finland": "FI",
    "Poland": "PL",
    "Portugal": "PT",
    "Ireland": "IE",
    "Australia": "AU",
    "New Zealand": "NZ",
    "Japan": "JP",
    "Singapore": "SG",
    "India": "IN",
    "Brazil": "BR",
    "Mexico": "MX",
}


def country_code(country: str) -> str:
    """Map a country name to its two-letter code, defaulting to US."""
    if len(country) == 2:
        return country.upper()
    code = COUNTRY_CODES.get(country)
    if code:
        return code
    logger.warning("Country %r not in mapping, defaulting to US", country)
    return "US"


def format_amount(amount: Decimal) -> str:
    """Format a Decimal the way PayPal expects (two places, no exponent)."""
    return str(amount.quantize(Decimal("0.01")))


@dataclass
class ProviderOrder:
    """A payment-provider order as returned by create/get."""

    id: str
    status: str
    approval_url: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> ProviderOrder:
        approval_url = None
        for link in data.get("links", []):
            if link.get("rel") in ("approve", "payer-action"):
                approval_url = link.get("href")
                break
        return cls(id=data["id"], status=data.get("status", ""), approval_url=approval_url)


@dataclass
class CaptureResult:
    """Outcome of capturing a provider order."""

    status: str
    capture_id: str | None = None
    amount: str | None = None
    currency: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> CaptureResult:
        capture: dict[str, Any] = {}
        units = data.get("purchase_units") or []
        if units:
            captures = (units[0].get("payments") or {}).get("captures") or []
            if captures:
                capture = captures[0]
        amount = capture.get("amount") or {}
        return cls(
            status=data.get("status", ""),
            capture_id=capture.get("id"),
            amount=amount.get("value"),
            currency=amount.get("currency_code"),
            raw=data,
        )


class PaymentProvider(Protocol):
    """Protocol for payment providers the lifecycle manager talks to."""

    def create_order(self, order: Order, return_url: str, cancel_url: str) -> ProviderOrder:
        """Create a provider-side order for a local order."""
        ...

    def get_order(self, provider_order_id: str) -> ProviderOrder:
        """Look up an existing provider-side order."""
        ...

    def capture_order(self, provider_order_id: str) -> CaptureResult:
        """Capture an approved provider-side order."""
        ...

    def verify_webhook_signature(
        self, headers: dict[str, str], event: dict[str, Any], webhook_id: str
    ) -> bool:
        """Check a webhook delivery really came from the provider."""
        ...


WEBHOOK_HEADERS = (
    "paypal-auth-algo",
    "paypal-cert-id",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)


class PayPalClient:
    """PayPal REST v2 client.

    The OAuth token is fetched lazily and cached until shortly before it
    expires. Every call is bounded by the configured timeout; transport
    failures, timeouts and non-2xx answers raise PaymentProviderError.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> PayPalClient:
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            timeout=settings.paypal_timeout,
        )

    def close(self) -> None:
        self._http.close()

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not self.client_id:
            raise ConfigurationError("PAYPAL_CLIENT_ID")
        if not self.client_secret:
            raise ConfigurationError("PAYPAL_CLIENT_SECRET")

        data = self._send(
            "oauth2/token",
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            logger.error("PayPal oauth2/token response had no access token")
            raise PaymentProviderError("oauth2/token", "malformed response")
        try:
            expires_in = int(data.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0
        self._token = token
        # Refresh a minute early so a token never expires mid-request.
        self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
        return self._token

    def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.error("PayPal %s timed out", operation)
            raise PaymentProviderError(operation, "timeout")
        except httpx.HTTPStatusError as e:
            logger.error(
                "PayPal %s failed with HTTP %s: %s",
                operation,
                e.response.status_code,
                e.response.text[:500],
            )
            raise PaymentProviderError(operation, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("PayPal %s failed: %s", operation, e)
            raise PaymentProviderError(operation, type(e).__name__)

        try:
            return response.json()
        except ValueError:
            raise PaymentProviderError(operation, "malformed response")

    def _call(self, operation: str, method: str, url: str, json: Any = None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Prefer": "return=representation",
        }
        return self._send(operation, method, url, json=json, headers=headers)

    def create_order(self, order: Order, return_url: str, cancel_url: str) -> ProviderOrder:
        currency = order.currency
        addr = order.shipping_address
        body = {
            "intent": "CAPTURE",
            "application_context": {
                "return_url": return_url,
                "cancel_url": cancel_url,
                "brand_name": BRAND_NAME,
                "locale": "en-US",
                "landing_page": "BILLING",
                "shipping_preference": "SET_PROVIDED_ADDRESS",
                "user_action": "PAY_NOW",
            },
            "purchase_units": [
                {
                    "reference_id": order.id,
                    "custom_id": order.order_number,
                    "description": f"Order {order.order_number}",
                    "amount": {
                        "currency_code": currency,
                        "value": format_amount(order.total),
                        "breakdown": {
                            "item_total": {
                                "currency_code": currency,
                                "value": format_amount(order.subtotal),
                            },
                            "shipping": {
                                "currency_code": currency,
                                "value": format_amount(order.shipping),
                            },
                            "tax_total": {
                                "currency_code": currency,
                                "value": format_amount(order.tax),
                            },
                        },
                    },
                    "items": [
                        {
                            "name": item.product_name[:127],
                            "description": (
                                f"{item.product_name} - {item.variant_name}"
                                if item.variant_name
                                else item.product_name
                            )[:127],
                            "unit_amount": {
                                "currency_code": currency,
                                "value": format_amount(item.unit_price),
                            },
                            "quantity": str(item.quantity),
                            "category": "PHYSICAL_GOODS",
                        }
                        for item in order.items
                    ],
                    "shipping": {
                        "name": {"full_name": f"{addr.first_name} {addr.last_name}"},
                        "address": {
                            "address_line_1": addr.street,
                            "admin_area_2": addr.city,
                            "admin_area_1": addr.state,
                            "postal_code": addr.postal_code,
                            "country_code": country_code(addr.country),
                        },
                    },
                }
            ],
        }
        data = self._call("orders/create", "POST", "/v2/checkout/orders", json=body)
        return ProviderOrder.from_response(data)

    def get_order(self, provider_order_id: str) -> ProviderOrder:
        data = self._call("orders/get", "GET", f"/v2/checkout/orders/{provider_order_id}")
        return ProviderOrder.from_response(data)

    def capture_order(self, provider_order_id: str) -> CaptureResult:
        data = self._call(
            "orders/capture", "POST", f"/v2/checkout/orders/{provider_order_id}/capture", json={}
        )
        return CaptureResult.from_response(data)

    def verify_webhook_signature(
        self, headers: dict[str, str], event: dict[str, Any], webhook_id: str
    ) -> bool:
        lowered = {k.lower(): v for k, v in headers.items()}
        body = {
            "auth_algo": lowered.get("paypal-auth-algo", ""),
            "cert_id": lowered.get("paypal-cert-id", ""),
            "transmission_id": lowered.get("paypal-transmission-id", ""),
            "transmission_sig": lowered.get("paypal-transmission-sig", ""),
            "transmission_time": lowered.get("paypal-transmission-time", ""),
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        try:
            data = self._call(
                "notifications/verify-webhook-signature",
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json=body,
            )
        except PaymentProviderError:
            return False
        return data.get("verification_status") == "SUCCESS"
