"""Custom exceptions for storefront."""


class StorefrontError(Exception):
    """Base exception for all storefront errors.

    ``kind`` is the stable machine-readable code reported to API callers,
    ``status_code`` the HTTP status the API answers with.
    """

    kind = "internal"
    status_code = 500


class UnauthenticatedError(StorefrontError):
    """Raised when a request carries no identity."""

    kind = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(StorefrontError):
    """Raised when an identity lacks the role an operation needs."""

    kind = "forbidden"
    status_code = 403

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Operation requires the '{role}' role")


class OrderNotFoundError(StorefrontError):
    """Raised when an order doesn't exist or belongs to someone else.

    Both cases produce the same message so callers cannot probe for
    other customers' order ids.
    """

    kind = "not_found"
    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransitionError(StorefrontError):
    """Raised when a status change is not allowed from the current status."""

    kind = "invalid_transition"
    status_code = 400

    def __init__(self, order_id: str, current: str, requested: str | None = None):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        if requested:
            msg = f"No valid update: order {order_id} cannot move from {current} to {requested}"
        else:
            msg = f"No valid update: order {order_id} is {current}"
        super().__init__(msg)


class ReferenceMismatchError(StorefrontError):
    """Raised when a capture names a provider order other than the stored one."""

    kind = "reference_mismatch"
    status_code = 400

    def __init__(self, order_id: str, provider_reference: str):
        self.order_id = order_id
        self.provider_reference = provider_reference
        super().__init__(
            f"Payment reference {provider_reference} does not match order {order_id}"
        )


class AlreadyPaidError(StorefrontError):
    """Raised when a payment operation targets an order that is already paid."""

    kind = "already_paid"
    status_code = 400

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order has already been paid: {order_id}")


class PaymentCaptureError(StorefrontError):
    """Raised when the payment provider did not report a completed capture."""

    kind = "upstream_failure"
    status_code = 400

    def __init__(self, message: str = "Failed to capture payment"):
        super().__init__(message)


class PaymentProviderError(PaymentCaptureError):
    """Raised when a call to the payment provider fails outright."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Payment provider call failed: {operation} ({reason})")


class OrderValidationError(StorefrontError):
    """Raised when order data or request input is malformed."""

    kind = "validation"
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class WebhookVerificationError(StorefrontError):
    """Raised when a webhook fails signature verification."""

    kind = "invalid_signature"
    status_code = 400

    def __init__(self, event_id: str | None = None):
        self.event_id = event_id
        super().__init__("Invalid webhook signature")


class ConfigurationError(StorefrontError):
    """Raised when a required setting is missing."""

    kind = "configuration"
    status_code = 500

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(f"Missing required setting: {setting}")


class InvalidSchemaVersionError(StorefrontError):
    """Raised when the order file has an unsupported schema version."""

    kind = "storage"
    status_code = 500

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )
