"""FastAPI REST API for storefront order management."""

import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import Settings
from .errors import InvalidTransitionError, OrderValidationError, StorefrontError
from .lifecycle import OrderLifecycleManager
from .models import Identity, Order, OrderStatus
from .order_store import OrderStore
from .paypal import PayPalClient, PaymentProvider
from .utils import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, parse_status
from .webhook_store import WebhookEventStore
from .webhooks import PayPalWebhookHandler

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class AddressSchema(BaseModel):
    first_name: str
    last_name: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    phone: Optional[str] = None


class LineItemSchema(BaseModel):
    product_id: str
    product_name: str
    unit_price: str  # decimal string, e.g. "49.99"
    quantity: int
    total: str
    variant_name: Optional[str] = None


class PaymentMetadataSchema(BaseModel):
    """Accumulated payment-provider details for an order."""

    version: int = 1
    provider_order_id: Optional[str] = None
    provider_status: Optional[str] = None
    capture_id: Optional[str] = None
    capture_status: Optional[str] = None
    captured_at: Optional[str] = None
    approved_at: Optional[str] = None
    failed_at: Optional[str] = None
    denied_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[str] = None
    refunded_at: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class OrderSchema(BaseModel):
    id: str
    order_number: str
    owner_id: Optional[str] = None
    status: OrderStatus
    payment_status: str
    items: list[LineItemSchema]
    shipping_address: AddressSchema
    billing_address: AddressSchema
    subtotal: str
    tax: str
    shipping: str
    total: str
    currency: str
    provider_reference: Optional[str] = None
    payment_metadata: PaymentMetadataSchema
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: str
    updated_at: str


class PaginationSchema(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class OrderResponse(BaseModel):
    success: bool = True
    data: OrderSchema


class OrderListResponse(BaseModel):
    success: bool = True
    data: list[OrderSchema]
    pagination: PaginationSchema


class OrderUpdateRequest(BaseModel):
    """Customer order update; only cancellation is accepted."""

    status: str = Field(..., description="Requested status (only 'CANCELLED' is allowed)")


class AdminOrderUpdateRequest(BaseModel):
    """Admin fulfillment update. Payment status is not settable here."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class CreatePaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1, description="Local order ID")


class CreatePaymentData(BaseModel):
    provider_order_id: str
    approval_url: Optional[str] = None
    status: str


class CreatePaymentResponse(BaseModel):
    success: bool = True
    data: CreatePaymentData


class CaptureRequest(BaseModel):
    order_id: str = Field(..., min_length=1, description="Local order ID")
    provider_order_id: str = Field(..., min_length=1, description="PayPal order ID")


class OrderSummarySchema(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    payment_status: str
    total: str


class CaptureData(BaseModel):
    order: OrderSummarySchema
    capture_id: Optional[str] = None


class CaptureResponse(BaseModel):
    success: bool = True
    data: CaptureData


# --- Helper Functions ---


def get_settings() -> Settings:
    """Get settings from the current environment."""
    return Settings.from_env()


@lru_cache(maxsize=4)
def _paypal_client(settings: Settings) -> PayPalClient:
    return PayPalClient.from_settings(settings)


def get_order_store() -> OrderStore:
    """Get the OrderStore for the configured data directory."""
    return OrderStore(get_settings().data_dir)


def get_payment_provider() -> PaymentProvider:
    """Get the payment provider client."""
    return _paypal_client(get_settings())


def get_manager() -> OrderLifecycleManager:
    """Get an OrderLifecycleManager wired to the store and provider."""
    return OrderLifecycleManager(get_order_store(), get_payment_provider())


def get_webhook_handler() -> PayPalWebhookHandler:
    """Get the PayPal webhook handler."""
    settings = get_settings()
    provider = get_payment_provider()
    return PayPalWebhookHandler(
        manager=OrderLifecycleManager(get_order_store(), provider),
        provider=provider,
        events=WebhookEventStore(settings.data_dir),
        webhook_id=settings.paypal_webhook_id,
    )


def get_identity(request: Request) -> Identity | None:
    """
    Read the caller's identity from the headers set by the auth proxy.

    Returns None when no identity header is present (guest context).
    """
    settings = get_settings()
    user_id = request.headers.get(settings.identity_header, "").strip()
    if not user_id:
        return None
    role = request.headers.get(settings.role_header, "").strip().lower() or "customer"
    return Identity(id=user_id, role=role)


def order_to_schema(order: Order) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema."""
    return OrderSchema(**order.to_dict())


def order_to_summary(order: Order) -> OrderSummarySchema:
    return OrderSummarySchema(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status.value,
        total=str(order.total),
    )


def _error_body(kind: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"kind": kind, "message": message}}


# --- FastAPI App ---


app = FastAPI(
    title="storefront API",
    description="Order lifecycle and payment reconciliation for the storefront",
    version=__version__,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handlers ---


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to their HTTP status and error kind."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.kind, str(exc)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests through the same envelope as other errors."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    message = "Invalid request data: " + "; ".join(problems)
    return JSONResponse(status_code=400, content=_error_body(OrderValidationError.kind, message))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unanticipated and answer with a generic 500."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("internal", "Internal server error"))


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """
    Health check endpoint.

    Returns basic service status and the number of stored orders.
    """
    store = get_order_store()
    try:
        return {"status": "ok", "order_count": store.count()}
    except (OSError, ValueError, StorefrontError) as e:
        return {"status": "error", "detail": str(e)}


# --- Customer Order Endpoints ---


@app.get("/api/orders", response_model=OrderListResponse)
def list_orders(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[str] = Query(default=None, description="Filter by order status"),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
):
    """List the caller's orders with filtering, sorting and pagination."""
    identity = get_identity(request)
    manager = get_manager()
    orders, pagination = manager.list_orders(
        identity,
        page=page,
        limit=limit,
        status=parse_status(status),
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return OrderListResponse(
        data=[order_to_schema(o) for o in orders],
        pagination=PaginationSchema(**pagination.to_dict()),
    )


@app.get("/api/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, request: Request):
    """Get one of the caller's orders with items and addresses."""
    order = get_manager().get_order(get_identity(request), order_id)
    return OrderResponse(data=order_to_schema(order))


@app.patch("/api/orders/{order_id}", response_model=OrderResponse)
def update_order(order_id: str, request: Request, body: OrderUpdateRequest):
    """
    Update one of the caller's orders.

    Customers may only cancel, and only while the order is PENDING.
    """
    identity = get_identity(request)
    manager = get_manager()

    if body.status.upper() != OrderStatus.CANCELLED.value:
        current = manager.get_order(identity, order_id)
        raise InvalidTransitionError(order_id, current.status.value, body.status.upper())

    order = manager.cancel_order(identity, order_id)
    return OrderResponse(data=order_to_schema(order))


# --- Payment Endpoints ---


@app.post("/api/payments/paypal/create-order", response_model=CreatePaymentResponse)
def create_paypal_order(request: Request, body: CreatePaymentRequest):
    """Create (or return the existing) PayPal order for a pending order."""
    settings = get_settings()
    provider_order = get_manager().initiate_payment(
        get_identity(request),
        body.order_id,
        return_url=f"{settings.app_url}/checkout/success",
        cancel_url=f"{settings.app_url}/checkout/cancel",
    )
    return CreatePaymentResponse(
        data=CreatePaymentData(
            provider_order_id=provider_order.id,
            approval_url=provider_order.approval_url,
            status=provider_order.status,
        )
    )


@app.post("/api/payments/capture", response_model=CaptureResponse)
def capture_payment(request: Request, body: CaptureRequest):
    """Capture an approved PayPal order and confirm the local order."""
    order, result = get_manager().capture_payment(
        get_identity(request), body.order_id, body.provider_order_id
    )
    return CaptureResponse(
        data=CaptureData(order=order_to_summary(order), capture_id=result.capture_id)
    )


@app.post("/api/webhooks/paypal")
def paypal_webhook(request: Request, event: dict[str, Any] = Body(...)):
    """Receive a PayPal webhook delivery."""
    handler = get_webhook_handler()
    handler.handle(dict(request.headers), event)
    return {"success": True, "data": {"received": True}}


# --- Admin Endpoints ---


@app.get("/api/admin/orders/{order_id}", response_model=OrderResponse)
def admin_get_order(order_id: str, request: Request):
    """Get any order (admin only)."""
    order = get_manager().admin_get_order(get_identity(request), order_id)
    return OrderResponse(data=order_to_schema(order))


@app.patch("/api/admin/orders/{order_id}", response_model=OrderResponse)
def admin_update_order(order_id: str, request: Request, body: AdminOrderUpdateRequest):
    """Advance fulfillment status and edit tracking number or notes (admin only)."""
    order = get_manager().admin_update_order(
        get_identity(request),
        order_id,
        status=body.status,
        tracking_number=body.tracking_number,
        notes=body.notes,
    )
    return OrderResponse(data=order_to_schema(order))
