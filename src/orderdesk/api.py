"""FastAPI REST API for orderdesk order management."""

import logging
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .errors import (
    AlreadyInStateError,
    AlreadyVerifiedError,
    ConcurrentModificationError,
    InvalidSchemaVersionError,
    InvalidTransitionError,
    OrderdeskError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    RefundNotApprovedError,
    RefundNotRequestedError,
    TimelineOrderError,
    ValidationError,
)
from .expiry import days_until_deadline, is_expired
from .models import Order, order_age, total_items
from .order_store import JsonOrderStore
from .service import OrderService

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class OrderItemSchema(BaseModel):
    product_id: str
    type: str  # "Book"|"Ebook"|"Poster"
    title: str
    price: float
    quantity: int
    subtotal: float


class OrderItemInput(BaseModel):
    """Line item as sent by checkout. Subtotal is always recomputed."""

    product_id: str
    type: str
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class AddressSchema(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str = "Malaysia"
    phone: Optional[str] = None


class PaymentMethodSchema(BaseModel):
    type: str  # "epay"|"fbx"
    name: str
    account_number: str
    account_name: str
    bank_name: str


class PricingSchema(BaseModel):
    subtotal: float
    tax: float = 0.0
    shipping: float = 0.0
    total: Optional[float] = None


class ShippingInfoSchema(BaseModel):
    method: str = "standard"
    carrier: str = ""
    tracking_number: str = ""
    estimated_delivery: Optional[str] = None
    actual_delivery: Optional[str] = None
    shipped_at: Optional[str] = None


class ShippingInfoInput(BaseModel):
    method: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


class TimelineEntrySchema(BaseModel):
    status: str
    timestamp: str
    note: str = ""
    updated_by: Optional[str] = None


class RefundSchema(BaseModel):
    requested: bool = False
    requested_at: Optional[str] = None
    reason: str = ""
    status: Optional[str] = None
    amount: Optional[float] = None
    processed_at: Optional[str] = None
    processed_by: Optional[str] = None


class OrderSchema(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: list[OrderItemSchema]
    shipping_address: AddressSchema
    billing_address: AddressSchema
    payment_method: PaymentMethodSchema
    transaction_proof: str
    pricing: PricingSchema
    status: str
    payment_status: str
    verification_deadline: Optional[str]
    verification_notes: str
    admin_notes: str
    notes: str
    shipping_info: ShippingInfoSchema
    timeline: list[TimelineEntrySchema]
    refund: RefundSchema
    priority: str
    tags: list[str]
    archived: bool
    archived_at: Optional[str]
    created_at: str
    updated_at: str
    version: int
    # Derived on read
    order_age: int
    total_items: int
    is_verification_expired: bool
    days_until_deadline: Optional[int]


class OrderCreateRequest(BaseModel):
    """Request body sent by checkout."""

    user_id: str
    items: list[OrderItemInput]
    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = Field(
        None, description="Defaults to the shipping address"
    )
    payment_method: PaymentMethodSchema
    transaction_proof: str = Field(..., description="Reference to the uploaded transfer proof")
    pricing: PricingSchema
    notes: str = ""


class OrderUpdateRequest(BaseModel):
    """Operational metadata. Status is changed through the workflow endpoints."""

    priority: Optional[str] = None
    tags: Optional[list[str]] = None
    admin_notes: Optional[str] = None
    notes: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    is_approved: bool
    notes: str = ""
    actor: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    shipping_info: Optional[ShippingInfoInput] = None
    actor: Optional[str] = None
    note: Optional[str] = None


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RefundResolveRequest(BaseModel):
    decision: str = Field(..., description="'approved' or 'rejected'")
    actor: Optional[str] = None


class RefundProcessRequest(BaseModel):
    amount: Optional[float] = Field(None, ge=0, description="Defaults to the order total")
    actor: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int
    total: int
    page: int
    limit: int
    pages: int


class StatsResponse(BaseModel):
    total_orders: int
    total_revenue: float
    pending_orders: int
    verified_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    average_order_value: float


class ExpiryResponse(BaseModel):
    order_id: str
    order_number: str
    verification_deadline: Optional[str]
    is_expired: bool
    days_until_deadline: Optional[int]


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


# --- Helper Functions ---


def get_order_service() -> OrderService:
    """Get the OrderService backed by the global JSON store."""
    return OrderService(JsonOrderStore())


def order_to_schema(order: Order, service: OrderService) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema, adding derived fields."""
    now = service.now()
    data = order.to_dict()
    data.update(
        order_age=order_age(order, now),
        total_items=total_items(order),
        is_verification_expired=is_expired(order, now),
        days_until_deadline=days_until_deadline(order, now),
    )
    return OrderSchema.model_validate(data)


# --- FastAPI App ---


app = FastAPI(
    title="orderdesk API",
    description="REST API for order verification, fulfillment and refunds",
    version=__version__,
)

# CORS for the admin and storefront frontends during local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:3001",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    OrderNotFoundError: 404,
    InvalidTransitionError: 409,
    AlreadyInStateError: 409,
    AlreadyVerifiedError: 409,
    RefundNotRequestedError: 409,
    RefundNotApprovedError: 409,
    ConcurrentModificationError: 409,
    TimelineOrderError: 409,
    OrderNumberCollisionError: 503,
    InvalidSchemaVersionError: 500,
}


@app.exception_handler(OrderdeskError)
async def orderdesk_error_handler(request: Request, exc: OrderdeskError) -> JSONResponse:
    """Map OrderdeskError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """
    Health check endpoint.

    Returns basic service status and the number of stored orders.
    """
    service = get_order_service()
    try:
        orders = service.store.list_orders()
        return {"status": "ok", "order_count": len(orders)}
    except Exception as e:
        return {"status": "error", "detail": str(e)}


@app.post("/api/orders", response_model=OrderSchema, status_code=201)
def create_order(request: OrderCreateRequest):
    service = get_order_service()
    pricing = request.pricing.model_dump()
    order = service.create_order(
        user_id=request.user_id,
        items=[i.model_dump() for i in request.items],
        shipping_address=request.shipping_address.model_dump(),
        billing_address=(
            request.billing_address.model_dump() if request.billing_address else None
        ),
        payment_method=request.payment_method.model_dump(),
        transaction_proof=request.transaction_proof,
        pricing=pricing,
        notes=request.notes,
    )
    return order_to_schema(order, service)


@app.get("/api/orders", response_model=OrderListResponse)
def list_orders(
    user_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    include_archived: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """List orders newest first, with optional user and status filters."""
    service = get_order_service()
    orders, total = service.list_orders(
        user_id=user_id,
        status=status,
        include_archived=include_archived,
        page=page,
        limit=limit,
    )
    return OrderListResponse(
        orders=[order_to_schema(o, service) for o in orders],
        count=len(orders),
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
def get_order(order_id: str):
    service = get_order_service()
    return order_to_schema(service.get_order(order_id), service)


@app.patch("/api/orders/{order_id}", response_model=OrderSchema)
def update_order(order_id: str, request: OrderUpdateRequest):
    service = get_order_service()
    order = service.update_metadata(
        order_id,
        priority=request.priority,
        tags=request.tags,
        admin_notes=request.admin_notes,
        notes=request.notes,
    )
    return order_to_schema(order, service)


@app.post("/api/orders/{order_id}/verify", response_model=OrderSchema)
def verify_order_payment(order_id: str, request: VerifyPaymentRequest):
    """Approve or reject the uploaded transfer proof."""
    service = get_order_service()
    order = service.verify_payment(
        order_id, request.is_approved, request.notes, actor=request.actor
    )
    return order_to_schema(order, service)


@app.post("/api/orders/{order_id}/status", response_model=OrderSchema)
def update_order_status(order_id: str, request: StatusUpdateRequest):
    """Move an order to processing, shipped, delivered or cancelled."""
    service = get_order_service()
    shipping_info = None
    if request.shipping_info is not None:
        shipping_info = request.shipping_info.model_dump(exclude_none=True)
    order = service.update_status(
        order_id,
        request.status,
        shipping_info=shipping_info,
        actor=request.actor,
        note=request.note,
    )
    return order_to_schema(order, service)


@app.post("/api/orders/{order_id}/refund", response_model=OrderSchema)
def request_order_refund(order_id: str, request: RefundRequest):
    service = get_order_service()
    return order_to_schema(service.request_refund(order_id, request.reason), service)


@app.post("/api/orders/{order_id}/refund/resolve", response_model=OrderSchema)
def resolve_order_refund(order_id: str, request: RefundResolveRequest):
    service = get_order_service()
    order = service.resolve_refund(order_id, request.decision, actor=request.actor)
    return order_to_schema(order, service)


@app.post("/api/orders/{order_id}/refund/process", response_model=OrderSchema)
def process_order_refund(order_id: str, request: RefundProcessRequest):
    service = get_order_service()
    order = service.process_refund(order_id, request.amount, actor=request.actor)
    return order_to_schema(order, service)


@app.post("/api/orders/{order_id}/archive", response_model=OrderSchema)
def archive_order(order_id: str):
    service = get_order_service()
    return order_to_schema(service.archive_order(order_id), service)


@app.get("/api/orders/{order_id}/expiry", response_model=ExpiryResponse)
def get_order_expiry(order_id: str):
    service = get_order_service()
    order = service.get_order(order_id)
    now = service.now()
    return ExpiryResponse(
        order_id=order.id,
        order_number=order.order_number,
        verification_deadline=order.to_dict()["verification_deadline"],
        is_expired=is_expired(order, now),
        days_until_deadline=days_until_deadline(order, now),
    )


@app.get("/api/orders-expired", response_model=OrderListResponse)
def list_expired_orders():
    """Unverified orders past their deadline, for the scheduled sweep."""
    service = get_order_service()
    orders = service.list_expired_pending()
    return OrderListResponse(
        orders=[order_to_schema(o, service) for o in orders],
        count=len(orders),
        total=len(orders),
        page=1,
        limit=max(len(orders), 1),
        pages=1,
    )


@app.get("/api/stats", response_model=StatsResponse)
def get_stats(user_id: Optional[str] = Query(default=None)):
    service = get_order_service()
    return StatsResponse(**service.get_order_stats(user_id))
