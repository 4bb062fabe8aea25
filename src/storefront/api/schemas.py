"""Pydantic request/response schemas for the storefront API.

These are external contracts, kept separate from the Protean commands they
are translated into.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    name: str
    phone: str | None = None
    line1: str
    line2: str | None = None
    city: str
    state: str | None = None
    postal_code: str
    country: str


class StatusResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: dict | str


# ---------------------------------------------------------------------------
# Carts
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    customer_id: str | None = None
    session_id: str | None = None
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=1, default=1)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "product_id": "prod-001",
                    "quantity": 2,
                }
            ]
        }
    }


class UpdateCartItemRequest(BaseModel):
    quantity: int


class ApplyCouponRequest(BaseModel):
    coupon_code: str


class MergeGuestCartRequest(BaseModel):
    session_id: str
    customer_id: str


class CartItemResponse(BaseModel):
    item_id: str
    product_id: str
    variant_id: str | None = None
    product_name: str | None = None
    sku: str | None = None
    unit_price: float
    quantity: int
    line_total: float


class CartResponse(BaseModel):
    cart_id: str
    customer_id: str | None = None
    status: str
    coupon_code: str | None = None
    items: list[CartItemResponse]
    subtotal: float
    discount_amount: float
    shipping_cost: float
    tax: float
    total: float
    currency: str
    coupon_error: str | None = None


class CartIdResponse(BaseModel):
    cart_id: str


class MergeResponse(BaseModel):
    cart_id: str | None = None
    merged: int
    skipped: list[dict]


class CartIssuesResponse(BaseModel):
    cart_id: str
    issues: list[dict]


class CouponDiscountResponse(BaseModel):
    coupon_code: str
    discount_amount: float


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CreateCouponRequest(BaseModel):
    code: str
    discount_type: str = "percentage"
    value: float = Field(ge=0)
    description: str | None = None
    min_order_amount: float = Field(ge=0, default=0.0)
    max_discount_amount: float | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    usage_limit_per_user: int | None = Field(default=None, ge=1)
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    applicable_to: str = "all_products"
    product_ids: list[str] = []
    category_ids: list[str] = []
    allowed_user_ids: list[str] = []

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "SAVE10",
                    "discount_type": "percentage",
                    "value": 10,
                    "usage_limit_per_user": 1,
                }
            ]
        }
    }


class CouponIdResponse(BaseModel):
    coupon_id: str


# ---------------------------------------------------------------------------
# Checkout and orders
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    customer_id: str
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    shipping_method: str = "standard"
    payment_method: str = "card"
    notes: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "shipping_address": {
                        "name": "Jane Doe",
                        "line1": "123 Main St",
                        "city": "Springfield",
                        "postal_code": "62701",
                        "country": "US",
                    },
                    "payment_method": "card",
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    order_id: str
    order_number: str
    payment_id: str
    total: float
    status: str


class OrderItemResponse(BaseModel):
    item_id: str
    product_id: str
    variant_id: str | None = None
    product_name: str
    sku: str
    unit_price: float
    quantity: int
    line_total: float
    refunded_quantity: int


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    payment_status: str
    payment_method: str | None = None
    shipping_method: str | None = None
    coupon_code: str | None = None
    items: list[OrderItemResponse]
    subtotal: float
    discount_amount: float
    shipping_cost: float
    tax: float
    total: float
    refunded_amount: float
    currency: str
    next_status: str | None = None
    is_archived: bool
    timeline: list[dict]


class CancelOrderRequest(BaseModel):
    customer_id: str | None = None
    reason: str | None = None


class RequestReturnRequest(BaseModel):
    customer_id: str | None = None
    reason: str
    description: str | None = None


class RefundedAmountResponse(BaseModel):
    refunded_amount: float


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class PaymentSessionResponse(BaseModel):
    payment_id: str
    reference: str | None = None
    redirect_url: str | None = None
    client_secret: str | None = None


class RetryPaymentRequest(BaseModel):
    customer_id: str | None = None
    payment_method: str | None = None


class PaymentIdResponse(BaseModel):
    payment_id: str


class RefundRequest(BaseModel):
    amount: float = Field(gt=0)
    reason: str | None = None
    items: dict[str, int] | None = None


class CashConfirmationRequest(BaseModel):
    receipt_number: str | None = None


class PaymentStatusResponse(BaseModel):
    payment_id: str
    status: str


class PaymentResponse(BaseModel):
    payment_id: str
    order_id: str
    order_number: str
    payment_method: str
    status: str
    attempt_number: int
    amount: float
    refunded_amount: float
    currency: str
    gateway_reference: str | None = None
    transaction_id: str | None = None
    failure_reason: str | None = None


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------
class CreateShipmentRequest(BaseModel):
    order_id: str
    courier: str


class ShipmentIdResponse(BaseModel):
    shipment_id: str


class ShipmentResponse(BaseModel):
    shipment_id: str
    order_id: str
    order_number: str
    courier: str
    tracking_id: str
    tracking_url: str | None = None
    status: str
    courier_status: str | None = None
    cod_amount: float
    delivered_at: datetime | None = None
    history: list[dict]


class ChangedResponse(BaseModel):
    changed: bool


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class ReceiveStockRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=1)


class AdjustStockRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    new_level: int = Field(ge=0)
    reason: str


class StockLevelResponse(BaseModel):
    product_id: str
    variant_id: str | None = None
    available: int


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class WebhookAcceptedResponse(BaseModel):
    outcome: str
    payment_id: str | None = None
