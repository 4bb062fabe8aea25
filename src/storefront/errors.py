"""Typed error taxonomy for the checkout and settlement pipeline.

Every error is a Protean ``ValidationError`` so that a failing command handler
rolls back its UnitOfWork exactly as any other domain validation failure
would. On top of the field messages, each error carries a stable ``code``
(what went wrong) and a ``category`` (how callers should react):

- ``validation``: the request itself is wrong; nothing was mutated.
- ``conflict``: the request was valid but lost a race (stock, coupon limit);
  the transaction was rolled back and the cart is intact.
- ``external``: a gateway or courier could not be reached or refused.
- ``reconciliation``: a server-to-server callback could not be applied.
- ``not_found``: the referenced record does not exist.
"""

from protean.exceptions import ValidationError


class StorefrontError(ValidationError):
    code = "storefront_error"
    category = "validation"
    field = "error"

    def __init__(self, message: str, field: str | None = None):
        self.message = message
        super().__init__({field or self.field: [message]})

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class EmptyCart(StorefrontError):
    code = "empty_cart"
    field = "cart"


class InvalidAddress(StorefrontError):
    code = "invalid_address"
    field = "shipping_address"


class InvalidCoupon(StorefrontError):
    code = "invalid_coupon"
    field = "coupon_code"


class ProductUnavailable(StorefrontError):
    code = "product_unavailable"
    field = "product_id"


class InvalidTransition(StorefrontError):
    code = "invalid_transition"
    field = "status"


class OrderNotCancellable(InvalidTransition):
    code = "order_not_cancellable"


class ReturnNotAllowed(InvalidTransition):
    code = "return_not_allowed"


class InvalidRefund(StorefrontError):
    code = "invalid_refund"
    field = "amount"


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------
class ConflictError(StorefrontError):
    code = "conflict"
    category = "conflict"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"
    field = "quantity"

    def __init__(self, stock_key: str, available: int, requested: int):
        self.stock_key = stock_key
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {stock_key}: {available} available, {requested} requested")


class CouponLimitReached(ConflictError):
    code = "coupon_limit_reached"
    field = "coupon_code"


class ConcurrentUpdate(ConflictError):
    code = "concurrent_update"


# ---------------------------------------------------------------------------
# External dependencies
# ---------------------------------------------------------------------------
class GatewayError(StorefrontError):
    code = "gateway_error"
    category = "external"
    field = "gateway"


class PaymentInitiationFailed(GatewayError):
    code = "payment_initiation_failed"


class RefundFailed(GatewayError):
    code = "refund_failed"


class CourierError(StorefrontError):
    code = "courier_error"
    category = "external"
    field = "courier"


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
class ReconciliationError(StorefrontError):
    code = "reconciliation_error"
    category = "reconciliation"
    field = "callback"
    retryable = False


class InvalidSignature(ReconciliationError):
    code = "invalid_signature"


class MalformedCallback(ReconciliationError):
    code = "malformed_payload"


class UnknownReference(ReconciliationError):
    code = "unknown_reference"
    retryable = True


class AmountMismatch(ReconciliationError):
    code = "amount_mismatch"


class OutOfOrderCallback(ReconciliationError):
    code = "out_of_order"
    retryable = True


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
class NotFound(StorefrontError):
    code = "not_found"
    category = "not_found"
