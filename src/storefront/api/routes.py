"""FastAPI routes for the storefront: carts, coupons, orders, payments,
shipments and stock.

Every command is dispatched through ``process_serialized`` or a module-level
helper (``place_order``, ``cancel_order``, ``refund_payment``...) that holds
the right row keys around ``current_domain.process``. Those endpoints block
on row locks and on gateway and courier calls, so they are plain ``def`` and
run in the threadpool. Reads stay ``async``.
"""

import json

from fastapi import APIRouter
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    AddToCartRequest,
    AdjustStockRequest,
    ApplyCouponRequest,
    CancelOrderRequest,
    CartIdResponse,
    CartIssuesResponse,
    CartItemResponse,
    CartResponse,
    CashConfirmationRequest,
    ChangedResponse,
    CheckoutRequest,
    CheckoutResponse,
    CouponDiscountResponse,
    CouponIdResponse,
    CreateCouponRequest,
    CreateShipmentRequest,
    MergeGuestCartRequest,
    MergeResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentIdResponse,
    PaymentResponse,
    PaymentSessionResponse,
    PaymentStatusResponse,
    ReceiveStockRequest,
    RefundedAmountResponse,
    RefundRequest,
    RequestReturnRequest,
    RetryPaymentRequest,
    ShipmentIdResponse,
    ShipmentResponse,
    StatusResponse,
    StockLevelResponse,
    UpdateCartItemRequest,
)
from storefront.cart.cart import ShoppingCart
from storefront.cart.coupons import ApplyCouponToCart, RemoveCouponFromCart
from storefront.cart.items import AddToCart, RemoveFromCart, UpdateCartItem
from storefront.cart.management import ClearCart, MergeGuestCart, ValidateCart
from storefront.cart.summary import summarize_cart
from storefront.coupon.management import CreateCoupon, DeactivateCoupon
from storefront.fulfillment.shipment import Shipment
from storefront.fulfillment.shipping import create_shipment
from storefront.fulfillment.tracking import refresh_shipment
from storefront.inventory import ledger
from storefront.inventory.receiving import adjust_stock, receive_stock
from storefront.order.archive import archive_order
from storefront.order.cancellation import cancel_order
from storefront.order.checkout import place_order
from storefront.order.order import Order
from storefront.order.returns import approve_return, complete_return, request_return
from storefront.payment.cod import confirm_cash_payment
from storefront.payment.initiation import initiate_payment
from storefront.payment.payment import Payment
from storefront.payment.refund import refund_payment
from storefront.payment.retry import retry_payment
from storefront.utils.locks import cart_lock_key, process_serialized


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------
def _cart_response(cart: ShoppingCart, shipping_method: str = "standard") -> CartResponse:
    summary = summarize_cart(cart, shipping_method=shipping_method)
    quote = summary.quote
    return CartResponse(
        cart_id=str(cart.id),
        customer_id=str(cart.customer_id) if cart.customer_id else None,
        status=cart.status,
        coupon_code=cart.coupon_code,
        items=[
            CartItemResponse(
                item_id=str(item.id),
                product_id=str(item.product_id),
                variant_id=str(item.variant_id) if item.variant_id else None,
                product_name=item.product_name,
                sku=item.sku,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in cart.items
        ],
        subtotal=quote.subtotal,
        discount_amount=quote.discount_amount,
        shipping_cost=quote.shipping_cost,
        tax=quote.tax,
        total=quote.total,
        currency=quote.currency,
        coupon_error=summary.coupon_error,
    )


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=str(order.customer_id),
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        shipping_method=order.shipping_method,
        coupon_code=order.coupon_code,
        items=[
            OrderItemResponse(
                item_id=str(item.id),
                product_id=str(item.product_id),
                variant_id=str(item.variant_id) if item.variant_id else None,
                product_name=item.product_name,
                sku=item.sku,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
                refunded_quantity=item.refunded_quantity or 0,
            )
            for item in order.items
        ],
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        shipping_cost=order.shipping_cost,
        tax=order.tax,
        total=order.total,
        refunded_amount=order.refunded_amount,
        currency=order.currency,
        next_status=order.next_status,
        is_archived=bool(order.is_archived),
        timeline=order.history,
    )


def _payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        order_number=payment.order_number,
        payment_method=payment.payment_method,
        status=payment.status,
        attempt_number=payment.attempt_number,
        amount=payment.amount,
        refunded_amount=payment.refunded_amount,
        currency=payment.currency,
        gateway_reference=payment.gateway_reference,
        transaction_id=payment.transaction_id,
        failure_reason=payment.failure_reason,
    )


def _shipment_response(shipment: Shipment) -> ShipmentResponse:
    return ShipmentResponse(
        shipment_id=str(shipment.id),
        order_id=str(shipment.order_id),
        order_number=shipment.order_number,
        courier=shipment.courier,
        tracking_id=shipment.tracking_id,
        tracking_url=shipment.tracking_url,
        status=shipment.status,
        courier_status=shipment.courier_status,
        cod_amount=shipment.cod_amount,
        delivered_at=shipment.delivered_at,
        history=shipment.history,
    )


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("/items", status_code=201, response_model=CartIdResponse)
def add_to_active_cart(body: AddToCartRequest) -> CartIdResponse:
    """Add to the customer's (or guest session's) active cart, creating it if needed."""
    command = AddToCart(
        customer_id=body.customer_id,
        session_id=body.session_id,
        product_id=body.product_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
    )
    cart_id = process_serialized(command)
    return CartIdResponse(cart_id=cart_id)


@cart_router.post("/merge", response_model=MergeResponse)
def merge_guest_cart(body: MergeGuestCartRequest) -> MergeResponse:
    command = MergeGuestCart(session_id=body.session_id, customer_id=body.customer_id)
    result = process_serialized(command)
    return MergeResponse(**result)


@cart_router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(cart_id: str, shipping_method: str = "standard") -> CartResponse:
    cart = current_domain.repository_for(ShoppingCart).get(cart_id)
    return _cart_response(cart, shipping_method)


@cart_router.post("/{cart_id}/items", response_model=CartIdResponse)
def add_cart_item(cart_id: str, body: AddToCartRequest) -> CartIdResponse:
    command = AddToCart(
        cart_id=cart_id,
        product_id=body.product_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
    )
    process_serialized(command, cart_lock_key(cart_id))
    return CartIdResponse(cart_id=cart_id)


@cart_router.put("/{cart_id}/items/{item_id}", response_model=StatusResponse)
def update_cart_item(cart_id: str, item_id: str, body: UpdateCartItemRequest) -> StatusResponse:
    command = UpdateCartItem(cart_id=cart_id, item_id=item_id, quantity=body.quantity)
    process_serialized(command, cart_lock_key(cart_id))
    return StatusResponse()


@cart_router.delete("/{cart_id}/items/{item_id}", response_model=StatusResponse)
def remove_cart_item(cart_id: str, item_id: str) -> StatusResponse:
    process_serialized(RemoveFromCart(cart_id=cart_id, item_id=item_id), cart_lock_key(cart_id))
    return StatusResponse()


@cart_router.delete("/{cart_id}/items", response_model=StatusResponse)
def clear_cart(cart_id: str) -> StatusResponse:
    process_serialized(ClearCart(cart_id=cart_id), cart_lock_key(cart_id))
    return StatusResponse()


@cart_router.post("/{cart_id}/validate", response_model=CartIssuesResponse)
def validate_cart(cart_id: str) -> CartIssuesResponse:
    issues = process_serialized(ValidateCart(cart_id=cart_id), cart_lock_key(cart_id))
    return CartIssuesResponse(cart_id=cart_id, issues=issues)


@cart_router.post("/{cart_id}/coupon", response_model=CouponDiscountResponse)
def apply_cart_coupon(cart_id: str, body: ApplyCouponRequest) -> CouponDiscountResponse:
    command = ApplyCouponToCart(cart_id=cart_id, coupon_code=body.coupon_code)
    discount = process_serialized(command, cart_lock_key(cart_id))
    return CouponDiscountResponse(coupon_code=body.coupon_code.strip().upper(), discount_amount=discount)


@cart_router.delete("/{cart_id}/coupon", response_model=StatusResponse)
def remove_cart_coupon(cart_id: str) -> StatusResponse:
    process_serialized(RemoveCouponFromCart(cart_id=cart_id), cart_lock_key(cart_id))
    return StatusResponse()


@cart_router.post("/{cart_id}/checkout", status_code=201, response_model=CheckoutResponse)
def checkout_cart(cart_id: str, body: CheckoutRequest) -> CheckoutResponse:
    """Place an order from the cart.

    Payment is started separately with ``POST /payments/{payment_id}/initiate``
    so a gateway outage never rolls back a placed order.
    """
    result = place_order(
        cart_id=cart_id,
        customer_id=body.customer_id,
        shipping_address=body.shipping_address.model_dump(exclude_none=True),
        billing_address=body.billing_address.model_dump(exclude_none=True) if body.billing_address else None,
        shipping_method=body.shipping_method,
        payment_method=body.payment_method,
        notes=body.notes,
    )
    return CheckoutResponse(
        order_id=result.order_id,
        order_number=result.order_number,
        payment_id=result.payment_id,
        total=result.total,
        status=result.status,
    )


# ---------------------------------------------------------------------------
# Coupon Router
# ---------------------------------------------------------------------------
coupon_router = APIRouter(prefix="/coupons", tags=["coupons"])


@coupon_router.post("", status_code=201, response_model=CouponIdResponse)
def create_coupon(body: CreateCouponRequest) -> CouponIdResponse:
    command = CreateCoupon(
        code=body.code,
        discount_type=body.discount_type,
        value=body.value,
        description=body.description,
        min_order_amount=body.min_order_amount,
        max_discount_amount=body.max_discount_amount,
        usage_limit=body.usage_limit,
        usage_limit_per_user=body.usage_limit_per_user,
        starts_at=body.starts_at,
        expires_at=body.expires_at,
        applicable_to=body.applicable_to,
        product_ids=json.dumps(body.product_ids) if body.product_ids else None,
        category_ids=json.dumps(body.category_ids) if body.category_ids else None,
        allowed_user_ids=json.dumps(body.allowed_user_ids) if body.allowed_user_ids else None,
    )
    coupon_id = process_serialized(command)
    return CouponIdResponse(coupon_id=coupon_id)


@coupon_router.put("/{coupon_id}/deactivate", response_model=StatusResponse)
def deactivate_coupon(coupon_id: str) -> StatusResponse:
    process_serialized(DeactivateCoupon(coupon_id=coupon_id))
    return StatusResponse()


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(current_domain.repository_for(Order).get(order_id))


@order_router.get("/{order_id}/payments", response_model=list[PaymentResponse])
async def list_order_payments(order_id: str) -> list[PaymentResponse]:
    payments = current_domain.repository_for(Payment).for_order(order_id)
    return [_payment_response(payment) for payment in payments]


@order_router.put("/{order_id}/cancel", response_model=StatusResponse)
def cancel(order_id: str, body: CancelOrderRequest) -> StatusResponse:
    cancel_order(order_id, reason=body.reason, customer_id=body.customer_id)
    return StatusResponse()


@order_router.post("/{order_id}/return", response_model=StatusResponse)
def request_order_return(order_id: str, body: RequestReturnRequest) -> StatusResponse:
    request_return(order_id, body.reason, customer_id=body.customer_id, description=body.description)
    return StatusResponse()


@order_router.put("/{order_id}/return/approve", response_model=StatusResponse)
def approve_order_return(order_id: str) -> StatusResponse:
    approve_return(order_id)
    return StatusResponse()


@order_router.put("/{order_id}/return/complete", response_model=RefundedAmountResponse)
def complete_order_return(order_id: str) -> RefundedAmountResponse:
    refunded = complete_return(order_id)
    return RefundedAmountResponse(refunded_amount=refunded)


@order_router.put("/{order_id}/archive", response_model=StatusResponse)
def archive(order_id: str) -> StatusResponse:
    archive_order(order_id)
    return StatusResponse()


@order_router.post("/{order_id}/payments", status_code=201, response_model=PaymentIdResponse)
def retry_order_payment(order_id: str, body: RetryPaymentRequest) -> PaymentIdResponse:
    """Open a new payment attempt for a pending order whose earlier attempts did not complete."""
    payment_id = retry_payment(order_id, customer_id=body.customer_id, payment_method=body.payment_method)
    return PaymentIdResponse(payment_id=payment_id)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: str) -> PaymentResponse:
    return _payment_response(current_domain.repository_for(Payment).get(payment_id))


@payment_router.post("/{payment_id}/initiate", response_model=PaymentSessionResponse)
def initiate(payment_id: str) -> PaymentSessionResponse:
    session = initiate_payment(payment_id)
    return PaymentSessionResponse(
        payment_id=session.payment_id,
        reference=session.reference,
        redirect_url=session.redirect_url,
        client_secret=session.client_secret,
    )


@payment_router.post("/{payment_id}/refund", response_model=PaymentStatusResponse)
def refund(payment_id: str, body: RefundRequest) -> PaymentStatusResponse:
    status = refund_payment(payment_id, body.amount, reason=body.reason, items=body.items)
    return PaymentStatusResponse(payment_id=payment_id, status=status)


@payment_router.put("/{payment_id}/cash-received", response_model=PaymentStatusResponse)
def confirm_cash(payment_id: str, body: CashConfirmationRequest) -> PaymentStatusResponse:
    status = confirm_cash_payment(payment_id, receipt_number=body.receipt_number)
    return PaymentStatusResponse(payment_id=payment_id, status=status)


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("", status_code=201, response_model=ShipmentIdResponse)
def book_shipment(body: CreateShipmentRequest) -> ShipmentIdResponse:
    shipment_id = create_shipment(body.order_id, body.courier)
    return ShipmentIdResponse(shipment_id=shipment_id)


@shipment_router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: str) -> ShipmentResponse:
    return _shipment_response(current_domain.repository_for(Shipment).get(shipment_id))


@shipment_router.post("/{shipment_id}/refresh", response_model=ChangedResponse)
def refresh(shipment_id: str) -> ChangedResponse:
    return ChangedResponse(changed=refresh_shipment(shipment_id))


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/receive", response_model=StockLevelResponse)
def receive(body: ReceiveStockRequest) -> StockLevelResponse:
    receive_stock(body.product_id, body.quantity, variant_id=body.variant_id)
    return StockLevelResponse(
        product_id=body.product_id,
        variant_id=body.variant_id,
        available=ledger.available(body.product_id, body.variant_id),
    )


@inventory_router.put("/adjust", response_model=StockLevelResponse)
def adjust(body: AdjustStockRequest) -> StockLevelResponse:
    adjust_stock(body.product_id, body.new_level, body.reason, variant_id=body.variant_id)
    return StockLevelResponse(
        product_id=body.product_id,
        variant_id=body.variant_id,
        available=ledger.available(body.product_id, body.variant_id),
    )


@inventory_router.get("/{product_id}", response_model=StockLevelResponse)
async def stock_level(product_id: str, variant_id: str | None = None) -> StockLevelResponse:
    return StockLevelResponse(
        product_id=product_id,
        variant_id=variant_id,
        available=ledger.available(product_id, variant_id),
    )
