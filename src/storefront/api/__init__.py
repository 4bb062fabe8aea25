"""Storefront HTTP API package."""

from storefront.api.routes import (
    cart_router,
    coupon_router,
    inventory_router,
    order_router,
    payment_router,
    shipment_router,
)
from storefront.api.webhooks import webhook_router

__all__ = [
    "cart_router",
    "coupon_router",
    "order_router",
    "payment_router",
    "shipment_router",
    "inventory_router",
    "webhook_router",
]
