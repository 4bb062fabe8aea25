"""Webhook receivers for payment gateways and couriers.

Gateways retry any delivery that is not answered with a 2xx, so a 2xx is
returned only once the callback has been applied (or recognised as already
applied). Every rejection gets a non-2xx status.

The body is read on the event loop. Applying it holds row locks and may call
the gateway or the courier, so that part runs in the threadpool.
"""

import hmac
import json

import structlog
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.api.errors import RECONCILIATION_STATUS
from storefront.api.schemas import ChangedResponse, WebhookAcceptedResponse
from storefront.config import get_settings
from storefront.errors import InvalidSignature, MalformedCallback, NotFound
from storefront.fulfillment.couriers import COURIER_NAMES
from storefront.fulfillment.tracking import record_courier_webhook
from storefront.gateway import GATEWAY_NAMES, get_gateway
from storefront.settlement.reconciler import Accepted, handle_callback

logger = structlog.get_logger(__name__)

COURIER_TOKEN_HEADER = "X-Webhook-Token"

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payments/{gateway}", response_model=WebhookAcceptedResponse)
async def payment_webhook(gateway: str, request: Request):
    if gateway not in GATEWAY_NAMES:
        raise NotFound(f"Unknown payment gateway: {gateway}", field="gateway")

    payload = await request.body()
    header = get_gateway(gateway).signature_header
    signature = request.headers.get(header) if header else None

    result = await run_in_threadpool(handle_callback, gateway, payload, signature)
    if isinstance(result, Accepted):
        return WebhookAcceptedResponse(outcome=result.outcome, payment_id=result.payment_id)

    return JSONResponse(
        status_code=RECONCILIATION_STATUS.get(result.reason, 422),
        content={"error": result.reason, "detail": result.detail, "retryable": result.retryable},
    )


@webhook_router.post("/couriers/{courier}", response_model=ChangedResponse)
async def courier_webhook(courier: str, request: Request) -> ChangedResponse:
    if courier not in COURIER_NAMES:
        raise NotFound(f"Unknown courier: {courier}", field="courier")

    expected = get_settings().courier_webhook_token
    if expected:
        supplied = request.headers.get(COURIER_TOKEN_HEADER) or ""
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            logger.warning("courier_webhook_rejected", courier=courier, reason="invalid_token")
            raise InvalidSignature("Courier webhook token does not match")

    try:
        payload = json.loads(await request.body())
    except ValueError as exc:
        raise MalformedCallback(f"Courier webhook body is not JSON: {exc}") from exc

    changed = await run_in_threadpool(record_courier_webhook, courier, payload)
    return ChangedResponse(changed=changed)
