"""HTTP mapping for the storefront error taxonomy.

Protean's own handlers cover its base exceptions (plain validation errors,
missing aggregates). Storefront errors are mapped by category on top of them,
so a command failure always produces ``{"error": code, "detail": messages}``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers

from storefront.errors import StorefrontError

logger = structlog.get_logger(__name__)

CATEGORY_STATUS = {
    "validation": 422,
    "conflict": 409,
    "external": 502,
    "not_found": 404,
}

RECONCILIATION_STATUS = {
    "invalid_signature": 401,
    "malformed_payload": 400,
    "unknown_reference": 404,
    "out_of_order": 409,
    "unknown_gateway": 404,
}


def status_for(error: StorefrontError) -> int:
    if error.category == "reconciliation":
        return RECONCILIATION_STATUS.get(error.code, 422)
    return CATEGORY_STATUS.get(error.category, 400)


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("request_failed_upstream", path=request.url.path, error=exc.code, detail=exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.messages})


def register_exception_handlers(app: FastAPI) -> None:
    register_protean_handlers(app)
    app.add_exception_handler(StorefrontError, storefront_error_handler)
