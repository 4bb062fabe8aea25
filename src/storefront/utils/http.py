"""Outbound HTTP for gateway and courier adapters.

Every call has a bounded timeout. Transport failures (connect errors,
timeouts) are retried ``retries`` times; HTTP error statuses are never
retried. Callers pass ``retries=1`` only for reads, or for mutations that send
an idempotency key.
"""

import httpx
import structlog

logger = structlog.get_logger(__name__)


def send(
    method: str,
    url: str,
    *,
    timeout: float,
    retries: int = 0,
    transport: httpx.BaseTransport | None = None,
    **kwargs,
) -> httpx.Response:
    attempt = 0
    while True:
        try:
            with httpx.Client(timeout=timeout, transport=transport) as client:
                response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TransportError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("http_request_retry", method=method, url=url, attempt=attempt, error=str(exc))
