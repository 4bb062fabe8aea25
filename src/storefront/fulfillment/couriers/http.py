"""Shared plumbing for couriers reached over HTTP."""

import httpx

from storefront.errors import CourierError
from storefront.fulfillment.couriers.port import CourierAdapter
from storefront.utils.http import send


class HttpCourierAdapter(CourierAdapter):
    def __init__(self, api_base: str, timeout: float = 10.0, transport: httpx.BaseTransport | None = None) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def headers(self) -> dict:
        return {"Accept": "application/json"}

    def request(self, method: str, path: str, retries: int = 0, **kwargs) -> dict:
        try:
            response = send(
                method,
                f"{self.api_base}{path}",
                timeout=self.timeout,
                retries=retries,
                transport=self.transport,
                headers=self.headers(),
                **kwargs,
            )
        except httpx.HTTPStatusError as exc:
            raise CourierError(f"{self.name} rejected {path}: {exc.response.text[:200]}") from exc
        except httpx.HTTPError as exc:
            raise CourierError(f"{self.name} unreachable: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise CourierError(f"{self.name} returned an unreadable response from {path}") from exc
