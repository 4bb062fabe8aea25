"""Courier registry: pluggable courier integrations, selected by name.

In ``fake`` courier mode every courier except ``manual`` is served by a
``FakeCourier`` that carries the real courier's status table.
"""

from storefront.config import get_settings
from storefront.errors import NotFound
from storefront.fulfillment.couriers.fake_adapter import FakeCourier
from storefront.fulfillment.couriers.manual import ManualCourier
from storefront.fulfillment.couriers.pathao import PathaoCourier
from storefront.fulfillment.couriers.port import CourierAdapter
from storefront.fulfillment.couriers.redx import RedxCourier
from storefront.fulfillment.couriers.steadfast import SteadfastCourier

_COURIER_TYPES: dict[str, type[CourierAdapter]] = {
    "pathao": PathaoCourier,
    "redx": RedxCourier,
    "steadfast": SteadfastCourier,
    "manual": ManualCourier,
}
COURIER_NAMES = tuple(_COURIER_TYPES)

_couriers: dict[str, CourierAdapter] = {}


def _build(name: str) -> CourierAdapter:
    settings = get_settings()
    if name == "manual":
        return ManualCourier()
    if settings.courier_mode != "live":
        return FakeCourier(template=_COURIER_TYPES[name])

    timeout = settings.http_timeout
    if name == "pathao":
        return PathaoCourier(
            access_token=settings.pathao_access_token,
            store_id=settings.pathao_store_id,
            api_base=settings.pathao_api_base,
            timeout=timeout,
        )
    if name == "redx":
        return RedxCourier(api_key=settings.redx_api_key, api_base=settings.redx_api_base, timeout=timeout)
    return SteadfastCourier(
        api_key=settings.steadfast_api_key,
        secret_key=settings.steadfast_secret_key,
        api_base=settings.steadfast_api_base,
        timeout=timeout,
    )


def get_courier(name: str) -> CourierAdapter:
    """Return the adapter for a courier, building it on first use."""
    if name not in _COURIER_TYPES:
        raise NotFound(f"Unknown courier: {name}", field="courier")
    if name not in _couriers:
        _couriers[name] = _build(name)
    return _couriers[name]


def set_courier(name: str, courier: CourierAdapter) -> None:
    """Override the adapter for a courier (useful for tests)."""
    _couriers[name] = courier


def reset_couriers() -> None:
    """Drop all overrides and cached adapters."""
    _couriers.clear()
