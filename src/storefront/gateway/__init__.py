"""Payment gateway registry.

Adapters are looked up by the payment method discriminator (``card``,
``hosted``, ``cod``). In ``fake`` gateway mode the card and hosted methods
are served by ``FakeGateway`` instances; cash on delivery always uses the
real adapter since it makes no external calls.

``set_gateway()`` overrides an entry (useful for tests) and
``reset_gateways()`` drops all overrides.
"""

from storefront.config import get_settings
from storefront.errors import NotFound
from storefront.gateway.card import CardRedirectGateway
from storefront.gateway.cod import CashOnDeliveryGateway
from storefront.gateway.fake_adapter import FakeGateway
from storefront.gateway.hosted import HostedRedirectGateway
from storefront.gateway.port import PaymentGateway

GATEWAY_NAMES = ("card", "hosted", "cod")

_gateways: dict[str, PaymentGateway] = {}


def _build(name: str) -> PaymentGateway:
    settings = get_settings()
    if name == "cod":
        return CashOnDeliveryGateway()
    if settings.gateway_mode != "live":
        return FakeGateway(name=name)
    if name == "card":
        return CardRedirectGateway(
            api_key=settings.card_api_key,
            webhook_secret=settings.card_webhook_secret,
            api_base=settings.card_api_base,
            timeout=settings.http_timeout,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    return HostedRedirectGateway(
        store_id=settings.hosted_store_id,
        store_password=settings.hosted_store_password,
        api_base=settings.hosted_api_base,
        timeout=settings.http_timeout,
    )


def get_gateway(name: str) -> PaymentGateway:
    """Return the adapter for a payment method, building it on first use."""
    if name not in GATEWAY_NAMES:
        raise NotFound(f"Unknown payment gateway: {name}", field="gateway")
    if name not in _gateways:
        _gateways[name] = _build(name)
    return _gateways[name]


def set_gateway(name: str, gateway: PaymentGateway) -> None:
    """Override the adapter for a payment method."""
    _gateways[name] = gateway


def reset_gateways() -> None:
    """Drop all overrides and cached adapters."""
    _gateways.clear()
