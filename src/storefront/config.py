"""Application settings for the storefront.

Protean's own configuration (databases, brokers, event store) lives in
``domain.toml``. Everything the checkout pipeline needs at runtime (pricing
rates, gateway credentials, courier endpoints) is read from the environment
here, prefixed with ``STOREFRONT_``.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="PROTEAN_ENV")
    base_url: str = "http://localhost:8000"

    # Pricing
    currency: str = "USD"
    tax_rate: float = Field(default=0.05, ge=0)
    standard_shipping: float = Field(default=10.0, ge=0)
    express_shipping: float = Field(default=20.0, ge=0)
    free_shipping_threshold: float | None = Field(default=100.0, ge=0)
    return_window_days: int = Field(default=14, ge=0)

    # Payment gateways
    gateway_mode: str = "fake"  # fake | live
    http_timeout: float = Field(default=10.0, gt=0)
    webhook_tolerance_seconds: int = Field(default=300, ge=0)

    card_api_base: str = "https://api.stripe.com/v1"
    card_api_key: str = ""
    card_webhook_secret: str = ""

    hosted_api_base: str = "https://sandbox.sslcommerz.com"
    hosted_store_id: str = ""
    hosted_store_password: str = ""

    # Couriers
    courier_mode: str = "fake"  # fake | live
    courier_webhook_token: str = ""

    pathao_api_base: str = "https://api-hermes.pathao.com"
    pathao_access_token: str = ""
    pathao_store_id: str = ""

    redx_api_base: str = "https://openapi.redx.com.bd/v1.0.0-beta"
    redx_api_key: str = ""

    steadfast_api_base: str = "https://portal.packzy.com/api/v1"
    steadfast_api_key: str = ""
    steadfast_secret_key: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
