from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "storefront-service"


class ServiceSettings(BaseSettings):
    """Base settings shared by all storefront services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    create_schema_on_startup: bool = Field(default=False)
    redis_url: str | None = Field(default=None)
    pricing_service_url: str | None = Field(default=None)
    catalog_service_url: str | None = Field(default=None)
    cart_service_url: str | None = Field(default=None)
    upstream_timeout_seconds: float = Field(default=2.0, gt=0.0)
    rate_cache_ttl_seconds: int = Field(default=300, ge=0)
    reporting_currency: str = Field(default="TRY", min_length=3, max_length=3)
    checkout_tax_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), le=Decimal("1"))
    checkout_shipping_fee: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    payment_gateway: Literal["simulated", "declining"] = Field(default="simulated")
    enforce_authorization: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )

    @field_validator("reporting_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
