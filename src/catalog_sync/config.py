"""
Runtime configuration for the catalog sync service.

Settings are read from ``CATALOG_SYNC_*`` environment variables. Reading
the environment is side-effect free; nothing here loads dotenv files.
"""

import os
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, field_validator

from catalog_sync.exceptions import ConfigurationError
from catalog_sync.models import WeightUnit

ENV_PREFIX = "CATALOG_SYNC_"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class SyncSettings:
    log_level: str = "INFO"
    json_logs: bool = False
    inter_item_delay_ms: int = 150
    batch_page_size: int = 10
    import_page_size: int = 50
    max_workers: int = 1
    http_timeout: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    shopify_api_version: str = "2024-10"
    shopify_max_variants: int = 100
    woocommerce_weight_unit: WeightUnit = WeightUnit.KILOGRAMS

    @property
    def inter_item_delay(self) -> float:
        return self.inter_item_delay_ms / 1000.0


class ShopifyCredentials(BaseModel):
    """Connection settings for a Shopify store."""
    shop: str
    access_token: str

    @field_validator("shop")
    @classmethod
    def strip_scheme(cls, value: str) -> str:
        value = value.strip()
        for prefix in ("https://", "http://"):
            if value.startswith(prefix):
                value = value[len(prefix):]
        return value.rstrip("/")


class WooCommerceCredentials(BaseModel):
    """Connection settings for a WooCommerce store."""
    url: str
    consumer_key: str
    consumer_secret: str

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            message=f"{ENV_PREFIX}{name} must be an integer, got {raw!r}",
            config_key=ENV_PREFIX + name,
        )
    if value < minimum:
        raise ConfigurationError(
            message=f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}",
            config_key=ENV_PREFIX + name,
        )
    return value


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(
            message=f"{ENV_PREFIX}{name} must be a number, got {raw!r}",
            config_key=ENV_PREFIX + name,
        )
    if value < 0:
        raise ConfigurationError(
            message=f"{ENV_PREFIX}{name} must not be negative, got {value}",
            config_key=ENV_PREFIX + name,
        )
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    if raw.lower() in _TRUE:
        return True
    if raw.lower() in _FALSE:
        return False
    raise ConfigurationError(
        message=f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}",
        config_key=ENV_PREFIX + name,
    )


def settings_from_env() -> SyncSettings:
    """
    Build settings from the environment.

    Raises:
        ConfigurationError: If a variable is present but invalid
    """
    log_level = _env("LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(
            message=f"Unknown log level {log_level!r}",
            config_key=ENV_PREFIX + "LOG_LEVEL",
        )

    raw_unit = _env("WOOCOMMERCE_WEIGHT_UNIT", WeightUnit.KILOGRAMS.value)
    try:
        weight_unit = WeightUnit(raw_unit.lower())
    except ValueError:
        raise ConfigurationError(
            message=f"Unsupported weight unit {raw_unit!r}",
            config_key=ENV_PREFIX + "WOOCOMMERCE_WEIGHT_UNIT",
        )

    return SyncSettings(
        log_level=log_level,
        json_logs=_env_bool("JSON_LOGS", False),
        inter_item_delay_ms=_env_int("INTER_ITEM_DELAY_MS", 150),
        batch_page_size=_env_int("BATCH_PAGE_SIZE", 10, minimum=1),
        import_page_size=_env_int("IMPORT_PAGE_SIZE", 50, minimum=1),
        max_workers=_env_int("MAX_WORKERS", 1, minimum=1),
        http_timeout=_env_float("HTTP_TIMEOUT", 30.0),
        retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3, minimum=1),
        retry_base_delay=_env_float("RETRY_BASE_DELAY", 1.0),
        shopify_api_version=_env("SHOPIFY_API_VERSION", "2024-10"),
        shopify_max_variants=_env_int("SHOPIFY_MAX_VARIANTS", 100, minimum=1),
        woocommerce_weight_unit=weight_unit,
    )


def shopify_credentials_from_env() -> Optional[ShopifyCredentials]:
    """Return Shopify credentials when both variables are set, else None."""
    shop, token = _env("SHOPIFY_SHOP"), _env("SHOPIFY_ACCESS_TOKEN")
    if not shop or not token:
        return None
    return ShopifyCredentials(shop=shop, access_token=token)


def woocommerce_credentials_from_env() -> Optional[WooCommerceCredentials]:
    """Return WooCommerce credentials when all variables are set, else None."""
    url = _env("WOOCOMMERCE_URL")
    key, secret = _env("WOOCOMMERCE_CONSUMER_KEY"), _env("WOOCOMMERCE_CONSUMER_SECRET")
    if not url or not key or not secret:
        return None
    return WooCommerceCredentials(url=url, consumer_key=key, consumer_secret=secret)
