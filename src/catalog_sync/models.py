"""
Canonical data models for the catalog sync pipeline.
These models represent the platform-agnostic structure every adapter
normalizes into and denormalizes from.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_OPTIONS = 3


class Platform(str, Enum):
    """Supported e-commerce platforms."""
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"


class ProductStatus(str, Enum):
    """The single status vocabulary every platform status collapses into."""
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class WeightUnit(str, Enum):
    GRAMS = "g"
    KILOGRAMS = "kg"
    OUNCES = "oz"
    POUNDS = "lb"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class SyncStage(str, Enum):
    """Stages an item moves through in the sync pipeline."""
    PENDING = "pending"
    FETCHED = "fetched"
    NORMALIZED = "normalized"
    DENORMALIZED = "denormalized"
    PUSHED = "pushed"
    RECORDED = "recorded"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


class Image(BaseModel):
    """Product image reference."""
    model_config = ConfigDict(frozen=True)

    src: str
    alt: Optional[str] = None
    position: Optional[int] = None


class Inventory(BaseModel):
    """Inventory settings for a product."""
    model_config = ConfigDict(frozen=True)

    quantity: int = Field(0, ge=0)
    tracked: bool = False
    allow_backorder: Optional[bool] = None


class Option(BaseModel):
    """Product option definition, e.g. "Size" with values ["S", "M", "L"]."""
    model_config = ConfigDict(frozen=True)

    name: str
    position: int
    values: list[str]

    @field_validator("values")
    @classmethod
    def distinct_values(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            value = value.strip()
            if value and value not in cleaned:
                cleaned.append(value)
        if not cleaned:
            raise ValueError("option values must not be empty")
        return cleaned


class Variant(BaseModel):
    """
    Product variant. Option values are positional: option1 holds the value
    of the first defined option, option2 the second, option3 the third.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    sku: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0)
    compare_at_price: Optional[Decimal] = None
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None
    inventory_quantity: int = Field(0, ge=0)
    inventory_tracked: bool = False
    weight: Optional[Decimal] = None
    weight_unit: Optional[WeightUnit] = None

    @property
    def option_values(self) -> list[Optional[str]]:
        return [self.option1, self.option2, self.option3]


class CanonicalProduct(BaseModel):
    """
    Canonical product model - the hub representation used throughout
    the pipeline.

    Aggregates are derived rather than free: when variants are present,
    ``price`` is the lowest variant price (the first variant carrying it
    wins ties), ``inventory.quantity`` is the sum of variant quantities and
    ``inventory.tracked`` is true if any variant tracks stock.
    ``compare_at_price`` is kept only when strictly greater than ``price``.
    """
    model_config = ConfigDict(frozen=True)

    internal_id: Optional[str] = None
    external_id: Optional[str] = None
    title: str
    description: str = ""
    price: Decimal = Field(Decimal("0"), ge=0)
    compare_at_price: Optional[Decimal] = None
    sku: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.DRAFT
    inventory: Inventory = Field(default_factory=Inventory)
    images: list[Image] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)
    options: list[Option] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def derive_aggregates(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        variants = data.get("variants") or []

        if variants:
            cheapest = variants[0]
            for variant in variants[1:]:
                if _as_decimal(_field(variant, "price", 0)) < _as_decimal(_field(cheapest, "price", 0)):
                    cheapest = variant
            data["price"] = _as_decimal(_field(cheapest, "price", 0))
            if data.get("compare_at_price") is None and _field(cheapest, "compare_at_price") is not None:
                data["compare_at_price"] = _field(cheapest, "compare_at_price")

            inventory = data.get("inventory") or {}
            data["inventory"] = {
                "quantity": sum(int(_field(v, "inventory_quantity", 0) or 0) for v in variants),
                "tracked": any(bool(_field(v, "inventory_tracked", False)) for v in variants),
                "allow_backorder": _field(inventory, "allow_backorder"),
            }

        compare_at = data.get("compare_at_price")
        if compare_at is not None and _as_decimal(compare_at) <= _as_decimal(data.get("price", 0)):
            data["compare_at_price"] = None
        return data

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("tags")
    @classmethod
    def distinct_tags(cls, tags: list[str]) -> list[str]:
        cleaned = []
        for tag in tags:
            tag = tag.strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return cleaned

    @field_validator("options")
    @classmethod
    def at_most_three_options(cls, options: list[Option]) -> list[Option]:
        if len(options) > MAX_OPTIONS:
            raise ValueError(f"a product supports at most {MAX_OPTIONS} options, got {len(options)}")
        return options

    @property
    def is_variable(self) -> bool:
        """True when the product needs a variable (multi-variant) representation."""
        return len(self.variants) > 1 and len(self.options) > 0

    def default_variant(self) -> Variant:
        """
        Variant used when the product is represented as a simple product.

        The first variant is used when variants exist; otherwise a variant
        is synthesized from the top-level price, sku and inventory.
        """
        if self.variants:
            return self.variants[0]
        return Variant(
            sku=self.sku,
            price=self.price,
            compare_at_price=self.compare_at_price,
            inventory_quantity=self.inventory.quantity,
            inventory_tracked=self.inventory.tracked,
        )

    def to_record(self) -> dict:
        """Convert to a JSON-safe dict for the canonical store."""
        return self.model_dump(mode="json")


class SyncMapping(BaseModel):
    """Durable link between a canonical item and its copy on one platform."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    canonical_product_id: str
    platform: Platform
    platform_product_id: str
    platform_variant_ids: dict[str, str] = Field(default_factory=dict)
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_synced_at: datetime = Field(default_factory=_utcnow)
    error_message: Optional[str] = None

    def to_record(self) -> dict:
        return self.model_dump(mode="json")


class SyncResult(BaseModel):
    """Outcome of syncing one item. Produced for every item, success or not."""
    success: bool
    source_id: str
    destination_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    stage: SyncStage = SyncStage.PENDING
    failed_stage: Optional[SyncStage] = None
    dry_run: bool = False
    payload: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
