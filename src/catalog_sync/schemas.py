"""
Wire schemas for platform payloads.

These mirror what each platform's REST API sends and accepts. They are kept
separate from the canonical models on purpose: a platform payload is never
a CanonicalProduct, even where the field names look alike. Inbound parsing
is lenient (unknown keys ignored, malformed scalars coerced to None) so that
data-quality problems become defaults in the transformer rather than errors.
"""

from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _lenient_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    return None


def _lenient_id(value: Any) -> Optional[Union[int, str]]:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        return stripped or None
    return _lenient_int(value)


def _lenient_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes"}:
            return True
        if lowered in {"0", "false", "no"}:
            return False
        # WooCommerce variations report "parent" when stock is managed upstream.
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _lenient_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _dict_items(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, BaseModel))]


def _str_items(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return [_lenient_str(item) for item in value if _lenient_str(item) is not None]


def _any_items(value: Any) -> list:
    return value if isinstance(value, list) else []


WireId = Annotated[Optional[Union[int, str]], BeforeValidator(_lenient_id)]
WireInt = Annotated[Optional[int], BeforeValidator(_lenient_int)]
WireBool = Annotated[Optional[bool], BeforeValidator(_lenient_bool)]
WireStr = Annotated[Optional[str], BeforeValidator(_lenient_str)]
# Prices travel as string-encoded decimals but some stores send numbers.
WirePrice = Annotated[Optional[Union[str, int, float]], BeforeValidator(
    lambda v: v if isinstance(v, (str, int, float)) and not isinstance(v, bool) else None
)]


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_payload(self) -> dict:
        """Dump only the fields that were explicitly set, in JSON-safe form."""
        return self.model_dump(mode="json", exclude_unset=True)


# =============================================================================
# SHOPIFY (Admin REST API)
# =============================================================================


class ShopifyImage(WireModel):
    id: WireId = None
    src: WireStr = None
    alt: WireStr = None
    position: WireInt = None


class ShopifyOption(WireModel):
    id: WireId = None
    name: WireStr = None
    position: WireInt = None
    values: Annotated[list[str], BeforeValidator(_str_items)] = Field(default_factory=list)


class ShopifyVariant(WireModel):
    id: WireId = None
    sku: WireStr = None
    price: WirePrice = None
    compare_at_price: WirePrice = None
    option1: WireStr = None
    option2: WireStr = None
    option3: WireStr = None
    position: WireInt = None
    inventory_quantity: WireInt = None
    inventory_management: WireStr = None
    inventory_policy: WireStr = None
    weight: WirePrice = None
    weight_unit: WireStr = None


class ShopifyProduct(WireModel):
    id: WireId = None
    title: WireStr = None
    body_html: WireStr = None
    vendor: WireStr = None
    product_type: WireStr = None
    handle: WireStr = None
    status: WireStr = None
    tags: WireStr = None
    variants: Annotated[list[ShopifyVariant], BeforeValidator(_dict_items)] = Field(default_factory=list)
    options: Annotated[list[ShopifyOption], BeforeValidator(_dict_items)] = Field(default_factory=list)
    images: Annotated[list[ShopifyImage], BeforeValidator(_dict_items)] = Field(default_factory=list)


# =============================================================================
# WOOCOMMERCE (REST API v3)
# =============================================================================


class WooTerm(WireModel):
    """Category or tag reference."""
    id: WireId = None
    name: WireStr = None
    slug: WireStr = None


class WooImage(WireModel):
    id: WireId = None
    src: WireStr = None
    alt: WireStr = None


class WooAttribute(WireModel):
    id: WireId = None
    name: WireStr = None
    position: WireInt = None
    visible: WireBool = None
    variation: WireBool = None
    options: Annotated[list[str], BeforeValidator(_str_items)] = Field(default_factory=list)


class WooVariationAttribute(WireModel):
    id: WireId = None
    name: WireStr = None
    option: WireStr = None


class WooVariation(WireModel):
    id: WireId = None
    sku: WireStr = None
    price: WirePrice = None
    regular_price: WirePrice = None
    sale_price: WirePrice = None
    manage_stock: WireBool = None
    stock_quantity: WireInt = None
    stock_status: WireStr = None
    backorders: WireStr = None
    weight: WireStr = None
    attributes: Annotated[list[WooVariationAttribute], BeforeValidator(_dict_items)] = Field(
        default_factory=list
    )


class WooProduct(WireModel):
    id: WireId = None
    name: WireStr = None
    slug: WireStr = None
    type: WireStr = None
    status: WireStr = None
    description: WireStr = None
    short_description: WireStr = None
    sku: WireStr = None
    price: WirePrice = None
    regular_price: WirePrice = None
    sale_price: WirePrice = None
    manage_stock: WireBool = None
    stock_quantity: WireInt = None
    stock_status: WireStr = None
    backorders: WireStr = None
    weight: WireStr = None
    categories: Annotated[list[WooTerm], BeforeValidator(_dict_items)] = Field(default_factory=list)
    tags: Annotated[list[WooTerm], BeforeValidator(_dict_items)] = Field(default_factory=list)
    images: Annotated[list[WooImage], BeforeValidator(_dict_items)] = Field(default_factory=list)
    attributes: Annotated[list[WooAttribute], BeforeValidator(_dict_items)] = Field(default_factory=list)
    variations: Annotated[list[Any], BeforeValidator(_any_items)] = Field(default_factory=list)
