"""
Transformer module for converting platform payloads to and from the
canonical product model.

Every platform format feeds into CanonicalProduct (normalize) and is derived
from it (denormalize). Transformers do no I/O: fetching variant
sub-resources and pushing payloads is the orchestrator's job, and the
transformer only accepts already-fetched data.
"""

import html
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from catalog_sync.exceptions import DataQualityError, ErrorContext, SyncError, TransformationError
from catalog_sync.logging_config import get_correlation_id, log_execution_time
from catalog_sync.models import (
    MAX_OPTIONS,
    CanonicalProduct,
    Image,
    Inventory,
    Option,
    Platform,
    ProductStatus,
    Variant,
    WeightUnit,
)
from catalog_sync.schemas import (
    ShopifyImage,
    ShopifyOption,
    ShopifyProduct,
    ShopifyVariant,
    WooAttribute,
    WooImage,
    WooProduct,
    WooVariation,
    WooVariationAttribute,
)

logger = logging.getLogger(__name__)

SHOPIFY_MAX_VARIANTS = 100

_BLOCK_TAG_RE = re.compile(
    r"</?(p|div|br|li|ul|ol|h[1-6]|tr|td|th|table|section|article|blockquote)\b[^>]*>",
    re.IGNORECASE,
)
_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_THOUSANDS_RE = re.compile(r"\d{1,3}(,\d{3})+")

_GRAMS_PER_UNIT = {
    WeightUnit.GRAMS: Decimal("1"),
    WeightUnit.KILOGRAMS: Decimal("1000"),
    WeightUnit.OUNCES: Decimal("28.349523125"),
    WeightUnit.POUNDS: Decimal("453.59237"),
}


@dataclass
class TransformationResult:
    """Result of a batch transformation with per-item failures."""
    successful: list[CanonicalProduct] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_count": self.total_count,
            "failed_product_ids": [f.get("product_id") for f in self.failed],
            "warning_count": len(self.warnings),
        }


@dataclass(frozen=True)
class VariationPayload:
    """A variant sub-resource that must be pushed after its parent exists."""
    sku: Optional[str]
    payload: dict
    destination_id: Optional[str] = None


@dataclass(frozen=True)
class DenormalizedProduct:
    """
    Platform payload derived from a canonical product.

    ``variations`` is empty for platforms that take variants inline with the
    parent. When it is not, each entry must be submitted only after
    ``payload`` has been created on the destination.
    """
    platform: Platform
    payload: dict
    variations: list[VariationPayload] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "payload": self.payload,
            "variations": [v.payload for v in self.variations],
        }


@dataclass
class DenormalizationResult(TransformationResult):
    """Result of a batch denormalization; successful entries are platform payloads."""
    successful: list[DenormalizedProduct] = field(default_factory=list)


class PlatformTransformer:
    """
    Base class for per-platform transformers.

    Subclasses provide the status table and the wire mapping; shared
    parsing helpers live here.
    """

    platform: Platform
    STATUS_MAP: dict[str, ProductStatus] = {}
    REQUIRED_FIELDS: tuple[str, ...] = ()

    def __init__(self, correlation_id: Optional[str] = None):
        # An explicit id overrides the one current when an error is raised.
        self.correlation_id = correlation_id

    def normalize(self, raw_product: dict, variants: Optional[list[dict]] = None) -> CanonicalProduct:
        raise NotImplementedError

    def denormalize(
        self,
        product: CanonicalProduct,
        variant_ids: Optional[Mapping[str, str]] = None,
    ) -> DenormalizedProduct:
        raise NotImplementedError

    def needs_variant_fetch(self, raw_product: dict) -> bool:
        """Whether variant sub-resources must be fetched before normalizing."""
        return False

    def source_id(self, raw_product: Any) -> Optional[str]:
        """Safely extract the platform ID from a raw payload."""
        if not isinstance(raw_product, dict):
            return None
        raw_product = self._unwrap(raw_product)
        value = raw_product.get("id")
        if value is None or value == "":
            return None
        return str(value)

    def _unwrap(self, raw_product: dict) -> dict:
        return raw_product

    def _error_context(self) -> ErrorContext:
        return ErrorContext(correlation_id=self.correlation_id or get_correlation_id() or None)

    def _require_identity(self, raw_product: Any) -> dict:
        """
        Check the fields a canonical product cannot exist without.

        Raises:
            TransformationError: If the payload is not an object or lacks
                an identity or title field.
        """
        if not isinstance(raw_product, dict):
            raise TransformationError(
                message=f"{self.platform.value} payload must be an object, got {type(raw_product).__name__}",
                product_id=None,
                platform=self.platform.value,
                context=self._error_context(),
            )
        raw_product = self._unwrap(raw_product)
        product_id = self.source_id(raw_product)
        for field_name in self.REQUIRED_FIELDS:
            value = raw_product.get(field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise TransformationError(
                    message=f"Missing required field '{field_name}' in {self.platform.value} payload",
                    product_id=product_id,
                    field_name=field_name,
                    platform=self.platform.value,
                    context=self._error_context(),
                )
        return raw_product

    def _parse_wire(self, schema: type[BaseModel], raw: dict, product_id: Optional[str]) -> Any:
        try:
            return schema.model_validate(raw)
        except PydanticValidationError as e:
            raise TransformationError(
                message=f"Malformed {self.platform.value} payload: {e.error_count()} invalid fields",
                product_id=product_id,
                platform=self.platform.value,
                context=self._error_context(),
                original_exception=e,
            )

    def _map_status(self, raw_status: Optional[str]) -> ProductStatus:
        """Map a platform status to the canonical vocabulary, defaulting to draft."""
        if not raw_status:
            return ProductStatus.DRAFT
        return self.STATUS_MAP.get(raw_status.strip().lower(), ProductStatus.DRAFT)

    def _strip_html(self, text: Optional[str]) -> str:
        """Reduce rich text to whitespace-normalized plain text."""
        if not text:
            return ""
        text = _SCRIPT_RE.sub(" ", text)
        text = _BLOCK_TAG_RE.sub(" ", text)
        text = _TAG_RE.sub("", text)
        text = html.unescape(text)
        return _WHITESPACE_RE.sub(" ", text).strip()

    def _parse_price(self, amount: Any) -> Decimal:
        """Parse a price from various formats. Anything unparsable is 0."""
        if amount is None or isinstance(amount, bool):
            return Decimal("0")
        if isinstance(amount, (int, float, Decimal)):
            value = Decimal(str(amount))
        elif isinstance(amount, str):
            cleaned = self._decimal_separators(re.sub(r"[^\d.,\-]", "", amount))
            if not cleaned:
                return Decimal("0")
            try:
                value = Decimal(cleaned)
            except InvalidOperation:
                return Decimal("0")
        else:
            return Decimal("0")
        if not value.is_finite() or value < 0:
            return Decimal("0")
        return value

    def _decimal_separators(self, text: str) -> str:
        """
        Rewrite a numeric string to use "." as the only decimal separator.

        "1,234.50" and "1.234,50" both become "1234.50"; a lone comma that is
        not a thousands group ("12,50") is the decimal point. Returns "" for
        strings with no single reading.
        """
        if "," in text and "." in text:
            if text.rfind(",") > text.rfind("."):
                return text.replace(".", "").replace(",", ".")
            return text.replace(",", "")
        if "," in text:
            if _THOUSANDS_RE.fullmatch(text.lstrip("-")):
                return text.replace(",", "")
            if text.count(",") == 1:
                return text.replace(",", ".")
            return ""
        return text

    def _parse_optional_price(self, amount: Any) -> Optional[Decimal]:
        if amount is None or (isinstance(amount, str) and not amount.strip()):
            return None
        return self._parse_price(amount)

    def _compare_at(self, regular: Optional[Decimal], current: Decimal) -> Optional[Decimal]:
        if regular is not None and regular > current:
            return regular
        return None

    def _format_price(self, value: Decimal) -> str:
        return str(value.quantize(Decimal("0.01")))

    def _parse_weight(self, value: Any) -> Optional[Decimal]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        weight = self._parse_price(value)
        return weight

    def _parse_weight_unit(self, value: Optional[str]) -> Optional[WeightUnit]:
        if not value:
            return None
        lowered = value.strip().lower()
        aliases = {"lbs": "lb", "pound": "lb", "pounds": "lb", "kgs": "kg", "grams": "g", "ounces": "oz"}
        lowered = aliases.get(lowered, lowered)
        try:
            return WeightUnit(lowered)
        except ValueError:
            return None

    def _convert_weight(
        self,
        value: Optional[Decimal],
        source_unit: Optional[WeightUnit],
        target_unit: WeightUnit,
    ) -> Optional[Decimal]:
        if value is None:
            return None
        if source_unit is None or source_unit == target_unit:
            return value
        grams = value * _GRAMS_PER_UNIT[source_unit]
        converted = grams / _GRAMS_PER_UNIT[target_unit]
        return converted.quantize(Decimal("0.001")).normalize()

    def _normalize_image_url(self, url: Optional[str]) -> str:
        """Ensure image URL has a proper protocol."""
        if not url:
            return ""
        url = url.strip()
        if url.startswith("//"):
            return f"https:{url}"
        if not url.startswith(("http://", "https://")):
            return f"https://{url}"
        return url

    def _build_images(self, entries: Iterable[tuple[Optional[str], Optional[str], Optional[int]]]) -> list[Image]:
        images = []
        seen_urls = set()
        for src, alt, position in entries:
            normalized_url = self._normalize_image_url(src)
            if not normalized_url or normalized_url in seen_urls:
                continue
            seen_urls.add(normalized_url)
            images.append(Image(src=normalized_url, alt=alt or None, position=position))
        return images

    def _cap_options(self, options: list[Option], product_id: Optional[str]) -> tuple[list[Option], list[str]]:
        """Keep the first three options; report the names of any dropped."""
        if len(options) <= MAX_OPTIONS:
            return options, []
        dropped = [opt.name for opt in options[MAX_OPTIONS:]]
        logger.warning(
            f"Dropping {len(dropped)} option(s) beyond the first {MAX_OPTIONS}",
            extra={"product_id": product_id, "extra_data": {"dropped_options": dropped}},
        )
        return options[:MAX_OPTIONS], dropped

    def _clean_text(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ShopifyTransformer(PlatformTransformer):
    """
    Transforms Shopify Admin REST products.

    Shopify is already close to canonical: statuses match, variants are
    inline, and option values sit in positional ``option1..3`` slots.
    """

    platform = Platform.SHOPIFY
    STATUS_MAP = {
        "active": ProductStatus.ACTIVE,
        "draft": ProductStatus.DRAFT,
        "archived": ProductStatus.ARCHIVED,
    }
    REQUIRED_FIELDS = ("id", "title")
    PLACEHOLDER_OPTION = ("Title", "Default Title")

    def __init__(self, correlation_id: Optional[str] = None, max_variants: int = SHOPIFY_MAX_VARIANTS):
        super().__init__(correlation_id)
        self.max_variants = max_variants

    def _unwrap(self, raw_product: dict) -> dict:
        inner = raw_product.get("product")
        if isinstance(inner, dict):
            return inner
        return raw_product

    def normalize(self, raw_product: dict, variants: Optional[list[dict]] = None) -> CanonicalProduct:
        """
        Transform a Shopify product to canonical format.

        Args:
            raw_product: Shopify product, bare or wrapped in ``{"product": ...}``
            variants: Optional separately fetched variants; replaces the
                inline ``variants`` list when given

        Returns:
            CanonicalProduct

        Raises:
            TransformationError: If ``id`` or ``title`` is missing
        """
        raw_product = self._require_identity(raw_product)
        product_id = self.source_id(raw_product)
        if variants is not None:
            raw_product = {**raw_product, "variants": variants}
        wire = self._parse_wire(ShopifyProduct, raw_product, product_id)

        raw_variants = wire.variants
        options = self._extract_options(wire)
        if self._is_placeholder_options(options, raw_variants):
            options = []

        options, dropped = self._cap_options(options, product_id)
        canonical_variants = [self._parse_variant(v, len(options)) for v in raw_variants]

        metadata: dict[str, Any] = {
            "shopify_id": wire.id,
            "shopify_handle": wire.handle,
        }
        if dropped:
            metadata["dropped_options"] = dropped

        return CanonicalProduct(
            external_id=product_id,
            title=wire.title,
            description=self._strip_html(wire.body_html),
            price=Decimal("0"),
            sku=canonical_variants[0].sku if canonical_variants else None,
            vendor=self._clean_text(wire.vendor),
            product_type=self._clean_text(wire.product_type),
            tags=self._split_tags(wire.tags),
            status=self._map_status(wire.status),
            inventory=Inventory(
                quantity=0,
                tracked=False,
                allow_backorder=any(
                    (v.inventory_policy or "").lower() == "continue" for v in raw_variants
                ) if raw_variants else None,
            ),
            images=self._build_images(
                (img.src, img.alt, img.position) for img in wire.images
            ),
            variants=canonical_variants,
            options=options,
            metadata=metadata,
        )

    def _split_tags(self, tags: Optional[str]) -> list[str]:
        """Split Shopify's comma-joined tag string, keeping order and dropping duplicates."""
        if not tags:
            return []
        result = []
        for tag in tags.split(","):
            tag = tag.strip()
            if tag and tag not in result:
                result.append(tag)
        return result

    def _extract_options(self, wire: ShopifyProduct) -> list[Option]:
        options = []
        for idx, raw_option in enumerate(wire.options):
            name = self._clean_text(raw_option.name)
            if not name:
                continue
            values = [v for v in raw_option.values if v and v.strip()]
            if not values:
                slot = f"option{idx + 1}"
                values = [getattr(v, slot) for v in wire.variants if idx < 3 and getattr(v, slot)]
            if not values:
                continue
            options.append(Option(name=name, position=raw_option.position or idx + 1, values=values))
        return options

    def _is_placeholder_options(self, options: list[Option], raw_variants: list[ShopifyVariant]) -> bool:
        """Shopify gives simple products a 'Title: Default Title' option."""
        if len(raw_variants) > 1 or len(options) != 1:
            return False
        name, value = self.PLACEHOLDER_OPTION
        return options[0].name == name and options[0].values == [value]

    def _parse_variant(self, raw_variant: ShopifyVariant, option_count: int) -> Variant:
        price = self._parse_price(raw_variant.price)
        slots = [raw_variant.option1, raw_variant.option2, raw_variant.option3]
        slots = [self._clean_text(s) if idx < option_count else None for idx, s in enumerate(slots)]
        return Variant(
            id=str(raw_variant.id) if raw_variant.id is not None else None,
            sku=self._clean_text(raw_variant.sku),
            price=price,
            compare_at_price=self._compare_at(self._parse_optional_price(raw_variant.compare_at_price), price),
            option1=slots[0],
            option2=slots[1],
            option3=slots[2],
            inventory_quantity=max(0, raw_variant.inventory_quantity or 0),
            inventory_tracked=(raw_variant.inventory_management or "").lower() == "shopify",
            weight=self._parse_weight(raw_variant.weight),
            weight_unit=self._parse_weight_unit(raw_variant.weight_unit),
        )

    def denormalize(
        self,
        product: CanonicalProduct,
        variant_ids: Optional[Mapping[str, str]] = None,
    ) -> DenormalizedProduct:
        """
        Transform a canonical product to a Shopify product payload.

        Variants are sent inline. A product that is not variable (one
        variant, or no options to tell its variants apart) is sent as its
        default variant alone. Variable products with more variants than
        Shopify accepts are rejected rather than truncated.

        Raises:
            DataQualityError: If the product exceeds the variant limit
        """
        variants = product.variants if product.is_variable else [product.default_variant()]
        if product.is_variable and len(variants) > self.max_variants:
            raise DataQualityError(
                message=(
                    f"Product has {len(variants)} variants; Shopify accepts at most {self.max_variants}"
                ),
                product_id=product.internal_id or product.external_id,
                issues=["variant_limit_exceeded"],
                platform=self.platform.value,
                context=self._error_context(),
            )

        variant_ids = variant_ids or {}
        option_count = len(product.options)
        backorder = bool(product.inventory.allow_backorder)

        wire_variants = []
        for idx, variant in enumerate(variants):
            fields: dict[str, Any] = {
                "sku": variant.sku,
                "price": self._format_price(variant.price),
                "compare_at_price": (
                    self._format_price(variant.compare_at_price)
                    if variant.compare_at_price is not None
                    else None
                ),
                "inventory_quantity": variant.inventory_quantity,
                "inventory_management": "shopify" if variant.inventory_tracked else None,
                "inventory_policy": "continue" if backorder else "deny",
                "position": idx + 1,
            }
            for slot_idx, value in enumerate(variant.option_values[:option_count]):
                fields[f"option{slot_idx + 1}"] = value
            if variant.weight is not None:
                fields["weight"] = float(variant.weight)
                fields["weight_unit"] = (variant.weight_unit or WeightUnit.KILOGRAMS).value
            if variant.sku and variant.sku in variant_ids:
                fields["id"] = variant_ids[variant.sku]
            wire_variants.append(ShopifyVariant(**fields))

        fields = {
            "title": product.title,
            "body_html": html.escape(product.description, quote=False),
            "vendor": product.vendor or "",
            "product_type": product.product_type or "",
            "tags": ", ".join(product.tags),
            "status": product.status.value,
            "variants": wire_variants,
            "images": [
                ShopifyImage(src=img.src, alt=img.alt, position=img.position or idx + 1)
                for idx, img in enumerate(product.images)
            ],
        }
        if product.options:
            fields["options"] = [
                ShopifyOption(name=opt.name, position=opt.position or idx + 1, values=opt.values)
                for idx, opt in enumerate(product.options)
            ]

        return DenormalizedProduct(platform=self.platform, payload=ShopifyProduct(**fields).to_payload())


class WooCommerceTransformer(PlatformTransformer):
    """
    Transforms WooCommerce REST v3 products.

    Variable products keep their variations in a separate sub-resource,
    variation attributes are keyed by name, and the store's weight unit is
    a store-wide setting rather than part of the payload.
    """

    platform = Platform.WOOCOMMERCE
    STATUS_MAP = {
        "publish": ProductStatus.ACTIVE,
        "pending": ProductStatus.DRAFT,
        "draft": ProductStatus.DRAFT,
        "future": ProductStatus.DRAFT,
        "private": ProductStatus.ARCHIVED,
    }
    STATUS_OUT = {
        ProductStatus.ACTIVE: "publish",
        ProductStatus.DRAFT: "draft",
        ProductStatus.ARCHIVED: "private",
    }
    REQUIRED_FIELDS = ("id", "name")

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        weight_unit: WeightUnit = WeightUnit.KILOGRAMS,
    ):
        super().__init__(correlation_id)
        self.weight_unit = weight_unit

    def needs_variant_fetch(self, raw_product: dict) -> bool:
        if not isinstance(raw_product, dict):
            return False
        return raw_product.get("type") == "variable" and bool(raw_product.get("variations"))

    def normalize(self, raw_product: dict, variants: Optional[list[dict]] = None) -> CanonicalProduct:
        """
        Transform a WooCommerce product to canonical format.

        Args:
            raw_product: WooCommerce product object
            variants: Pre-fetched variations for a variable product

        Returns:
            CanonicalProduct

        Raises:
            TransformationError: If ``id`` or ``name`` is missing
        """
        raw_product = self._require_identity(raw_product)
        product_id = self.source_id(raw_product)
        wire = self._parse_wire(WooProduct, raw_product, product_id)
        variations = [
            self._parse_wire(WooVariation, v, product_id) for v in (variants or []) if isinstance(v, dict)
        ]

        description = self._strip_html(wire.description) or self._strip_html(wire.short_description)
        current = self._current_price(wire.price, wire.sale_price, wire.regular_price)
        compare_at = self._compare_at(self._parse_optional_price(wire.regular_price), current)
        product_weight = self._parse_weight(wire.weight)

        metadata: dict[str, Any] = {
            "woocommerce_id": wire.id,
            "woocommerce_type": wire.type,
            "woocommerce_slug": wire.slug,
        }

        if wire.type == "variable":
            options, dropped = self._cap_options(self._extract_options(wire.attributes), product_id)
            if dropped:
                metadata["dropped_options"] = dropped
            canonical_variants = [
                self._parse_variation(v, options, product_weight, wire.manage_stock) for v in variations
            ]
            inventory = Inventory(
                quantity=max(0, wire.stock_quantity or 0),
                tracked=bool(wire.manage_stock),
                allow_backorder=self._allow_backorder(
                    [wire.stock_status] + [v.stock_status for v in variations],
                    [wire.backorders] + [v.backorders for v in variations],
                ),
            )
        else:
            options = []
            canonical_variants = [
                Variant(
                    sku=self._clean_text(wire.sku),
                    price=current,
                    compare_at_price=compare_at,
                    inventory_quantity=max(0, wire.stock_quantity or 0),
                    inventory_tracked=bool(wire.manage_stock),
                    weight=product_weight,
                    weight_unit=self.weight_unit if product_weight is not None else None,
                )
            ]
            inventory = Inventory(
                quantity=max(0, wire.stock_quantity or 0),
                tracked=bool(wire.manage_stock),
                allow_backorder=self._allow_backorder([wire.stock_status], [wire.backorders]),
            )

        return CanonicalProduct(
            external_id=product_id,
            title=wire.name,
            description=description,
            price=current,
            compare_at_price=compare_at if not canonical_variants or wire.type != "variable" else None,
            sku=self._clean_text(wire.sku),
            product_type=self._clean_text(wire.categories[0].name) if wire.categories else None,
            tags=[t.name for t in wire.tags if t.name],
            status=self._map_status(wire.status),
            inventory=inventory,
            images=self._build_images(
                (img.src, img.alt, idx + 1) for idx, img in enumerate(wire.images)
            ),
            variants=canonical_variants,
            options=options,
            metadata=metadata,
        )

    def _current_price(self, price: Any, sale_price: Any, regular_price: Any) -> Decimal:
        for candidate in (price, sale_price, regular_price):
            parsed = self._parse_optional_price(candidate)
            if parsed is not None:
                return parsed
        return Decimal("0")

    def _allow_backorder(self, stock_statuses: list[Optional[str]], backorders: list[Optional[str]]) -> Optional[bool]:
        if not any(stock_statuses) and not any(backorders):
            return None
        return "onbackorder" in stock_statuses or any(b in ("notify", "yes") for b in backorders)

    def _extract_options(self, attributes: list[WooAttribute]) -> list[Option]:
        options = []
        for attr in attributes:
            if not attr.variation:
                continue
            name = self._clean_text(attr.name)
            values = [v for v in attr.options if v and v.strip()]
            if not name or not values:
                continue
            options.append(Option(name=name, position=len(options) + 1, values=values))
        return options

    def _slot_values(self, attributes: list[WooVariationAttribute], options: list[Option]) -> list[Optional[str]]:
        """
        Re-index name-keyed variation attributes into positional option slots.

        Slot n holds the value of the n-th canonical option. When none of the
        attribute names match an option name, attributes are taken by position.
        """
        by_name = {
            attr.name.strip().lower(): attr.option
            for attr in attributes
            if attr.name and attr.name.strip()
        }
        option_names = [opt.name.lower() for opt in options]
        if any(name in by_name for name in option_names):
            values = [by_name.get(name) for name in option_names]
        else:
            values = [attr.option for attr in attributes[:len(options)]]
            values += [None] * (len(options) - len(values))
        values = [self._clean_text(v) for v in values]
        return (values + [None] * MAX_OPTIONS)[:MAX_OPTIONS]

    def _parse_variation(
        self,
        variation: WooVariation,
        options: list[Option],
        product_weight: Optional[Decimal],
        parent_manage_stock: Optional[bool],
    ) -> Variant:
        price = self._current_price(variation.price, variation.sale_price, variation.regular_price)
        slots = self._slot_values(variation.attributes, options)
        weight = self._parse_weight(variation.weight)
        if weight is None:
            weight = product_weight
        tracked = variation.manage_stock if variation.manage_stock is not None else parent_manage_stock
        return Variant(
            id=str(variation.id) if variation.id is not None else None,
            sku=self._clean_text(variation.sku),
            price=price,
            compare_at_price=self._compare_at(self._parse_optional_price(variation.regular_price), price),
            option1=slots[0],
            option2=slots[1],
            option3=slots[2],
            inventory_quantity=max(0, variation.stock_quantity or 0),
            inventory_tracked=bool(tracked),
            weight=weight,
            weight_unit=self.weight_unit if weight is not None else None,
        )

    def denormalize(
        self,
        product: CanonicalProduct,
        variant_ids: Optional[Mapping[str, str]] = None,
    ) -> DenormalizedProduct:
        """
        Transform a canonical product to a WooCommerce product payload.

        Variable products produce a parent payload plus one variation payload
        per variant; the variations can only be created once the parent
        exists. Everything else becomes a simple product built from the
        default variant. ``vendor`` has no WooCommerce field and is dropped.
        """
        backorder = bool(product.inventory.allow_backorder)
        fields: dict[str, Any] = {
            "name": product.title,
            "description": html.escape(product.description, quote=False),
            "status": self.STATUS_OUT[product.status],
            "images": [WooImage(src=img.src, alt=img.alt or "") for img in product.images],
        }
        variant_skus = {v.sku for v in product.variants}
        # WooCommerce rejects a parent SKU that is reused by one of its variations.
        if product.sku and not (product.is_variable and product.sku in variant_skus):
            fields["sku"] = product.sku

        if not product.is_variable:
            variant = product.default_variant()
            if "sku" not in fields and variant.sku:
                fields["sku"] = variant.sku
            fields.update(type="simple", **self._stock_fields(variant, backorder))
            return DenormalizedProduct(platform=self.platform, payload=WooProduct(**fields).to_payload())

        fields["type"] = "variable"
        fields["attributes"] = [
            WooAttribute(name=opt.name, position=idx, visible=True, variation=True, options=opt.values)
            for idx, opt in enumerate(product.options)
        ]
        variant_ids = variant_ids or {}
        variations = []
        for variant in product.variants:
            variation_fields = self._stock_fields(variant, backorder)
            if variant.sku:
                variation_fields["sku"] = variant.sku
            variation_fields["attributes"] = [
                WooVariationAttribute(name=opt.name, option=value)
                for opt, value in zip(product.options, variant.option_values)
                if value
            ]
            variations.append(
                VariationPayload(
                    sku=variant.sku,
                    payload=WooVariation(**variation_fields).to_payload(),
                    destination_id=variant_ids.get(variant.sku) if variant.sku else None,
                )
            )
        return DenormalizedProduct(
            platform=self.platform,
            payload=WooProduct(**fields).to_payload(),
            variations=variations,
        )

    def _stock_fields(self, variant: Variant, backorder: bool) -> dict[str, Any]:
        if variant.compare_at_price is not None:
            regular, sale = self._format_price(variant.compare_at_price), self._format_price(variant.price)
        else:
            regular, sale = self._format_price(variant.price), ""

        if variant.inventory_quantity > 0:
            stock_status = "instock"
        else:
            stock_status = "onbackorder" if backorder else "outofstock"

        fields: dict[str, Any] = {
            "regular_price": regular,
            "sale_price": sale,
            "manage_stock": variant.inventory_tracked,
            "stock_status": stock_status,
            "backorders": "notify" if backorder else "no",
        }
        if variant.inventory_tracked:
            fields["stock_quantity"] = variant.inventory_quantity
        weight = self._convert_weight(variant.weight, variant.weight_unit, self.weight_unit)
        if weight is not None:
            fields["weight"] = format(weight, "f")
        return fields


class TransformationEngine:
    """
    Dispatches normalize/denormalize calls to the transformer registered
    for each platform.
    """

    def __init__(self, transformers: Optional[Mapping[Platform, PlatformTransformer]] = None):
        if transformers is None:
            transformers = {
                Platform.SHOPIFY: ShopifyTransformer(),
                Platform.WOOCOMMERCE: WooCommerceTransformer(),
            }
        self.transformers = dict(transformers)

    def transformer_for(self, platform: Platform) -> PlatformTransformer:
        platform = Platform(platform)
        try:
            return self.transformers[platform]
        except KeyError:
            raise TransformationError(
                message=f"No transformer registered for {platform.value}",
                product_id=None,
                platform=platform.value,
            )

    def normalize(
        self,
        platform: Platform,
        raw_product: dict,
        variants: Optional[list[dict]] = None,
    ) -> CanonicalProduct:
        return self.transformer_for(platform).normalize(raw_product, variants)

    def denormalize(
        self,
        platform: Platform,
        product: CanonicalProduct,
        variant_ids: Optional[Mapping[str, str]] = None,
    ) -> DenormalizedProduct:
        return self.transformer_for(platform).denormalize(product, variant_ids)

    @log_execution_time(logger)
    def normalize_batch(
        self,
        platform: Platform,
        raw_products: list[dict],
        variants_map: Optional[Mapping[str, list[dict]]] = None,
    ) -> TransformationResult:
        """
        Normalize a batch of raw products.

        Args:
            platform: Source platform of every payload
            raw_products: List of raw product dictionaries
            variants_map: Pre-fetched variants keyed by source product ID

        Returns:
            TransformationResult with successful and failed products
        """
        transformer = self.transformer_for(platform)
        result = TransformationResult()
        variants_map = variants_map or {}

        logger.info(
            f"Starting batch normalization of {len(raw_products)} {Platform(platform).value} products",
            extra={"metrics": {"input_count": len(raw_products)}},
        )

        for idx, raw_product in enumerate(raw_products):
            product_id = transformer.source_id(raw_product)
            try:
                product = transformer.normalize(raw_product, variants_map.get(product_id))
            except TransformationError as e:
                result.failed.append({
                    "product_id": product_id,
                    "error": e.to_dict(),
                    "index": idx,
                })
                logger.warning(f"Skipping product at index {idx}: {e.message}")
                continue
            except Exception as e:
                result.failed.append({
                    "product_id": product_id,
                    "error": {"type": type(e).__name__, "message": str(e)},
                    "index": idx,
                })
                logger.error(
                    f"Unexpected error normalizing product at index {idx}: {e}",
                    exc_info=True,
                )
                continue

            result.successful.append(product)
            issues = check_data_quality(product)
            if issues:
                result.warnings.append({"product_id": product_id, "issues": issues})

        logger.info(
            "Batch normalization complete",
            extra={
                "metrics": {
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                }
            },
        )
        return result

    @log_execution_time(logger)
    def denormalize_batch(
        self,
        platform: Platform,
        products: list[CanonicalProduct],
    ) -> DenormalizationResult:
        """
        Denormalize a batch of canonical products for one destination.

        A product the destination cannot represent (e.g. over the variant
        limit) is reported in ``failed`` without affecting the others.
        """
        transformer = self.transformer_for(platform)
        result = DenormalizationResult()

        for idx, product in enumerate(products):
            product_id = product.internal_id or product.external_id
            try:
                result.successful.append(transformer.denormalize(product))
            except SyncError as e:
                result.failed.append({"product_id": product_id, "error": e.to_dict(), "index": idx})
                logger.warning(f"Skipping product at index {idx}: {e.message}")
            except Exception as e:
                result.failed.append({
                    "product_id": product_id,
                    "error": {"type": type(e).__name__, "message": str(e)},
                    "index": idx,
                })
                logger.error(
                    f"Unexpected error denormalizing product at index {idx}: {e}",
                    exc_info=True,
                )

        logger.info(
            f"Batch denormalization for {Platform(platform).value} complete",
            extra={
                "metrics": {
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                }
            },
        )
        return result


def check_data_quality(product: CanonicalProduct) -> list[str]:
    """Check a normalized product for data quality issues worth reporting."""
    issues = []

    if not product.images:
        issues.append("No images found for product")

    zero_price_variants = [v for v in product.variants if v.price == 0]
    if zero_price_variants:
        issues.append(f"{len(zero_price_variants)} variants have zero price")
    elif not product.variants and product.price == 0:
        issues.append("Product has zero price")

    if product.variants and product.inventory.tracked and product.inventory.quantity == 0:
        issues.append("All variants have zero stock")

    dropped = product.metadata.get("dropped_options")
    if dropped:
        issues.append(f"Dropped options beyond the first {MAX_OPTIONS}: {', '.join(dropped)}")

    return issues


_default_engine = TransformationEngine()


def normalize(platform: Platform, raw_product: dict, variants: Optional[list[dict]] = None) -> CanonicalProduct:
    """Normalize a raw platform payload with the default transformers."""
    return _default_engine.normalize(platform, raw_product, variants)


def denormalize(platform: Platform, product: CanonicalProduct) -> DenormalizedProduct:
    """Denormalize a canonical product with the default transformers."""
    return _default_engine.denormalize(platform, product)
