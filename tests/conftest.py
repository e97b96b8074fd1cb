"""Pytest fixtures and configuration."""

import copy
import os
from decimal import Decimal
from unittest.mock import Mock

import pytest

from catalog_sync.adapters import ShopifyAdapter, WooCommerceAdapter
from catalog_sync.models import CanonicalProduct, Inventory, Platform, ProductStatus, Variant
from catalog_sync.pacing import NoDelayPacer
from catalog_sync.retry import RetryConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CATALOG_SYNC_* variables from the host out of the tests."""
    for key in list(os.environ):
        if key.startswith("CATALOG_SYNC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def shopify_product():
    """Return a Shopify product with two options and three variants."""
    return {
        "id": 632910392,
        "title": "IPod Nano - 8GB",
        "body_html": "<p>It's the <strong>small</strong> iPod &amp; more.</p><script>track()</script>",
        "vendor": "Apple",
        "product_type": "Cult Products",
        "handle": "ipod-nano",
        "status": "active",
        "tags": "Emotive, Flash Memory, MP3, Emotive, ",
        "options": [
            {"id": 594680422, "name": "Color", "position": 1, "values": ["Pink", "Black"]},
            {"id": 594680423, "name": "Size", "position": 2, "values": ["8GB", "16GB"]},
        ],
        "variants": [
            {
                "id": 808950810,
                "sku": "IPOD-PINK-8",
                "price": "10.00",
                "compare_at_price": "15.00",
                "option1": "Pink",
                "option2": "8GB",
                "option3": None,
                "inventory_quantity": 10,
                "inventory_management": "shopify",
                "inventory_policy": "deny",
                "weight": 1.25,
                "weight_unit": "lb",
            },
            {
                "id": 49148385,
                "sku": "IPOD-BLACK-8",
                "price": "8.00",
                "compare_at_price": None,
                "option1": "Black",
                "option2": "8GB",
                "inventory_quantity": 5,
                "inventory_management": "shopify",
                "inventory_policy": "deny",
            },
            {
                "id": 39072856,
                "sku": "IPOD-BLACK-16",
                "price": "12.00",
                "option1": "Black",
                "option2": "16GB",
                "inventory_quantity": 0,
                "inventory_management": "shopify",
                "inventory_policy": "continue",
            },
        ],
        "images": [
            {"id": 850703190, "src": "//cdn.shopify.com/ipod-nano.png", "alt": "Front", "position": 1},
            {"id": 562641783, "src": "https://cdn.shopify.com/ipod-nano-2.png", "position": 2},
            {"id": 562641784, "src": "https://cdn.shopify.com/ipod-nano.png", "position": 3},
        ],
    }


@pytest.fixture
def shopify_simple_product():
    """Return a Shopify product with only the placeholder option."""
    return {
        "id": 1072481062,
        "title": "Burton Custom Freestyle 151",
        "body_html": "<strong>Good snowboard!</strong>",
        "vendor": "Burton",
        "status": "draft",
        "tags": "",
        "options": [{"name": "Title", "position": 1, "values": ["Default Title"]}],
        "variants": [
            {
                "id": 1070325065,
                "sku": "BURTON-151",
                "price": "249.99",
                "compare_at_price": "299.00",
                "option1": "Default Title",
                "inventory_quantity": 3,
                "inventory_management": "shopify",
            }
        ],
        "images": [],
    }


@pytest.fixture
def woo_simple_product():
    """Return a WooCommerce simple product."""
    return {
        "id": 794,
        "name": "Premium Quality",
        "slug": "premium-quality",
        "type": "simple",
        "status": "pending",
        "description": "<p>Pellentesque habitant morbi.</p>",
        "short_description": "<p>Short text.</p>",
        "sku": "PQ-1",
        "price": "29.99",
        "regular_price": "29.99",
        "sale_price": "",
        "manage_stock": True,
        "stock_quantity": 12,
        "stock_status": "instock",
        "backorders": "no",
        "weight": "0.5",
        "categories": [{"id": 9, "name": "Clothing", "slug": "clothing"}],
        "tags": [{"id": 1, "name": "cotton"}, {"id": 2, "name": "summer"}],
        "images": [{"id": 792, "src": "https://example.com/T_2_front.jpg", "alt": ""}],
        "attributes": [],
        "variations": [],
    }


@pytest.fixture
def woo_variable_product():
    """Return a WooCommerce variable product whose variations live separately."""
    return {
        "id": 799,
        "name": "Ship Your Idea",
        "slug": "ship-your-idea",
        "type": "variable",
        "status": "publish",
        "description": "",
        "short_description": "<p>Ship it.</p>",
        "sku": "SHIP",
        "price": "",
        "manage_stock": False,
        "categories": [{"id": 9, "name": "Clothing"}],
        "tags": [],
        "images": [],
        "attributes": [
            {"id": 6, "name": "Color", "position": 0, "visible": True, "variation": True,
             "options": ["Black", "Green"]},
            {"id": 0, "name": "Size", "position": 1, "visible": True, "variation": True,
             "options": ["S", "M"]},
            {"id": 0, "name": "Material", "position": 2, "visible": True, "variation": False,
             "options": ["Cotton"]},
        ],
        "variations": [733, 732],
    }


@pytest.fixture
def woo_variations():
    """Return the variations of woo_variable_product, attributes listed out of order."""
    return [
        {
            "id": 733,
            "sku": "SHIP-BLACK-S",
            "price": "9.00",
            "regular_price": "11.00",
            "sale_price": "9.00",
            "manage_stock": True,
            "stock_quantity": 4,
            "stock_status": "instock",
            "backorders": "no",
            "attributes": [
                {"id": 0, "name": "Size", "option": "S"},
                {"id": 6, "name": "Color", "option": "Black"},
            ],
        },
        {
            "id": 732,
            "sku": "SHIP-GREEN-M",
            "price": "12.00",
            "regular_price": "12.00",
            "sale_price": "",
            "manage_stock": "parent",
            "stock_quantity": 6,
            "stock_status": "onbackorder",
            "backorders": "notify",
            "attributes": [
                {"id": 6, "name": "color", "option": "Green"},
                {"id": 0, "name": "size", "option": "M"},
            ],
        },
    ]


@pytest.fixture
def canonical_simple_product():
    """Return a canonical product with one variant and no options."""
    return CanonicalProduct(
        external_id="501",
        title="Canvas Tote",
        description="A sturdy bag.",
        vendor="Tote Co",
        tags=["bags", "canvas"],
        status=ProductStatus.ACTIVE,
        inventory=Inventory(quantity=7, tracked=True),
        variants=[
            Variant(
                sku="TOTE-1",
                price=Decimal("24.50"),
                compare_at_price=Decimal("30.00"),
                inventory_quantity=7,
                inventory_tracked=True,
            )
        ],
        metadata={"shopify_id": 501},
    )


@pytest.fixture
def retry_config():
    """Retry config that never sleeps."""
    return RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


def make_adapter(platform: Platform, product_id: int = 1001) -> Mock:
    """Build a mock adapter that echoes created resources with an id."""
    spec = ShopifyAdapter if platform == Platform.SHOPIFY else WooCommerceAdapter
    adapter = Mock(spec=spec)
    adapter.platform = platform
    adapter.active_status = spec.active_status

    def created(payload):
        body = copy.deepcopy(payload)
        body["id"] = product_id
        for idx, variant in enumerate(body.get("variants") or []):
            variant["id"] = product_id * 10 + idx
        return body

    def updated(pid, payload):
        return {**copy.deepcopy(payload), "id": pid}

    counter = iter(range(1, 10_000))

    def variant_created(pid, payload):
        return {**copy.deepcopy(payload), "id": product_id * 100 + next(counter)}

    def variant_updated(pid, vid, payload):
        return {**copy.deepcopy(payload), "id": vid}

    adapter.create.side_effect = created
    adapter.update.side_effect = updated
    adapter.create_variant.side_effect = variant_created
    adapter.update_variant.side_effect = variant_updated
    adapter.fetch_variants.return_value = []
    return adapter


@pytest.fixture
def shopify_adapter():
    return make_adapter(Platform.SHOPIFY, product_id=7001)


@pytest.fixture
def woo_adapter():
    return make_adapter(Platform.WOOCOMMERCE, product_id=8001)


@pytest.fixture
def adapter_factory():
    return make_adapter


@pytest.fixture
def no_delay():
    return NoDelayPacer()
