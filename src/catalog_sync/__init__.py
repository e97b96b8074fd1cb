"""
Catalog sync - product synchronization across e-commerce platforms.

Every product is routed through one canonical model: platform payloads are
normalized into it, denormalized out of it, and pushed to the destination
by the sync orchestrator.
"""

from catalog_sync.adapters import PageParams, ShopifyAdapter, WooCommerceAdapter, build_adapters
from catalog_sync.config import SyncSettings, settings_from_env
from catalog_sync.exceptions import (
    AdapterNotConfiguredError,
    ConfigurationError,
    DataQualityError,
    NetworkError,
    NotFoundError,
    SyncError,
    TransformationError,
    UpstreamApiError,
)
from catalog_sync.mapping_store import InMemoryMappingStore, MappingStore
from catalog_sync.models import CanonicalProduct, Platform, ProductStatus, SyncMapping, SyncResult
from catalog_sync.orchestrator import BatchReport, CancellationToken, SyncOptions, SyncOrchestrator
from catalog_sync.pacing import FixedDelayPacer, NoDelayPacer, TokenBucketPacer
from catalog_sync.transformer import (
    DenormalizationResult,
    TransformationEngine,
    TransformationResult,
    denormalize,
    normalize,
)

__all__ = [
    "CanonicalProduct",
    "Platform",
    "ProductStatus",
    "SyncMapping",
    "SyncResult",
    "TransformationEngine",
    "TransformationResult",
    "DenormalizationResult",
    "normalize",
    "denormalize",
    "SyncOrchestrator",
    "SyncOptions",
    "BatchReport",
    "CancellationToken",
    "PageParams",
    "ShopifyAdapter",
    "WooCommerceAdapter",
    "build_adapters",
    "MappingStore",
    "InMemoryMappingStore",
    "FixedDelayPacer",
    "NoDelayPacer",
    "TokenBucketPacer",
    "SyncSettings",
    "settings_from_env",
    "SyncError",
    "AdapterNotConfiguredError",
    "ConfigurationError",
    "TransformationError",
    "DataQualityError",
    "UpstreamApiError",
    "NotFoundError",
    "NetworkError",
]

__version__ = "1.0.0"
