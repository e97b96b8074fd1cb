"""
Sync orchestration: fetch -> normalize -> denormalize -> push -> record.

The orchestrator owns the workflow. Adapters handle API communication and
the transformation engine handles data conversion. Every item produces
exactly one SyncResult; failures are captured per item and never abort the
rest of a batch. Only a missing adapter raises to the caller.
"""

import contextvars
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from catalog_sync.adapters import PageParams, PlatformAdapter, build_adapters
from catalog_sync.config import SyncSettings, settings_from_env
from catalog_sync.exceptions import AdapterNotConfiguredError, SyncError
from catalog_sync.logging_config import (
    ItemLogger,
    LogContext,
    configure_logging,
    get_logger,
    log_execution_time,
)
from catalog_sync.mapping_store import InMemoryMappingStore, MappingStore
from catalog_sync.models import (
    CanonicalProduct,
    Platform,
    SyncMapping,
    SyncResult,
    SyncStage,
    SyncStatus,
)
from catalog_sync.pacing import FixedDelayPacer, Pacer
from catalog_sync.transformer import (
    DenormalizedProduct,
    ShopifyTransformer,
    TransformationEngine,
    TransformationResult,
    VariationPayload,
    WooCommerceTransformer,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncOptions:
    """
    Per-call sync behavior.

    dry_run: fetch and transform but never write to the destination
    upsert: update the mapped destination product instead of creating one
    """
    dry_run: bool = False
    upsert: bool = False


class CancellationToken:
    """Cooperative cancellation, checked before each item starts."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BatchReport:
    """Ordered per-item results of a batch plus aggregate counts."""
    batch_id: str
    results: list[SyncResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_count(self) -> int:
        return len(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "dry_run": self.dry_run,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_count": self.total_count,
            "results": [r.to_dict() for r in self.results],
        }


class _ItemRun:
    """Tracks which stage one item is working on."""

    def __init__(self, source_id: str, log: ItemLogger, dry_run: bool):
        self.source_id = source_id
        self.log = log
        self.dry_run = dry_run
        self.stage = SyncStage.PENDING

    def begin(self, stage: SyncStage) -> None:
        self.stage = stage
        self.log.debug(f"Entering stage {stage.value}", extra={"stage": stage.value})

    def failed(self, error: Exception) -> SyncResult:
        message = error.message if isinstance(error, SyncError) else str(error) or type(error).__name__
        return SyncResult(
            success=False,
            source_id=self.source_id,
            error=message,
            stage=SyncStage.FAILED,
            failed_stage=self.stage,
            dry_run=self.dry_run,
        )


class SyncOrchestrator:
    """
    Drives products between platforms through the canonical model.

    Args:
        adapters: One adapter per configured platform
        engine: Transformation engine; built from settings when omitted
        mapping_store: Where identity mappings are looked up and recorded
        pacer: Pacing policy applied before each batch item starts
        settings: Runtime settings (page sizes, worker count, delays)
    """

    def __init__(
        self,
        adapters: Mapping[Platform, PlatformAdapter],
        engine: Optional[TransformationEngine] = None,
        mapping_store: Optional[MappingStore] = None,
        pacer: Optional[Pacer] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self.settings = settings or SyncSettings()
        self.adapters = {Platform(p): a for p, a in adapters.items()}
        self.engine = engine or TransformationEngine({
            Platform.SHOPIFY: ShopifyTransformer(max_variants=self.settings.shopify_max_variants),
            Platform.WOOCOMMERCE: WooCommerceTransformer(weight_unit=self.settings.woocommerce_weight_unit),
        })
        self.mapping_store = mapping_store if mapping_store is not None else InMemoryMappingStore()
        self.pacer = pacer or FixedDelayPacer(self.settings.inter_item_delay)

    @classmethod
    def from_env(
        cls,
        mapping_store: Optional[MappingStore] = None,
        pacer: Optional[Pacer] = None,
    ) -> "SyncOrchestrator":
        """
        Build an orchestrator from CATALOG_SYNC_* variables.

        Configures logging from the same settings (level and JSON output)
        before any adapter is created.

        Raises:
            ConfigurationError: If a variable is present but invalid
        """
        settings = settings_from_env()
        configure_logging(level=settings.log_level, json_logs=settings.json_logs)
        adapters = build_adapters(settings)
        logger.info(
            f"Configured adapters: {', '.join(p.value for p in adapters) or 'none'}",
            extra={"metrics": {"adapter_count": len(adapters)}},
        )
        return cls(adapters, mapping_store=mapping_store, pacer=pacer, settings=settings)

    def adapter_for(self, platform: Platform) -> PlatformAdapter:
        platform = Platform(platform)
        adapter = self.adapters.get(platform)
        if adapter is None:
            raise AdapterNotConfiguredError(platform.value)
        return adapter

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def sync_one(
        self,
        source_platform: Platform,
        source_id: str,
        destination_platform: Platform,
        options: Optional[SyncOptions] = None,
    ) -> SyncResult:
        """
        Sync one product from the source platform to the destination.

        Raises:
            AdapterNotConfiguredError: If either platform has no adapter
        """
        source = self.adapter_for(source_platform)
        destination = self.adapter_for(destination_platform)
        return self._sync_item(source, destination, str(source_id), options or SyncOptions())

    @log_execution_time(logger)
    def sync_batch(
        self,
        source_platform: Platform,
        destination_platform: Platform,
        page: Optional[PageParams] = None,
        options: Optional[SyncOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchReport:
        """
        Fetch one page from the source and sync every item on it.

        Results come back in the order the page listed the items. A failing
        item is reported and the batch moves on.

        Raises:
            AdapterNotConfiguredError: If either platform has no adapter
            UpstreamApiError: If the page itself cannot be fetched
        """
        source = self.adapter_for(source_platform)
        destination = self.adapter_for(destination_platform)
        options = options or SyncOptions()
        page = self._source_page(source, page, self.settings.batch_page_size)
        batch_id = str(uuid.uuid4())

        with LogContext(batch_id=batch_id):
            raw_items = source.fetch_many(page)
            transformer = self.engine.transformer_for(source.platform)
            source_ids = [transformer.source_id(raw) or "" for raw in raw_items]

            logger.info(
                f"Syncing {len(raw_items)} products from {source.platform.value} "
                f"to {destination.platform.value}",
                extra={"metrics": {"input_count": len(raw_items)}, "destination": destination.platform.value},
            )

            results = self._run_items(
                source_ids,
                lambda i: self._sync_item(source, destination, source_ids[i], options, raw=raw_items[i]),
                options,
                cancel_token,
            )
            report = BatchReport(batch_id=batch_id, results=results, dry_run=options.dry_run)
            logger.info(
                "Batch sync complete",
                extra={"metrics": {"success_count": report.success_count, "failure_count": report.failure_count}},
            )
        return report

    @log_execution_time(logger)
    def import_from(
        self,
        source_platform: Platform,
        page: Optional[PageParams] = None,
    ) -> TransformationResult:
        """
        Fetch one page from the source and normalize it without pushing.

        Variant sub-resources are fetched first for products that keep
        them separately. A product whose variants cannot be fetched is
        reported as failed rather than normalized with missing data.
        """
        source = self.adapter_for(source_platform)
        page = self._source_page(source, page, self.settings.import_page_size)

        with LogContext(batch_id=str(uuid.uuid4())):
            raw_items = source.fetch_many(page)
            transformer = self.engine.transformer_for(source.platform)

            variants_map: dict[str, list[dict]] = {}
            kept: list[dict] = []
            kept_indices: list[int] = []
            fetch_failures: list[dict] = []
            for idx, raw in enumerate(raw_items):
                product_id = transformer.source_id(raw)
                if product_id and transformer.needs_variant_fetch(raw):
                    try:
                        variants_map[product_id] = source.fetch_variants(product_id)
                    except SyncError as e:
                        logger.warning(f"Could not fetch variants for product {product_id}: {e.message}")
                        fetch_failures.append({"product_id": product_id, "error": e.to_dict(), "index": idx})
                        continue
                kept.append(raw)
                kept_indices.append(idx)

            result = self.engine.normalize_batch(source.platform, kept, variants_map)
            for failure in result.failed:
                failure["index"] = kept_indices[failure["index"]]
            result.failed.extend(fetch_failures)
            result.failed.sort(key=lambda f: f["index"])
        return result

    @log_execution_time(logger)
    def export_to(
        self,
        destination_platform: Platform,
        products: list[CanonicalProduct],
        options: Optional[SyncOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchReport:
        """Denormalize and push already-canonical products."""
        destination = self.adapter_for(destination_platform)
        options = options or SyncOptions()
        batch_id = str(uuid.uuid4())
        source_ids = [p.internal_id or p.external_id or "" for p in products]

        with LogContext(batch_id=batch_id):
            results = self._run_items(
                source_ids,
                lambda i: self._export_item(products[i], source_ids[i], destination, options),
                options,
                cancel_token,
            )
        return BatchReport(batch_id=batch_id, results=results, dry_run=options.dry_run)

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    def _run_items(
        self,
        source_ids: list[str],
        work: Callable[[int], SyncResult],
        options: SyncOptions,
        cancel_token: Optional[CancellationToken],
    ) -> list[SyncResult]:
        def run(index: int) -> SyncResult:
            if cancel_token is not None and cancel_token.cancelled:
                return SyncResult(
                    success=False,
                    source_id=source_ids[index],
                    error="cancelled",
                    stage=SyncStage.FAILED,
                    failed_stage=SyncStage.PENDING,
                    dry_run=options.dry_run,
                )
            self.pacer.wait()
            return work(index)

        workers = max(1, self.settings.max_workers)
        if workers == 1 or len(source_ids) <= 1:
            return [run(i) for i in range(len(source_ids))]

        results: list[Optional[SyncResult]] = [None] * len(source_ids)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(contextvars.copy_context().run, run, i): i
                for i in range(len(source_ids))
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return results

    def _source_page(self, source: PlatformAdapter, page: Optional[PageParams], per_page: int) -> PageParams:
        page = page or PageParams(per_page=per_page)
        if page.status is None and page.cursor is None and source.active_status:
            page = replace(page, status=source.active_status)
        return page

    # ------------------------------------------------------------------
    # Per-item pipeline
    # ------------------------------------------------------------------

    def _sync_item(
        self,
        source: PlatformAdapter,
        destination: PlatformAdapter,
        source_id: str,
        options: SyncOptions,
        raw: Optional[dict] = None,
    ) -> SyncResult:
        run = _ItemRun(source_id, logger.with_item(source_id, source.platform.value), options.dry_run)
        try:
            run.begin(SyncStage.FETCHED)
            if raw is None:
                raw = source.fetch_one(source_id)
            transformer = self.engine.transformer_for(source.platform)
            variants = None
            if transformer.needs_variant_fetch(raw):
                variants = source.fetch_variants(source_id)

            run.begin(SyncStage.NORMALIZED)
            product = self.engine.normalize(source.platform, raw, variants)

            return self._push(run, product, source.platform, destination, options)
        except Exception as e:
            return self._fail(run, e)

    def _export_item(
        self,
        product: CanonicalProduct,
        source_id: str,
        destination: PlatformAdapter,
        options: SyncOptions,
    ) -> SyncResult:
        run = _ItemRun(source_id, logger.with_item(source_id), options.dry_run)
        run.stage = SyncStage.NORMALIZED
        try:
            return self._push(run, product, None, destination, options)
        except Exception as e:
            return self._fail(run, e)

    def _fail(self, run: _ItemRun, error: Exception) -> SyncResult:
        if isinstance(error, SyncError):
            run.log.warning(
                f"Sync failed at {run.stage.value}: {error.message}",
                extra={"stage": run.stage.value, "extra_data": error.to_dict()},
            )
        else:
            run.log.error(f"Unexpected error at {run.stage.value}: {error}", exc_info=True)
        return run.failed(error)

    def _push(
        self,
        run: _ItemRun,
        product: CanonicalProduct,
        source_platform: Optional[Platform],
        destination: PlatformAdapter,
        options: SyncOptions,
    ) -> SyncResult:
        canonical_id = self._canonical_id(product, source_platform)
        existing = self.mapping_store.find(canonical_id, destination.platform) if options.upsert else None

        run.begin(SyncStage.DENORMALIZED)
        denormalized = self.engine.denormalize(
            destination.platform,
            product,
            existing.platform_variant_ids if existing else None,
        )

        if options.dry_run:
            run.log.info(
                f"Dry run: would {'update' if existing else 'create'} in {destination.platform.value}",
                extra={"destination": destination.platform.value},
            )
            return SyncResult(
                success=True,
                source_id=run.source_id,
                destination_id=existing.platform_product_id if existing else None,
                stage=SyncStage.DENORMALIZED,
                dry_run=True,
                payload=denormalized.to_dict(),
            )

        run.begin(SyncStage.PUSHED)
        try:
            if existing:
                pushed = destination.update(existing.platform_product_id, denormalized.payload)
            else:
                pushed = destination.create(denormalized.payload)
        except Exception as e:
            if existing:
                self._mark_error(existing, str(e))
            raise

        destination_id = str(pushed["id"])
        variant_ids = self._variant_ids(pushed.get("variants"))
        try:
            self._push_variations(destination, destination_id, denormalized, variant_ids)
        except Exception as e:
            # Parent exists on the destination; record it so the next upsert updates it.
            self._record(canonical_id, destination.platform, destination_id, variant_ids, SyncStatus.ERROR, str(e))
            raise

        run.begin(SyncStage.RECORDED)
        self._record(canonical_id, destination.platform, destination_id, variant_ids, SyncStatus.SYNCED)
        if source_platform is not None and product.external_id:
            self._record_source(canonical_id, source_platform, product)

        run.log.info(
            f"Synced to {destination.platform.value} as {destination_id}",
            extra={"destination": destination.platform.value},
        )
        return SyncResult(success=True, source_id=run.source_id, destination_id=destination_id, stage=SyncStage.RECORDED)

    def _push_variations(
        self,
        destination: PlatformAdapter,
        product_id: str,
        denormalized: DenormalizedProduct,
        variant_ids: dict[str, str],
    ) -> None:
        """Create or update variation sub-resources once the parent exists."""
        for variation in denormalized.variations:
            variation_id = variation.destination_id or (variant_ids.get(variation.sku) if variation.sku else None)
            if variation_id:
                pushed = destination.update_variant(product_id, variation_id, variation.payload)
            else:
                pushed = destination.create_variant(product_id, variation.payload)
            self._remember_variant(variant_ids, variation, pushed)

    @staticmethod
    def _remember_variant(variant_ids: dict[str, str], variation: VariationPayload, pushed: dict) -> None:
        sku = pushed.get("sku") or variation.sku
        if sku and pushed.get("id") is not None:
            variant_ids[str(sku)] = str(pushed["id"])

    @staticmethod
    def _variant_ids(variants) -> dict[str, str]:
        if not isinstance(variants, list):
            return {}
        return {
            str(v["sku"]): str(v["id"])
            for v in variants
            if isinstance(v, dict) and v.get("sku") and v.get("id") is not None
        }

    # ------------------------------------------------------------------
    # Identity mapping
    # ------------------------------------------------------------------

    def _canonical_id(self, product: CanonicalProduct, source_platform: Optional[Platform]) -> str:
        """
        Resolve the canonical identity used to key mappings.

        Order: the product's internal id, then an existing mapping for its
        source item, then "<source platform>:<external id>".
        """
        if product.internal_id:
            return product.internal_id

        platform = source_platform or self._origin_platform(product)
        if platform is not None and product.external_id:
            mapping = self.mapping_store.find_by_platform_id(platform, product.external_id)
            if mapping is not None:
                return mapping.canonical_product_id
            return f"{platform.value}:{product.external_id}"

        logger.warning(f"Product {product.title!r} has no identity; mapping will not be reusable")
        return str(uuid.uuid4())

    @staticmethod
    def _origin_platform(product: CanonicalProduct) -> Optional[Platform]:
        for platform in Platform:
            if f"{platform.value}_id" in product.metadata:
                return platform
        return None

    def _record(
        self,
        canonical_id: str,
        platform: Platform,
        platform_product_id: str,
        variant_ids: dict[str, str],
        status: SyncStatus,
        error_message: Optional[str] = None,
    ) -> SyncMapping:
        return self.mapping_store.save(
            SyncMapping(
                canonical_product_id=canonical_id,
                platform=platform,
                platform_product_id=platform_product_id,
                platform_variant_ids=dict(variant_ids),
                sync_status=status,
                error_message=error_message,
            )
        )

    def _record_source(self, canonical_id: str, platform: Platform, product: CanonicalProduct) -> None:
        if self.mapping_store.find(canonical_id, platform) is not None:
            return
        variant_ids = {v.sku: v.id for v in product.variants if v.sku and v.id}
        self._record(canonical_id, platform, product.external_id, variant_ids, SyncStatus.SYNCED)

    def _mark_error(self, mapping: SyncMapping, message: str) -> None:
        self.mapping_store.save(
            mapping.model_copy(update={
                "sync_status": SyncStatus.ERROR,
                "error_message": message,
                "last_synced_at": datetime.now(timezone.utc),
            })
        )
