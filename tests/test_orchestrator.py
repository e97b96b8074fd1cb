"""Tests for the sync orchestrator."""

import time
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from catalog_sync.adapters import PageParams
from catalog_sync.config import SyncSettings
from catalog_sync.exceptions import (
    AdapterNotConfiguredError,
    NetworkError,
    NotFoundError,
    UpstreamApiError,
)
from catalog_sync.mapping_store import InMemoryMappingStore
from catalog_sync.models import (
    CanonicalProduct,
    Option,
    Platform,
    SyncMapping,
    SyncStage,
    SyncStatus,
    Variant,
)
from catalog_sync.orchestrator import BatchReport, CancellationToken, SyncOptions, SyncOrchestrator
from catalog_sync.pacing import FixedDelayPacer, Pacer

SHOPIFY = Platform.SHOPIFY
WOO = Platform.WOOCOMMERCE


@pytest.fixture
def store():
    return InMemoryMappingStore()


@pytest.fixture
def orchestrator(shopify_adapter, woo_adapter, store, no_delay):
    return SyncOrchestrator(
        {SHOPIFY: shopify_adapter, WOO: woo_adapter},
        mapping_store=store,
        pacer=no_delay,
    )


def _call_names(adapter) -> list[str]:
    return [c[0] for c in adapter.mock_calls]


class TestSyncOne:
    """Tests for the single-item pipeline."""

    def test_shopify_to_woocommerce(self, orchestrator, shopify_adapter, woo_adapter, store, shopify_simple_product):
        """Test a successful sync pushes, records and reports the destination id."""
        shopify_adapter.fetch_one.return_value = shopify_simple_product

        result = orchestrator.sync_one(SHOPIFY, "1072481062", WOO)

        assert result.success is True
        assert result.source_id == "1072481062"
        assert result.destination_id == "8001"
        assert result.stage == SyncStage.RECORDED
        shopify_adapter.fetch_one.assert_called_once_with("1072481062")
        shopify_adapter.fetch_variants.assert_not_called()
        woo_adapter.create.assert_called_once()
        assert woo_adapter.create.call_args[0][0]["type"] == "simple"

        mapping = store.find("shopify:1072481062", WOO)
        assert mapping.platform_product_id == "8001"
        assert mapping.sync_status == SyncStatus.SYNCED
        assert store.find("shopify:1072481062", SHOPIFY).platform_product_id == "1072481062"

    def test_woocommerce_variable_fetches_variations_first(
        self, orchestrator, shopify_adapter, woo_adapter, store, woo_variable_product, woo_variations
    ):
        """Test variations are fetched before normalizing a variable product."""
        woo_adapter.fetch_one.return_value = woo_variable_product
        woo_adapter.fetch_variants.return_value = woo_variations

        result = orchestrator.sync_one(WOO, 799, SHOPIFY)

        assert result.success is True
        woo_adapter.fetch_variants.assert_called_once_with("799")
        payload = shopify_adapter.create.call_args[0][0]
        assert [v["sku"] for v in payload["variants"]] == ["SHIP-BLACK-S", "SHIP-GREEN-M"]
        assert store.find("woocommerce:799", SHOPIFY).platform_variant_ids == {
            "SHIP-BLACK-S": "70010",
            "SHIP-GREEN-M": "70011",
        }

    def test_variations_created_after_parent(self, orchestrator, shopify_adapter, woo_adapter, store, shopify_product):
        """Test WooCommerce variations are pushed only once the parent exists."""
        shopify_adapter.fetch_one.return_value = shopify_product

        result = orchestrator.sync_one(SHOPIFY, "632910392", WOO)

        assert result.success is True
        names = _call_names(woo_adapter)
        assert names.index("create") < names.index("create_variant")
        assert woo_adapter.create_variant.call_count == 3
        assert all(c[0][0] == "8001" for c in woo_adapter.create_variant.call_args_list)

        mapping = store.find("shopify:632910392", WOO)
        assert set(mapping.platform_variant_ids) == {"IPOD-PINK-8", "IPOD-BLACK-8", "IPOD-BLACK-16"}

    def test_missing_adapter_raises(self, shopify_adapter, no_delay):
        """Test a missing adapter is a caller error, not a failed result."""
        orchestrator = SyncOrchestrator({SHOPIFY: shopify_adapter}, pacer=no_delay)

        with pytest.raises(AdapterNotConfiguredError):
            orchestrator.sync_one(SHOPIFY, "1", WOO)
        shopify_adapter.fetch_one.assert_not_called()

    def test_fetch_failure_becomes_failed_result(self, orchestrator, shopify_adapter, woo_adapter):
        """Test a fetch error fails the item at the fetch stage."""
        shopify_adapter.fetch_one.side_effect = NotFoundError(platform="shopify", resource="products/9.json")

        result = orchestrator.sync_one(SHOPIFY, "9", WOO)

        assert result.success is False
        assert result.stage == SyncStage.FAILED
        assert result.failed_stage == SyncStage.FETCHED
        assert "not found" in result.error
        woo_adapter.create.assert_not_called()

    def test_malformed_payload_fails_at_normalize(self, orchestrator, shopify_adapter):
        """Test a payload without a title fails at normalize."""
        shopify_adapter.fetch_one.return_value = {"id": 3, "title": None}

        result = orchestrator.sync_one(SHOPIFY, "3", WOO)

        assert result.success is False
        assert result.failed_stage == SyncStage.NORMALIZED

    def test_unexpected_exception_is_captured(self, orchestrator, shopify_adapter):
        """Test unknown exceptions become failed results."""
        shopify_adapter.fetch_one.side_effect = RuntimeError("boom")

        result = orchestrator.sync_one(SHOPIFY, "3", WOO)

        assert result.success is False
        assert result.error == "boom"


class TestDryRun:
    """Tests for dry-run behavior."""

    def test_dry_run_has_no_side_effects(self, orchestrator, shopify_adapter, woo_adapter, store, shopify_product):
        """Test dry run fetches and transforms but never writes."""
        shopify_adapter.fetch_one.return_value = shopify_product

        result = orchestrator.sync_one(SHOPIFY, "632910392", WOO, SyncOptions(dry_run=True))

        assert result.success is True
        assert result.dry_run is True
        assert result.stage == SyncStage.DENORMALIZED
        assert result.destination_id is None
        assert result.payload["payload"]["type"] == "variable"
        assert len(result.payload["variations"]) == 3
        shopify_adapter.fetch_one.assert_called_once()
        woo_adapter.create.assert_not_called()
        woo_adapter.update.assert_not_called()
        woo_adapter.create_variant.assert_not_called()
        assert len(store) == 0

    def test_dry_run_upsert_reports_mapped_id(self, orchestrator, shopify_adapter, woo_adapter, store,
                                              shopify_simple_product):
        """Test a dry run reports the existing destination id."""
        store.save(SyncMapping(canonical_product_id="shopify:1072481062", platform=WOO, platform_product_id="55"))
        shopify_adapter.fetch_one.return_value = shopify_simple_product

        result = orchestrator.sync_one(SHOPIFY, "1072481062", WOO, SyncOptions(dry_run=True, upsert=True))

        assert result.destination_id == "55"
        woo_adapter.update.assert_not_called()
        assert len(store) == 1


class TestUpsert:
    """Tests for create-vs-update decisions."""

    def test_existing_mapping_updates(self, orchestrator, shopify_adapter, woo_adapter, store, shopify_product):
        """Test an existing mapping turns create into update, including variations."""
        store.save(SyncMapping(
            canonical_product_id="shopify:632910392",
            platform=WOO,
            platform_product_id="8500",
            platform_variant_ids={"IPOD-PINK-8": "91"},
        ))
        shopify_adapter.fetch_one.return_value = shopify_product

        result = orchestrator.sync_one(SHOPIFY, "632910392", WOO, SyncOptions(upsert=True))

        assert result.success is True
        assert result.destination_id == "8500"
        woo_adapter.create.assert_not_called()
        assert woo_adapter.update.call_args[0][0] == "8500"
        woo_adapter.update_variant.assert_called_once()
        assert woo_adapter.update_variant.call_args[0][:2] == ("8500", "91")
        assert woo_adapter.create_variant.call_count == 2
        assert store.find("shopify:632910392", WOO).platform_variant_ids["IPOD-PINK-8"] == "91"

    def test_upsert_without_mapping_creates(self, orchestrator, shopify_adapter, woo_adapter, shopify_simple_product):
        """Test upsert creates when no mapping exists."""
        shopify_adapter.fetch_one.return_value = shopify_simple_product

        orchestrator.sync_one(SHOPIFY, "1072481062", WOO, SyncOptions(upsert=True))

        woo_adapter.create.assert_called_once()
        woo_adapter.update.assert_not_called()

    def test_without_upsert_mapping_is_ignored(self, orchestrator, shopify_adapter, woo_adapter, store,
                                               shopify_simple_product):
        """Test upsert off always creates."""
        store.save(SyncMapping(canonical_product_id="shopify:1072481062", platform=WOO, platform_product_id="55"))
        shopify_adapter.fetch_one.return_value = shopify_simple_product

        orchestrator.sync_one(SHOPIFY, "1072481062", WOO)

        woo_adapter.create.assert_called_once()
        woo_adapter.update.assert_not_called()

    def test_update_failure_marks_mapping_error(self, orchestrator, shopify_adapter, woo_adapter, store,
                                                shopify_simple_product):
        """Test a failed update records the error on the mapping."""
        original = store.save(
            SyncMapping(canonical_product_id="shopify:1072481062", platform=WOO, platform_product_id="55")
        )
        shopify_adapter.fetch_one.return_value = shopify_simple_product
        woo_adapter.update.side_effect = UpstreamApiError(
            message="woocommerce API error 500: oops", platform="woocommerce", status_code=500, body="oops"
        )

        result = orchestrator.sync_one(SHOPIFY, "1072481062", WOO, SyncOptions(upsert=True))

        assert result.success is False
        assert result.failed_stage == SyncStage.PUSHED
        mapping = store.find("shopify:1072481062", WOO)
        assert mapping.id == original.id
        assert mapping.sync_status == SyncStatus.ERROR
        assert "500" in mapping.error_message

    def test_variation_failure_records_parent(self, orchestrator, shopify_adapter, woo_adapter, store,
                                              shopify_product):
        """Test a created parent is still mapped when its variations fail."""
        shopify_adapter.fetch_one.return_value = shopify_product
        woo_adapter.create_variant.side_effect = UpstreamApiError(
            message="woocommerce API error 400: invalid sku", platform="woocommerce", status_code=400
        )

        result = orchestrator.sync_one(SHOPIFY, "632910392", WOO)

        assert result.success is False
        assert result.failed_stage == SyncStage.PUSHED
        mapping = store.find("shopify:632910392", WOO)
        assert mapping.platform_product_id == "8001"
        assert mapping.sync_status == SyncStatus.ERROR

    def test_reverse_sync_reuses_canonical_identity(self, orchestrator, shopify_adapter, woo_adapter, store,
                                                    shopify_simple_product, woo_simple_product):
        """Test syncing back from the destination updates the original source product."""
        shopify_adapter.fetch_one.return_value = shopify_simple_product
        orchestrator.sync_one(SHOPIFY, "1072481062", WOO)

        woo_adapter.fetch_one.return_value = {**woo_simple_product, "id": 8001}
        result = orchestrator.sync_one(WOO, "8001", SHOPIFY, SyncOptions(upsert=True))

        assert result.success is True
        shopify_adapter.create.assert_not_called()
        assert shopify_adapter.update.call_args[0][0] == "1072481062"


class TestSyncBatch:
    """Tests for batch sync."""

    def test_batch_isolation(self, orchestrator, shopify_adapter, woo_adapter, shopify_simple_product,
                             shopify_product):
        """Test a failing item does not abort the items after it."""
        shopify_adapter.fetch_many.return_value = [
            shopify_simple_product,
            {"id": 2, "title": ""},
            shopify_product,
        ]

        report = orchestrator.sync_batch(SHOPIFY, WOO)

        assert isinstance(report, BatchReport)
        assert len(report) == 3
        assert [r.success for r in report.results] == [True, False, True]
        assert [r.source_id for r in report.results] == ["1072481062", "2", "632910392"]
        assert report.results[1].failed_stage == SyncStage.NORMALIZED
        assert report.success_count == 2
        assert report.failure_count == 1
        shopify_adapter.fetch_one.assert_not_called()
        shopify_adapter.fetch_many.assert_called_once_with(PageParams(per_page=10, status="active"))

    def test_push_failure_mid_batch(self, orchestrator, woo_adapter, shopify_adapter, shopify_simple_product):
        """Test a push failure in the middle leaves the rest synced."""
        shopify_adapter.fetch_many.return_value = [
            {**shopify_simple_product, "id": n} for n in (1, 2, 3)
        ]
        calls = {"count": 0}

        def create(payload):
            calls["count"] += 1
            if calls["count"] == 2:
                raise NetworkError(message="connection reset", platform="woocommerce")
            return {**payload, "id": 900 + calls["count"]}

        woo_adapter.create.side_effect = create

        report = orchestrator.sync_batch(SHOPIFY, WOO)

        assert [r.success for r in report.results] == [True, False, True]
        assert report.results[1].error == "connection reset"
        assert report.results[2].destination_id == "903"

    def test_explicit_page_status_kept(self, orchestrator, woo_adapter, shopify_adapter):
        """Test a caller's status filter is not replaced."""
        woo_adapter.fetch_many.return_value = []
        page = PageParams(page=3, per_page=5, status="draft")

        report = orchestrator.sync_batch(WOO, SHOPIFY, page)

        woo_adapter.fetch_many.assert_called_once_with(page)
        assert report.total_count == 0

    def test_pacer_called_per_item(self, shopify_adapter, woo_adapter, shopify_simple_product):
        """Test the pacer runs between items."""
        pacer = Mock(spec=Pacer)
        shopify_adapter.fetch_many.return_value = [shopify_simple_product] * 3
        orchestrator = SyncOrchestrator({SHOPIFY: shopify_adapter, WOO: woo_adapter}, pacer=pacer)

        orchestrator.sync_batch(SHOPIFY, WOO)

        assert pacer.wait.call_count == 3

    def test_dry_run_batch(self, orchestrator, shopify_adapter, woo_adapter, store, shopify_simple_product):
        """Test a dry-run batch never writes."""
        shopify_adapter.fetch_many.return_value = [shopify_simple_product] * 2

        report = orchestrator.sync_batch(SHOPIFY, WOO, options=SyncOptions(dry_run=True))

        assert report.dry_run is True
        assert report.success_count == 2
        woo_adapter.create.assert_not_called()
        assert len(store) == 0
        assert report.to_dict()["total_count"] == 2

    def test_cancellation_between_items(self, orchestrator, shopify_adapter, woo_adapter, shopify_simple_product):
        """Test cancelled batches still report one result per item."""
        token = CancellationToken()
        shopify_adapter.fetch_many.return_value = [
            {**shopify_simple_product, "id": n} for n in (1, 2, 3)
        ]

        def create(payload):
            token.cancel()
            return {**payload, "id": 5}

        woo_adapter.create.side_effect = create

        report = orchestrator.sync_batch(SHOPIFY, WOO, cancel_token=token)

        assert len(report) == 3
        assert report.results[0].success is True
        assert [r.error for r in report.results[1:]] == ["cancelled", "cancelled"]
        assert woo_adapter.create.call_count == 1

    def test_worker_pool_preserves_order(self, shopify_adapter, woo_adapter, shopify_simple_product):
        """Test results follow the fetched order, not completion order."""
        shopify_adapter.fetch_many.return_value = [
            {**shopify_simple_product, "id": n, "title": f"Board {n}"} for n in (1, 2, 3, 4)
        ]

        def create(payload):
            # Earlier items finish last.
            time.sleep(0.01 * (5 - int(payload["name"].split()[-1])))
            return {**payload, "id": 1}

        woo_adapter.create.side_effect = create
        orchestrator = SyncOrchestrator(
            {SHOPIFY: shopify_adapter, WOO: woo_adapter},
            pacer=FixedDelayPacer(delay=0),
            settings=SyncSettings(max_workers=4),
        )

        report = orchestrator.sync_batch(SHOPIFY, WOO)

        assert [r.source_id for r in report.results] == ["1", "2", "3", "4"]
        assert all(r.success for r in report.results)

    def test_missing_destination_raises(self, shopify_adapter, no_delay):
        """Test an unregistered destination raises before fetching."""
        orchestrator = SyncOrchestrator({SHOPIFY: shopify_adapter}, pacer=no_delay)
        with pytest.raises(AdapterNotConfiguredError):
            orchestrator.sync_batch(SHOPIFY, WOO)


class TestImportFrom:
    """Tests for fetch + normalize imports."""

    def test_import_fetches_variations(self, orchestrator, woo_adapter, woo_simple_product, woo_variable_product,
                                       woo_variations):
        """Test import fetches variations for variable products."""
        woo_adapter.fetch_many.return_value = [woo_simple_product, woo_variable_product]
        woo_adapter.fetch_variants.return_value = woo_variations

        result = orchestrator.import_from(WOO)

        assert result.success_count == 2
        woo_adapter.fetch_many.assert_called_once_with(PageParams(per_page=50, status="publish"))
        woo_adapter.fetch_variants.assert_called_once_with("799")
        assert result.successful[1].price == Decimal("9.00")

    def test_variation_fetch_failure_reported(self, orchestrator, woo_adapter, woo_simple_product,
                                              woo_variable_product):
        """Test a variation fetch error fails only that item."""
        woo_adapter.fetch_many.return_value = [woo_variable_product, {"id": 6}, woo_simple_product]
        woo_adapter.fetch_variants.side_effect = NetworkError(message="timeout", platform="woocommerce")

        result = orchestrator.import_from(WOO)

        assert result.success_count == 1
        assert [f["index"] for f in result.failed] == [0, 1]
        assert result.failed[0]["product_id"] == "799"

    def test_import_does_not_push(self, orchestrator, shopify_adapter, woo_adapter, shopify_product):
        """Test import only returns canonical products."""
        shopify_adapter.fetch_many.return_value = [shopify_product]

        result = orchestrator.import_from(SHOPIFY)

        assert result.success_count == 1
        woo_adapter.create.assert_not_called()
        shopify_adapter.fetch_variants.assert_not_called()


class TestExportTo:
    """Tests for pushing already-canonical products."""

    def test_export_isolates_failures(self, orchestrator, shopify_adapter, store, canonical_simple_product):
        """Test one failed export leaves the others exported."""
        too_many = CanonicalProduct(
            internal_id="big",
            title="Too Many",
            variants=[Variant(sku=f"S{i}", price=Decimal("1"), option1=str(i)) for i in range(101)],
            options=[Option(name="N", position=1, values=[str(i) for i in range(101)])],
        )

        report = orchestrator.export_to(SHOPIFY, [too_many, canonical_simple_product])

        assert [r.success for r in report.results] == [False, True]
        assert report.results[0].failed_stage == SyncStage.DENORMALIZED
        assert report.results[0].source_id == "big"
        shopify_adapter.create.assert_called_once()
        assert store.find("shopify:501", SHOPIFY).platform_product_id == "7001"

    def test_internal_id_keys_mapping(self, orchestrator, woo_adapter, store, canonical_simple_product):
        """Test the internal id is the mapping key when set."""
        product = canonical_simple_product.model_copy(update={"internal_id": "hub-1"})

        orchestrator.export_to(WOO, [product])

        assert store.find("hub-1", WOO).platform_product_id == "8001"

    def test_export_dry_run(self, orchestrator, woo_adapter, store, canonical_simple_product):
        """Test a dry-run export saves no mapping."""
        report = orchestrator.export_to(WOO, [canonical_simple_product], SyncOptions(dry_run=True))

        assert report.results[0].success is True
        assert report.results[0].payload["payload"]["name"] == "Canvas Tote"
        woo_adapter.create.assert_not_called()
        assert len(store) == 0


class TestDefaults:
    """Tests for orchestrator wiring."""

    def test_default_pacer_uses_settings(self, shopify_adapter):
        """Test the default pacer uses the configured delay."""
        orchestrator = SyncOrchestrator({SHOPIFY: shopify_adapter}, settings=SyncSettings(inter_item_delay_ms=200))
        assert isinstance(orchestrator.pacer, FixedDelayPacer)
        assert orchestrator.pacer.delay == 0.2

    def test_default_store_is_in_memory(self, shopify_adapter):
        """Test an in-memory store is used when none is given."""
        assert isinstance(SyncOrchestrator({SHOPIFY: shopify_adapter}).mapping_store, InMemoryMappingStore)

    def test_from_env_applies_logging_settings(self, monkeypatch, no_delay):
        """Test from_env configures logging and adapters from the environment."""
        monkeypatch.setenv("CATALOG_SYNC_SHOPIFY_SHOP", "demo.myshopify.com")
        monkeypatch.setenv("CATALOG_SYNC_SHOPIFY_ACCESS_TOKEN", "shpat_1")
        monkeypatch.setenv("CATALOG_SYNC_LOG_LEVEL", "warning")
        monkeypatch.setenv("CATALOG_SYNC_MAX_WORKERS", "2")

        with patch("catalog_sync.orchestrator.configure_logging") as configure:
            orchestrator = SyncOrchestrator.from_env(pacer=no_delay)

        configure.assert_called_once_with(level="WARNING", json_logs=False)
        assert set(orchestrator.adapters) == {SHOPIFY}
        assert orchestrator.settings.max_workers == 2
        assert orchestrator.pacer is no_delay
