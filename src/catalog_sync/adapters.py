"""
Platform adapters: thin HTTP wrappers around each platform's REST API.

Adapters only handle API communication and return raw platform payloads;
transformation happens in the transformer. Every call goes through the
injected RetryConfig, and failures are raised as UpstreamApiError,
NotFoundError or NetworkError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from catalog_sync.config import (
    ShopifyCredentials,
    SyncSettings,
    WooCommerceCredentials,
    shopify_credentials_from_env,
    woocommerce_credentials_from_env,
)
from catalog_sync.exceptions import NetworkError, NotFoundError, UpstreamApiError
from catalog_sync.models import Platform
from catalog_sync.retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)


def _retry_after(response: requests.Response) -> Optional[float]:
    """Seconds from a numeric Retry-After header; HTTP-date values are ignored."""
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PageParams:
    """Pagination and filtering for list calls."""
    page: int = 1
    per_page: int = 10
    status: Optional[str] = None
    ids: Optional[tuple[str, ...]] = None
    cursor: Optional[str] = None


class PlatformAdapter:
    """Base class for platform adapters."""

    platform: Platform
    # Source-side status filter for batch fetches when none is given.
    active_status: Optional[str] = None

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        operation: Optional[str] = None,
    ) -> Any:
        call = retry_with_backoff(config=self.retry_config)(self._send)
        return call(method, endpoint, params, payload, operation or f"{method} {endpoint}")

    def _send(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict],
        payload: Optional[dict],
        operation: str,
    ) -> Any:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(
                message=f"{self.platform.value} request failed: {e}",
                platform=self.platform.value,
                operation=operation,
                original_exception=e,
            )

        if response.status_code == 404:
            raise NotFoundError(
                platform=self.platform.value,
                resource=endpoint,
                body=response.text,
                operation=operation,
            )
        if not response.ok:
            raise UpstreamApiError(
                message=f"{self.platform.value} API error {response.status_code}: {response.text}",
                platform=self.platform.value,
                status_code=response.status_code,
                body=response.text,
                operation=operation,
                retry_after=_retry_after(response),
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamApiError(
                message=f"{self.platform.value} API returned a non-JSON body",
                platform=self.platform.value,
                status_code=response.status_code,
                body=response.text,
                operation=operation,
                original_exception=e,
            )

    def fetch_many(self, page: PageParams = PageParams()) -> list[dict]:
        raise NotImplementedError

    def fetch_one(self, product_id: str) -> dict:
        raise NotImplementedError

    def fetch_variants(self, product_id: str) -> list[dict]:
        raise NotImplementedError

    def create(self, payload: dict) -> dict:
        raise NotImplementedError

    def update(self, product_id: str, payload: dict) -> dict:
        raise NotImplementedError

    def create_variant(self, product_id: str, payload: dict) -> dict:
        raise NotImplementedError

    def update_variant(self, product_id: str, variant_id: str, payload: dict) -> dict:
        raise NotImplementedError

    def test_connection(self) -> bool:
        """Check that the store answers. Never raises."""
        try:
            self.fetch_many(PageParams(per_page=1))
            return True
        except Exception as e:
            logger.warning(f"{self.platform.value} connection test failed: {e}")
            return False


class ShopifyAdapter(PlatformAdapter):
    """
    Shopify Admin REST API wrapper.

    Shopify wraps single resources in an envelope (``{"product": {...}}``);
    this adapter adds the envelope on writes and strips it from responses,
    so callers always deal in bare product objects.
    """

    platform = Platform.SHOPIFY
    active_status = "active"

    def __init__(
        self,
        credentials: ShopifyCredentials,
        api_version: str = "2024-10",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(
            base_url=f"https://{credentials.shop}/admin/api/{api_version}",
            session=session,
            timeout=timeout,
            retry_config=retry_config,
        )
        self.access_token = credentials.access_token

    def _headers(self) -> dict:
        return {**super()._headers(), "X-Shopify-Access-Token": self.access_token}

    def _bare(self, payload: dict, key: str) -> dict:
        inner = payload.get(key)
        return inner if isinstance(inner, dict) else payload

    def fetch_many(self, page: PageParams = PageParams()) -> list[dict]:
        params: dict[str, str] = {"limit": str(page.per_page)}
        if page.cursor:
            # Shopify rejects filters alongside a page_info cursor.
            params["page_info"] = page.cursor
        else:
            if page.status:
                params["status"] = page.status
            if page.ids:
                params["ids"] = ",".join(page.ids)
        data = self._request("GET", "products.json", params=params, operation="fetch_many")
        return data.get("products", [])

    def fetch_one(self, product_id: str) -> dict:
        data = self._request("GET", f"products/{product_id}.json", operation="fetch_one")
        return data["product"]

    def fetch_variants(self, product_id: str) -> list[dict]:
        data = self._request(
            "GET",
            f"products/{product_id}/variants.json",
            params={"limit": "250"},
            operation="fetch_variants",
        )
        return data.get("variants", [])

    def create(self, payload: dict) -> dict:
        data = self._request(
            "POST",
            "products.json",
            payload={"product": self._bare(payload, "product")},
            operation="create",
        )
        return data["product"]

    def update(self, product_id: str, payload: dict) -> dict:
        body = {**self._bare(payload, "product"), "id": product_id}
        data = self._request(
            "PUT",
            f"products/{product_id}.json",
            payload={"product": body},
            operation="update",
        )
        return data["product"]

    def create_variant(self, product_id: str, payload: dict) -> dict:
        data = self._request(
            "POST",
            f"products/{product_id}/variants.json",
            payload={"variant": self._bare(payload, "variant")},
            operation="create_variant",
        )
        return data["variant"]

    def update_variant(self, product_id: str, variant_id: str, payload: dict) -> dict:
        body = {**self._bare(payload, "variant"), "id": variant_id}
        data = self._request(
            "PUT",
            f"variants/{variant_id}.json",
            payload={"variant": body},
            operation="update_variant",
        )
        return data["variant"]


class WooCommerceAdapter(PlatformAdapter):
    """WooCommerce REST API v3 wrapper. Responses are bare objects and arrays."""

    platform = Platform.WOOCOMMERCE
    active_status = "publish"
    VARIATIONS_PER_PAGE = 100

    def __init__(
        self,
        credentials: WooCommerceCredentials,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(
            base_url=f"{credentials.url}/wp-json/wc/v3",
            session=session,
            timeout=timeout,
            retry_config=retry_config,
        )
        self.session.auth = (credentials.consumer_key, credentials.consumer_secret)

    def fetch_many(self, page: PageParams = PageParams()) -> list[dict]:
        params: dict[str, str] = {"page": str(page.page), "per_page": str(page.per_page)}
        if page.status:
            params["status"] = page.status
        if page.ids:
            params["include"] = ",".join(page.ids)
        return self._request("GET", "products", params=params, operation="fetch_many")

    def fetch_one(self, product_id: str) -> dict:
        return self._request("GET", f"products/{product_id}", operation="fetch_one")

    def fetch_variants(self, product_id: str) -> list[dict]:
        variations: list[dict] = []
        page = 1
        while True:
            batch = self._request(
                "GET",
                f"products/{product_id}/variations",
                params={"page": str(page), "per_page": str(self.VARIATIONS_PER_PAGE)},
                operation="fetch_variants",
            )
            variations.extend(batch)
            if len(batch) < self.VARIATIONS_PER_PAGE:
                return variations
            page += 1

    def create(self, payload: dict) -> dict:
        return self._request("POST", "products", payload=payload, operation="create")

    def update(self, product_id: str, payload: dict) -> dict:
        return self._request("PUT", f"products/{product_id}", payload=payload, operation="update")

    def create_variant(self, product_id: str, payload: dict) -> dict:
        return self._request(
            "POST",
            f"products/{product_id}/variations",
            payload=payload,
            operation="create_variant",
        )

    def update_variant(self, product_id: str, variant_id: str, payload: dict) -> dict:
        return self._request(
            "PUT",
            f"products/{product_id}/variations/{variant_id}",
            payload=payload,
            operation="update_variant",
        )


def build_adapters(
    settings: SyncSettings,
    shopify: Optional[ShopifyCredentials] = None,
    woocommerce: Optional[WooCommerceCredentials] = None,
) -> dict[Platform, PlatformAdapter]:
    """
    Create adapters for every platform with credentials.

    Credentials not passed explicitly are read from the environment.
    Platforms without credentials are left out.
    """
    retry_config = RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
    )
    shopify = shopify or shopify_credentials_from_env()
    woocommerce = woocommerce or woocommerce_credentials_from_env()

    adapters: dict[Platform, PlatformAdapter] = {}
    if shopify:
        adapters[Platform.SHOPIFY] = ShopifyAdapter(
            shopify,
            api_version=settings.shopify_api_version,
            timeout=settings.http_timeout,
            retry_config=retry_config,
        )
    if woocommerce:
        adapters[Platform.WOOCOMMERCE] = WooCommerceAdapter(
            woocommerce,
            timeout=settings.http_timeout,
            retry_config=retry_config,
        )
    return adapters
