#==========================================================================================
# stocksync/woo/woocommerce.py
# WooCommerce API interface module.
# Per-site product lookup by SKU and stock-status updates (REST v3, Basic auth key:secret).
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from stocksync.config import settings
from stocksync.logging_filters import summarize_body
from stocksync.sync.decision import INSTOCK
from stocksync.sync.errors import LookupFailed, NotFound, UpdateFailed

logger = logging.getLogger("uvicorn.error")


class StorefrontClient:
    """One storefront's product API. Use as `async with StorefrontClient(...) as wc:`."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        *,
        timeout: float = 20.0,
        max_attempts: int = 2,
        verify: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_root = f"{self.base_url}/wp-json/wc/v3"
        self.max_attempts = max(1, max_attempts)
        auth = httpx.BasicAuth(api_key or "", api_secret or "")
        self._client = client or httpx.AsyncClient(timeout=timeout, verify=verify, auth=auth)
        self._auth = auth
        self._owns_client = client is None

    @classmethod
    def for_site(cls, site, client: Optional[httpx.AsyncClient] = None) -> "StorefrontClient":
        return cls(
            site.base_url,
            site.api_key,
            site.api_secret,
            timeout=settings.WC_TIMEOUT_SECONDS,
            max_attempts=settings.WC_MAX_ATTEMPTS,
            verify=settings.WC_VERIFY_SSL,
            client=client,
        )

    async def __aenter__(self) -> "StorefrontClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Retries transport errors only; an HTTP error status is returned to the caller."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._client.request(method, url, auth=self._auth, **kwargs)
            except httpx.HTTPError as e:
                if attempt >= self.max_attempts:
                    raise
                delay = 0.5 * (2 ** (attempt - 1))
                logger.warning(
                    "[WC][RETRY] %s %s failed (attempt %s/%s): %s. Retrying in %.1fs...",
                    method, url, attempt, self.max_attempts, e, delay,
                )
                await asyncio.sleep(delay)

    # ---- Products ----

    async def find_product(self, sku: str) -> Dict[str, Any]:
        """Look a product (or variation) up by SKU. Raises NotFound / LookupFailed."""
        url = f"{self.api_root}/products"
        try:
            resp = await self._request_with_retry("GET", url, params={"sku": sku})
        except httpx.HTTPError as e:
            raise LookupFailed(sku, f"{type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise LookupFailed(sku, f"HTTP {resp.status_code} {summarize_body(resp.text)}".strip())
        try:
            products = resp.json()
        except ValueError as e:
            raise LookupFailed(sku, f"invalid JSON: {summarize_body(resp.text)}") from e
        if not isinstance(products, list):
            raise LookupFailed(sku, "unexpected response shape")
        if not products:
            raise NotFound(sku, "no product with this SKU")

        for p in products:
            if isinstance(p, dict) and (p.get("sku") or "") == sku:
                if "id" not in p:
                    raise LookupFailed(sku, "unexpected product shape")
                return p
        # the sku query may match loosely; never touch a product with another SKU
        raise NotFound(sku, f"{len(products)} product(s) returned, none with this exact SKU")

    def _product_url(self, product: Dict[str, Any]) -> str:
        pid = product["id"]
        if product.get("type") == "variation" and product.get("parent_id"):
            return f"{self.api_root}/products/{product['parent_id']}/variations/{pid}"
        return f"{self.api_root}/products/{pid}"

    async def set_stock_status(self, product: Dict[str, Any], stock_status: str) -> Dict[str, Any]:
        """PUT stock_status + a token quantity (1 in stock / 0 out). Raises UpdateFailed."""
        sku = product.get("sku") or str(product.get("id"))
        payload = {
            "stock_status": stock_status,
            "manage_stock": True,
            "stock_quantity": 1 if stock_status == INSTOCK else 0,
        }
        url = self._product_url(product)
        try:
            resp = await self._request_with_retry("PUT", url, json=payload)
        except httpx.HTTPError as e:
            raise UpdateFailed(sku, f"{type(e).__name__}: {e}") from e
        if resp.status_code not in (200, 201):
            raise UpdateFailed(sku, f"HTTP {resp.status_code} {summarize_body(resp.text)}".strip())
        try:
            return resp.json()
        except ValueError:
            return {}
