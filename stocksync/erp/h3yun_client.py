#===========================================================================
# stocksync/erp/h3yun_client.py
# H3Yun ERP API interface module.
# Paged LoadBizObjects reads of the inventory and SKU-mapping forms.
#===========================================================================

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from stocksync.config import settings
from stocksync.erp.erp_models import (
    ErpFieldMap,
    InventoryRecord,
    SkuMappingRecord,
    inventory_from_biz_object,
    mapping_from_biz_object,
)
from stocksync.sync.errors import FetchAborted

logger = logging.getLogger("uvicorn.error")

_RETRY_STATUSES = {429, 500, 502, 503, 504}


def build_filter(from_row: int, to_row: int) -> str:
    """Full-scan filter for one row range; H3Yun wants it as a JSON string."""
    return json.dumps({
        "FromRowNum": from_row,
        "ToRowNum": to_row,
        "RequireCount": False,
        "ReturnItems": [],
        # sorting makes the vendor throw null-reference errors
        "SortByCollection": [],
        "Matcher": {"Type": "And", "Matchers": []},
    })


class H3YunClient:
    def __init__(
        self,
        base_url: str,
        engine_code: str,
        engine_secret: str,
        *,
        page_size: int = 500,
        page_delay: float = 0.5,
        max_attempts: int = 3,
        timeout: float = 30.0,
        fields: Optional[ErpFieldMap] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.base_url = base_url
        self.engine_code = engine_code
        self.engine_secret = engine_secret
        self.page_size = page_size
        self.page_delay = page_delay
        self.max_attempts = max(1, max_attempts)
        self.fields = fields or ErpFieldMap()
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, client: Optional[httpx.AsyncClient] = None) -> "H3YunClient":
        return cls(
            settings.H3YUN_BASE_URL,
            settings.H3YUN_ENGINE_CODE,
            settings.H3YUN_ENGINE_SECRET,
            page_size=settings.H3YUN_PAGE_SIZE,
            page_delay=settings.H3YUN_PAGE_DELAY_SECONDS,
            max_attempts=settings.H3YUN_MAX_ATTEMPTS,
            timeout=settings.H3YUN_TIMEOUT_SECONDS,
            fields=ErpFieldMap.from_settings(),
            client=client,
        )

    async def __aenter__(self) -> "H3YunClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "EngineCode": self.engine_code,
            "EngineSecret": self.engine_secret,
        }

    async def _post_with_retry(self, schema_code: str, from_row: int, body: Dict[str, Any]) -> Dict[str, Any]:
        last_error = "no attempt made"
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self._client.post(self.base_url, headers=self._headers(), json=body)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if resp.status_code not in _RETRY_STATUSES:
                    if resp.status_code >= 400:
                        raise FetchAborted(schema_code, from_row, f"HTTP {resp.status_code}")
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise FetchAborted(schema_code, from_row, f"invalid JSON response: {e}") from e
                last_error = f"HTTP {resp.status_code}"

            if attempt < self.max_attempts:
                delay = 0.5 * (2 ** (attempt - 1))
                logger.warning(
                    "[H3YUN][RETRY] %s rows %s+ failed (attempt %s/%s): %s. Retrying in %.1fs...",
                    schema_code, from_row, attempt, self.max_attempts, last_error, delay,
                )
                await asyncio.sleep(delay)

        raise FetchAborted(schema_code, from_row, f"gave up after {self.max_attempts} attempts: {last_error}")

    async def load_page(self, schema_code: str, from_row: int) -> List[Dict[str, Any]]:
        """
        One LoadBizObjects call for rows [from_row, from_row + page_size).
        A reply flagged Successful=false is an application failure and is never retried.
        """
        body = {
            "ActionName": "LoadBizObjects",
            "SchemaCode": schema_code,
            "Filter": build_filter(from_row, from_row + self.page_size),
        }
        data = await self._post_with_retry(schema_code, from_row, body)
        if not isinstance(data, dict):
            raise FetchAborted(schema_code, from_row, "unexpected response shape")
        if not data.get("Successful"):
            raise FetchAborted(schema_code, from_row, data.get("ErrorMessage") or "unknown ERP error")
        rows = (data.get("ReturnData") or {}).get("BizObjectArray") or []
        if not isinstance(rows, list):
            raise FetchAborted(schema_code, from_row, "BizObjectArray is not a list")
        return rows

    async def fetch_all(self, schema_code: str) -> List[Dict[str, Any]]:
        """
        Page through a whole form. The last page is the first one shorter than
        page_size, so a full final page costs one extra (empty) request.
        Raises FetchAborted instead of returning a partial result.
        """
        out: List[Dict[str, Any]] = []
        from_row = 0
        page = 0
        while True:
            page += 1
            rows = await self.load_page(schema_code, from_row)
            out.extend(rows)
            logger.info("[H3YUN] %s page %d: %d rows (total %d)", schema_code, page, len(rows), len(out))
            if len(rows) < self.page_size:
                break
            from_row += self.page_size
            if self.page_delay > 0:
                await asyncio.sleep(self.page_delay)
        return out

    async def fetch_inventory(self, schema_code: Optional[str] = None) -> Tuple[List[InventoryRecord], int]:
        """Typed inventory rows plus the count of rows rejected at the boundary."""
        raw = await self.fetch_all(schema_code or settings.H3YUN_INVENTORY_SCHEMA_CODE)
        records: List[InventoryRecord] = []
        rejected = 0
        for obj in raw:
            rec = inventory_from_biz_object(obj, self.fields)
            if rec is None:
                rejected += 1
                continue
            records.append(rec)
        if rejected:
            logger.warning("[H3YUN] skipped %d inventory rows without SKU or with unreadable stock", rejected)
        return records, rejected

    async def fetch_mappings(self, schema_code: Optional[str] = None) -> Tuple[List[SkuMappingRecord], int]:
        raw = await self.fetch_all(schema_code or settings.H3YUN_SKU_MAPPING_SCHEMA_CODE)
        records: List[SkuMappingRecord] = []
        rejected = 0
        for obj in raw:
            rec = mapping_from_biz_object(obj, self.fields)
            if rec is None:
                rejected += 1
                continue
            records.append(rec)
        if rejected:
            logger.warning("[H3YUN] skipped %d mapping rows missing a storefront or ERP SKU", rejected)
        return records, rejected

    async def ping(self, schema_code: Optional[str] = None) -> Dict[str, Any]:
        """
        Checks that the ERP is reachable and the engine credentials work.
        Returns: { "success": bool, "error"?: str }
        """
        code = schema_code or settings.H3YUN_INVENTORY_SCHEMA_CODE
        body = {"ActionName": "LoadBizObjects", "SchemaCode": code, "Filter": build_filter(0, 1)}
        try:
            data = await self._post_with_retry(code, 0, body)
        except FetchAborted as e:
            return {"success": False, "error": e.reason}
        if not isinstance(data, dict):
            return {"success": False, "error": "unexpected response shape"}
        if not data.get("Successful"):
            return {"success": False, "error": data.get("ErrorMessage") or "unknown ERP error"}
        return {"success": True}
