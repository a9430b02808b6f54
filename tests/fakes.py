"""Stand-ins for the ERP and storefront clients used by pipeline and route tests."""
import asyncio
from typing import Dict, List, Optional

from stocksync.erp.erp_models import InventoryRecord, SkuMappingRecord
from stocksync.sync.errors import NotFound, StorefrontError


def inv(sku, sellable=None, available=None, shortage=None, category="", warehouse=""):
    return InventoryRecord(
        erp_sku=sku,
        category=category,
        warehouse_id=warehouse,
        sellable_stock=sellable,
        available_stock=available,
        shortage_queued=shortage,
    )


def mapping(storefront_sku, erp_sku):
    return SkuMappingRecord(storefront_sku=storefront_sku, erp_sku=erp_sku)


class FakeErp:
    def __init__(self, inventory: List[InventoryRecord], mappings: List[SkuMappingRecord],
                 error: Optional[Exception] = None):
        self.inventory = inventory
        self.mappings = mappings
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def fetch_inventory(self):
        if self.error:
            raise self.error
        return list(self.inventory), 0

    async def fetch_mappings(self):
        return list(self.mappings), 0


class FakeStorefront:
    """
    products: sku -> current stock_status.
    lookup_errors / update_errors: sku -> StorefrontError raised by that call.
    """

    def __init__(self, products: Dict[str, str], lookup_errors=None, update_errors=None, delay: float = 0.0):
        self.products = dict(products)
        self.lookup_errors: Dict[str, StorefrontError] = dict(lookup_errors or {})
        self.update_errors: Dict[str, StorefrontError] = dict(update_errors or {})
        self.delay = delay
        self.lookups: List[str] = []
        self.updates: List[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def find_product(self, sku):
        self.lookups.append(sku)
        if self.delay:
            await asyncio.sleep(self.delay)
        if sku in self.lookup_errors:
            raise self.lookup_errors[sku]
        if sku not in self.products:
            raise NotFound(sku, "no product with this SKU")
        return {"id": len(self.lookups), "sku": sku, "stock_status": self.products[sku]}

    async def set_stock_status(self, product, status):
        sku = product["sku"]
        if sku in self.update_errors:
            raise self.update_errors[sku]
        self.updates.append((sku, status))
        self.products[sku] = status
        return {**product, "stock_status": status}
