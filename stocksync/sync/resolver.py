# stocksync/sync/resolver.py
"""
ERP inventory rows + SKU mapping rows → net stock per storefront SKU.

Net stock is `(sellable ?? available ?? 0) - (shortage ?? 0)`. The older
`available - shortage` figure is only computed to count how often the two
disagree; it never drives a decision.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from stocksync.erp.erp_models import InventoryRecord, SkuMappingRecord

logger = logging.getLogger("uvicorn.error")


def net_stock(record: InventoryRecord) -> int:
    if record.sellable_stock is not None:
        base = record.sellable_stock
    elif record.available_stock is not None:
        base = record.available_stock
    else:
        base = 0
    return base - (record.shortage_queued or 0)


def legacy_net_stock(record: InventoryRecord) -> int:
    return (record.available_stock or 0) - (record.shortage_queued or 0)


@dataclass(frozen=True)
class Contribution:
    """One ERP row's share of a storefront SKU's stock."""
    erp_sku: str
    category: str
    warehouse_id: str
    net_stock: int


@dataclass(frozen=True)
class ResolvedSku:
    storefront_sku: str
    contributions: Tuple[Contribution, ...]

    @property
    def net_stock(self) -> int:
        return sum(c.net_stock for c in self.contributions)

    @property
    def category(self) -> str:
        # first mapped ERP row names the category
        return self.contributions[0].category if self.contributions else ""


@dataclass
class Resolution:
    skus: Dict[str, ResolvedSku] = field(default_factory=dict)
    unmapped_erp_skus: int = 0
    unmapped_storefront_skus: int = 0
    formula_divergent: int = 0
    duplicate_erp_skus: int = 0

    def metrics(self) -> Dict[str, int]:
        return {
            "resolved_skus": len(self.skus),
            "unmapped_erp_skus": self.unmapped_erp_skus,
            "unmapped_storefront_skus": self.unmapped_storefront_skus,
            "formula_divergent": self.formula_divergent,
            "duplicate_erp_skus": self.duplicate_erp_skus,
        }


def resolve(
    inventory: Iterable[InventoryRecord],
    mappings: Iterable[SkuMappingRecord],
) -> Resolution:
    res = Resolution()

    # 1) ERP SKU → contributions (several rows per SKU = several warehouses)
    by_erp: Dict[str, List[Contribution]] = defaultdict(list)
    for rec in inventory:
        if rec.erp_sku in by_erp:
            res.duplicate_erp_skus += 1
        ns = net_stock(rec)
        if ns != legacy_net_stock(rec):
            res.formula_divergent += 1
        by_erp[rec.erp_sku].append(
            Contribution(rec.erp_sku, rec.category, rec.warehouse_id, ns)
        )

    # 2) fold through the mapping table; many ERP SKUs may feed one storefront SKU
    per_storefront: Dict[str, List[Contribution]] = defaultdict(list)
    seen_pairs = set()
    mapped_erp = set()
    declared_storefront = set()
    for m in mappings:
        declared_storefront.add(m.storefront_sku)
        pair = (m.storefront_sku, m.erp_sku)
        if pair in seen_pairs:
            continue
        seen_pairs.add(pair)
        contribs = by_erp.get(m.erp_sku)
        if not contribs:
            continue
        mapped_erp.add(m.erp_sku)
        per_storefront[m.storefront_sku].extend(contribs)

    for sku, contribs in per_storefront.items():
        res.skus[sku] = ResolvedSku(sku, tuple(contribs))

    # un-mapped storefront SKUs are dropped, never pushed as "0 in stock"
    res.unmapped_storefront_skus = len(declared_storefront - set(per_storefront))
    res.unmapped_erp_skus = len(set(by_erp) - mapped_erp)

    logger.info(
        "[SYNC] resolved %d storefront SKUs (unmapped ERP=%d, unmapped storefront=%d, divergent=%d)",
        len(res.skus), res.unmapped_erp_skus, res.unmapped_storefront_skus, res.formula_divergent,
    )
    return res
