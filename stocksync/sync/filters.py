# stocksync/sync/filters.py
"""
Per-site scope rules.

A site's filter row is compiled once per pass into an ordered rule list and
then evaluated for every candidate without further I/O. Rules run in a fixed
order and the first one that rejects decides; exclusions come first, so they
always beat the inclusion rules:

  1. exclude_warehouses     – candidate's warehouse is listed
  2. exclude_sku_prefixes   – either SKU starts with a listed prefix
  3. category_filters       – non-empty and the category is not listed
  4. sku_filter             – non-empty and no term matches either SKU

"Either SKU" is the storefront SKU and the ERP product code the candidate
was mapped from; operators write filters against whichever they know.

A site whose filter field is empty falls back to the global default for that
field (SYNC_DEFAULT_* settings), field by field.
"""
from __future__ import annotations

import enum
import fnmatch
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from stocksync.config import settings

_SPLIT_RE = re.compile(r"[,，;\n\r]+")


class RuleKind(str, enum.Enum):
    EXCLUDE_WAREHOUSE = "exclude_warehouse"
    EXCLUDE_SKU_PREFIX = "exclude_sku_prefix"
    REQUIRE_CATEGORY = "require_category"
    REQUIRE_SKU_PATTERN = "require_sku_pattern"


EVALUATION_ORDER = (
    RuleKind.EXCLUDE_WAREHOUSE,
    RuleKind.EXCLUDE_SKU_PREFIX,
    RuleKind.REQUIRE_CATEGORY,
    RuleKind.REQUIRE_SKU_PATTERN,
)


def split_list(raw: str | Iterable[str] | None) -> Tuple[str, ...]:
    if not raw:
        return ()
    parts = _SPLIT_RE.split(raw) if isinstance(raw, str) else [str(p) for p in raw]
    return tuple(p.strip() for p in parts if p and p.strip())


@dataclass(frozen=True)
class FilterRule:
    kind: RuleKind
    values: Tuple[str, ...]

    def rejects(self, skus: Sequence[str], category: str, warehouse_id: str) -> bool:
        """`skus` are the lowered identifiers of one candidate (storefront SKU, ERP SKU)."""
        if self.kind is RuleKind.EXCLUDE_WAREHOUSE:
            wh = (warehouse_id or "").strip().lower()
            return bool(wh) and wh in self.values
        if self.kind is RuleKind.EXCLUDE_SKU_PREFIX:
            return any(s.startswith(p) for s in skus for p in self.values)
        if self.kind is RuleKind.REQUIRE_CATEGORY:
            return (category or "").strip().lower() not in self.values
        if self.kind is RuleKind.REQUIRE_SKU_PATTERN:
            return not any(_term_matches(t, s) for s in skus for t in self.values)
        raise ValueError(f"unknown rule kind {self.kind!r}")


def _term_matches(term: str, sku: str) -> bool:
    if "*" in term or "?" in term:
        return fnmatch.fnmatchcase(sku, term)
    return term in sku


def _candidate_skus(sku: str, erp_sku: str) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(s.strip().lower() for s in (sku, erp_sku) if s and s.strip()))


@dataclass(frozen=True)
class CompiledFilter:
    rules: Tuple[FilterRule, ...] = ()

    def evaluate(self, sku: str, category: str = "", warehouse_id: str = "",
                 erp_sku: str = "") -> Optional[RuleKind]:
        """The rule that puts the candidate out of scope, or None when in scope."""
        skus = _candidate_skus(sku, erp_sku)
        for rule in self.rules:
            if rule.rejects(skus, category, warehouse_id):
                return rule.kind
        return None

    def is_in_scope(self, sku: str, category: str = "", warehouse_id: str = "", erp_sku: str = "") -> bool:
        return self.evaluate(sku, category, warehouse_id, erp_sku) is None

    @property
    def is_empty(self) -> bool:
        return not self.rules


@dataclass(frozen=True)
class FilterDefaults:
    """Global filter values used where a site leaves a field empty."""
    sku_filter: str = ""
    exclude_sku_prefixes: str = ""
    category_filters: Tuple[str, ...] = ()
    exclude_warehouses: str = ""

    @classmethod
    def from_settings(cls) -> "FilterDefaults":
        return cls(
            sku_filter=settings.SYNC_DEFAULT_SKU_FILTER,
            exclude_sku_prefixes=settings.SYNC_DEFAULT_EXCLUDE_SKU_PREFIXES,
            category_filters=split_list(settings.SYNC_DEFAULT_CATEGORY_FILTERS),
            exclude_warehouses=settings.SYNC_DEFAULT_EXCLUDE_WAREHOUSES,
        )


NO_DEFAULTS = FilterDefaults()


def compile_filter(
    sku_filter: str | None = None,
    exclude_sku_prefixes: str | None = None,
    category_filters: Sequence[str] | None = None,
    exclude_warehouses: str | None = None,
) -> CompiledFilter:
    values = {
        RuleKind.EXCLUDE_WAREHOUSE: split_list(exclude_warehouses),
        RuleKind.EXCLUDE_SKU_PREFIX: split_list(exclude_sku_prefixes),
        RuleKind.REQUIRE_CATEGORY: split_list(category_filters),
        RuleKind.REQUIRE_SKU_PATTERN: split_list(sku_filter),
    }
    rules: List[FilterRule] = []
    for kind in EVALUATION_ORDER:
        vals = values[kind]
        if vals:
            # dedupe, keep order
            lowered = tuple(dict.fromkeys(v.lower() for v in vals))
            rules.append(FilterRule(kind, lowered))
    return CompiledFilter(tuple(rules))


def _or_default(value, default):
    return value if split_list(value) else default


def compile_site_filter(row, defaults: FilterDefaults = NO_DEFAULTS) -> CompiledFilter:
    """Compile a `SiteFilter` ORM row (None = site has no filter row) over the global defaults."""
    if row is None:
        return compile_filter(
            sku_filter=defaults.sku_filter,
            exclude_sku_prefixes=defaults.exclude_sku_prefixes,
            category_filters=defaults.category_filters,
            exclude_warehouses=defaults.exclude_warehouses,
        )
    return compile_filter(
        sku_filter=_or_default(row.sku_filter, defaults.sku_filter),
        exclude_sku_prefixes=_or_default(row.exclude_sku_prefixes, defaults.exclude_sku_prefixes),
        category_filters=_or_default(row.category_filters, defaults.category_filters),
        exclude_warehouses=_or_default(row.exclude_warehouses, defaults.exclude_warehouses),
    )
