from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stocksync.config import settings


def _to_int(v: Any) -> Optional[int]:
    # H3Yun hands numbers back as ints, floats or strings ("12", "12.0", "")
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    s = str(v).strip()
    if not s:
        return None
    try:
        return int(float(s))
    except OverflowError as e:
        raise ValueError(f"not a finite number: {s}") from e


class InventoryRecord(BaseModel):
    """One ERP-side product row, field codes already resolved to names."""
    model_config = ConfigDict(frozen=True)

    erp_sku: str = Field(..., min_length=1)
    category: str = ""
    warehouse_id: str = ""
    sellable_stock: Optional[int] = None
    available_stock: Optional[int] = None
    pending_outbound: Optional[int] = None
    shortage_queued: Optional[int] = None

    @field_validator("sellable_stock", "available_stock", "pending_outbound", "shortage_queued", mode="before")
    @classmethod
    def _coerce_int(cls, v):
        return _to_int(v)

    @field_validator("erp_sku", "category", "warehouse_id", mode="before")
    @classmethod
    def _coerce_str(cls, v):
        return "" if v is None else str(v).strip()


class SkuMappingRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    storefront_sku: str = Field(..., min_length=1)
    erp_sku: str = Field(..., min_length=1)

    @field_validator("storefront_sku", "erp_sku", mode="before")
    @classmethod
    def _coerce_str(cls, v):
        return "" if v is None else str(v).strip()


@dataclass(frozen=True)
class ErpFieldMap:
    sku: str = "F0000001"
    category: str = "F0000003"
    warehouse: str = "F0000007"
    sellable: str = "F0000083"
    available: str = "F0000030"
    pending_outbound: str = ""
    shortage: str = ""
    mapping_storefront_sku: str = "F0000001"
    mapping_erp_sku: str = "F0000002"

    @classmethod
    def from_settings(cls) -> "ErpFieldMap":
        return cls(
            sku=settings.ERP_FIELD_SKU,
            category=settings.ERP_FIELD_CATEGORY,
            warehouse=settings.ERP_FIELD_WAREHOUSE,
            sellable=settings.ERP_FIELD_SELLABLE,
            available=settings.ERP_FIELD_AVAILABLE,
            pending_outbound=settings.ERP_FIELD_PENDING_OUTBOUND,
            shortage=settings.ERP_FIELD_SHORTAGE,
            mapping_storefront_sku=settings.ERP_MAPPING_FIELD_STOREFRONT_SKU,
            mapping_erp_sku=settings.ERP_MAPPING_FIELD_ERP_SKU,
        )


def _pick(obj: Dict[str, Any], code: str) -> Any:
    return obj.get(code) if code else None


def inventory_from_biz_object(obj: Dict[str, Any], fields: ErpFieldMap) -> Optional[InventoryRecord]:
    """Returns None for rows without an SKU or with unreadable stock numbers."""
    try:
        return InventoryRecord(
            erp_sku=_pick(obj, fields.sku),
            category=_pick(obj, fields.category),
            warehouse_id=_pick(obj, fields.warehouse),
            sellable_stock=_pick(obj, fields.sellable),
            available_stock=_pick(obj, fields.available),
            pending_outbound=_pick(obj, fields.pending_outbound),
            shortage_queued=_pick(obj, fields.shortage),
        )
    except ValidationError:
        return None


def mapping_from_biz_object(obj: Dict[str, Any], fields: ErpFieldMap) -> Optional[SkuMappingRecord]:
    try:
        return SkuMappingRecord(
            storefront_sku=_pick(obj, fields.mapping_storefront_sku),
            erp_sku=_pick(obj, fields.mapping_erp_sku),
        )
    except ValidationError:
        return None
