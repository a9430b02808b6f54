# stocksync/sites/site_api.py
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.db import get_session
from stocksync.sites.site_store import (
    site_to_dict, filter_to_dict,
    list_sites, get_site, create_site, update_site, delete_site,
    get_site_filter, upsert_site_filter,
)

router = APIRouter(prefix="/api/sites", tags=["Sites"])
filters_router = APIRouter(prefix="/api/sync/site-filters", tags=["Site Filters"])


class SiteCreate(BaseModel):
    name: str = Field(min_length=1)
    base_url: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    api_secret: str = Field(min_length=1)
    enabled: bool = True


class SiteUpdate(BaseModel):
    name: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    enabled: Optional[bool] = None


class SiteFilterUpsert(BaseModel):
    site_id: str
    sku_filter: str = ""
    exclude_sku_prefixes: str = ""
    category_filters: List[str] = Field(default_factory=list)
    exclude_warehouses: str = ""


# -------- Sites --------

@router.get("")
async def get_sites(enabled_only: bool = Query(False), session: AsyncSession = Depends(get_session)):
    sites = await list_sites(session, enabled_only=enabled_only)
    return {"success": True, "data": [site_to_dict(s) for s in sites]}

@router.post("")
async def post_site(payload: SiteCreate = Body(...), session: AsyncSession = Depends(get_session)):
    site = await create_site(session, **payload.model_dump())
    return {"success": True, "data": site_to_dict(site)}

@router.patch("/{site_id}")
async def patch_site(site_id: str, payload: SiteUpdate = Body(...), session: AsyncSession = Depends(get_session)):
    site = await update_site(session, site_id, **payload.model_dump(exclude_unset=True))
    if site is None:
        raise HTTPException(status_code=404, detail="Site not found")
    return {"success": True, "data": site_to_dict(site)}

@router.delete("/{site_id}")
async def remove_site(site_id: str, session: AsyncSession = Depends(get_session)):
    if not await delete_site(session, site_id):
        raise HTTPException(status_code=404, detail="Site not found")
    return {"success": True}


# -------- Site filters --------

@filters_router.get("")
async def get_filter(site_id: str = Query(...), session: AsyncSession = Depends(get_session)):
    """A site without a filter row gets the empty (everything in scope) filter back."""
    if await get_site(session, site_id) is None:
        raise HTTPException(status_code=404, detail="Site not found")
    row = await get_site_filter(session, site_id)
    if row is None:
        data = {
            "site_id": site_id,
            "sku_filter": "",
            "exclude_sku_prefixes": "",
            "category_filters": [],
            "exclude_warehouses": "",
        }
    else:
        data = filter_to_dict(row)
    return {"success": True, "data": data}

@filters_router.post("")
async def post_filter(payload: SiteFilterUpsert = Body(...), session: AsyncSession = Depends(get_session)):
    if await get_site(session, payload.site_id) is None:
        raise HTTPException(status_code=404, detail="Site not found")
    row = await upsert_site_filter(
        session,
        payload.site_id,
        sku_filter=payload.sku_filter,
        exclude_sku_prefixes=payload.exclude_sku_prefixes,
        category_filters=payload.category_filters,
        exclude_warehouses=payload.exclude_warehouses,
    )
    return {"success": True, "data": filter_to_dict(row)}
