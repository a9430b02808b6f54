# stocksync/sites/site_store.py
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.models.sync import Site, SiteFilter
from stocksync.sync.filters import split_list


def site_to_dict(site: Site) -> Dict[str, Any]:
    # api_secret never leaves the service
    return {
        "id": site.id,
        "name": site.name,
        "base_url": site.base_url,
        "api_key": site.api_key,
        "enabled": site.enabled,
    }


def filter_to_dict(f: SiteFilter) -> Dict[str, Any]:
    return {
        "site_id": f.site_id,
        "sku_filter": f.sku_filter or "",
        "exclude_sku_prefixes": f.exclude_sku_prefixes or "",
        "category_filters": list(f.category_filters or []),
        "exclude_warehouses": f.exclude_warehouses or "",
    }


# -------- Sites --------

async def list_sites(session: AsyncSession, enabled_only: bool = False) -> List[Site]:
    q = select(Site).order_by(Site.name)
    if enabled_only:
        q = q.where(Site.enabled.is_(True))
    return list((await session.execute(q)).scalars().all())

async def get_site(session: AsyncSession, site_id: str) -> Optional[Site]:
    return await session.get(Site, site_id)

async def create_site(session: AsyncSession, *, name: str, base_url: str, api_key: str,
                      api_secret: str, enabled: bool = True) -> Site:
    site = Site(
        name=name.strip(),
        base_url=base_url.strip().rstrip("/"),
        api_key=api_key.strip(),
        api_secret=api_secret.strip(),
        enabled=enabled,
    )
    session.add(site)
    await session.commit()
    return site

async def update_site(session: AsyncSession, site_id: str, **changes: Any) -> Optional[Site]:
    site = await session.get(Site, site_id)
    if site is None:
        return None
    for key in ("name", "base_url", "api_key", "api_secret", "enabled"):
        if key in changes and changes[key] is not None:
            val = changes[key]
            if isinstance(val, str):
                val = val.strip()
                if key == "base_url":
                    val = val.rstrip("/")
            setattr(site, key, val)
    await session.commit()
    return site

async def delete_site(session: AsyncSession, site_id: str) -> bool:
    site = await session.get(Site, site_id)
    if site is None:
        return False
    f = await get_site_filter(session, site_id)
    if f is not None:
        await session.delete(f)
    await session.delete(site)
    await session.commit()
    return True


# -------- Site filters (one optional row per site, upserted by site_id) --------

async def get_site_filter(session: AsyncSession, site_id: str) -> Optional[SiteFilter]:
    q = select(SiteFilter).where(SiteFilter.site_id == site_id)
    return (await session.execute(q)).scalars().first()

async def upsert_site_filter(
    session: AsyncSession,
    site_id: str,
    *,
    sku_filter: Optional[str] = None,
    exclude_sku_prefixes: Optional[str] = None,
    category_filters: Optional[Iterable[str]] = None,
    exclude_warehouses: Optional[str] = None,
) -> SiteFilter:
    row = await get_site_filter(session, site_id)
    if row is None:
        row = SiteFilter(site_id=site_id)
        session.add(row)
    row.sku_filter = (sku_filter or "").strip()
    row.exclude_sku_prefixes = (exclude_sku_prefixes or "").strip()
    row.category_filters = list(split_list(category_filters))
    row.exclude_warehouses = (exclude_warehouses or "").strip()
    await session.commit()
    return row

async def load_filters(session: AsyncSession, site_ids: Iterable[str]) -> Dict[str, SiteFilter]:
    ids = list(site_ids)
    if not ids:
        return {}
    q = select(SiteFilter).where(SiteFilter.site_id.in_(ids))
    return {f.site_id: f for f in (await session.execute(q)).scalars().all()}
