# stocksync/sync/recorder.py
"""
Batch audit trail: one sync_batches row per pass, one sync_site_results row
per enabled site per pass.

Counters are always the true totals; only the stored `details` list is cut
to `details_limit` entries to bound row size.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stocksync.models.sync import (
    BATCH_COMPLETED,
    BATCH_FAILED,
    BATCH_RUNNING,
    TERMINAL_BATCH_STATUSES,
    SyncBatch,
    SyncSiteResult,
)
from stocksync.sync.errors import PersistenceFailure

logger = logging.getLogger("uvicorn.error")

# details[].action values
DETAIL_SKIPPED = "skipped"
DETAIL_NOOP = "noop"
DETAIL_TO_INSTOCK = "to_instock"
DETAIL_TO_OUTOFSTOCK = "to_outofstock"
DETAIL_FAILED = "failed"


@dataclass
class SiteTally:
    """
    In-memory result of one site's SKU loop; nothing here is capped.

    `details` lists checked SKUs (updates, noops, failures) before filter
    skips, each group in the order it was added, so a details cap drops
    skips first. `skipped_by_reason` keeps the full skip breakdown.
    """
    site_id: str
    site_name: str
    total_checked: int = 0
    synced_to_instock: int = 0
    synced_to_outofstock: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped: int = 0
    skipped_by_reason: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    _checked: List[Dict[str, Any]] = field(default_factory=list, init=False, repr=False)
    _skips: List[Dict[str, Any]] = field(default_factory=list, init=False, repr=False)

    def add(self, sku: str, action: str, error: Optional[str] = None, reason: Optional[str] = None) -> None:
        entry: Dict[str, Any] = {"sku": sku, "action": action}
        if error:
            entry["error"] = error
        if reason:
            entry["reason"] = reason

        if action == DETAIL_SKIPPED:
            self.skipped += 1
            key = reason or "filtered"
            self.skipped_by_reason[key] = self.skipped_by_reason.get(key, 0) + 1
            self._skips.append(entry)
            return

        # everything that got past the site filter was checked
        if action == DETAIL_NOOP:
            self.unchanged += 1
        elif action == DETAIL_TO_INSTOCK:
            self.synced_to_instock += 1
        elif action == DETAIL_TO_OUTOFSTOCK:
            self.synced_to_outofstock += 1
        elif action == DETAIL_FAILED:
            self.failed += 1
        else:
            raise ValueError(f"unknown detail action {action!r}")
        self.total_checked += 1
        self._checked.append(entry)

    @property
    def details(self) -> List[Dict[str, Any]]:
        return self._checked + self._skips

    @property
    def changed_skus(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {DETAIL_TO_INSTOCK: [], DETAIL_TO_OUTOFSTOCK: []}
        for d in self._checked:
            if d["action"] in out:
                out[d["action"]].append(d["sku"])
        return out

    @property
    def failures(self) -> List[Dict[str, Any]]:
        return [d for d in self._checked if d["action"] == DETAIL_FAILED]

    @property
    def status(self) -> str:
        return BATCH_FAILED if self.error else BATCH_COMPLETED

    def counters(self) -> Dict[str, int]:
        return {
            "total_checked": self.total_checked,
            "synced_to_instock": self.synced_to_instock,
            "synced_to_outofstock": self.synced_to_outofstock,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def batch_to_dict(b: SyncBatch) -> Dict[str, Any]:
    return {
        "id": b.id,
        "status": b.status,
        "trigger": b.trigger,
        "total_sites": b.total_sites,
        "stats": b.stats or {},
        "error_message": b.error_message,
        "created_at": _iso(b.created_at),
        "completed_at": _iso(b.completed_at),
    }


def site_result_to_dict(r: SyncSiteResult, include_details: bool = True) -> Dict[str, Any]:
    out = {
        "id": r.id,
        "batch_id": r.batch_id,
        "site_id": r.site_id,
        "site_name": r.site_name,
        "status": r.status,
        "total_checked": r.total_checked,
        "synced_to_instock": r.synced_to_instock,
        "synced_to_outofstock": r.synced_to_outofstock,
        "unchanged": r.unchanged,
        "failed": r.failed,
        "skipped": r.skipped,
        "skipped_by_reason": r.skipped_by_reason or {},
        "details_truncated": r.details_truncated,
        "error_message": r.error_message,
        "created_at": _iso(r.created_at),
    }
    if include_details:
        out["details"] = r.details or []
    return out


class BatchRecorder:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], details_limit: int = 500):
        self._sessionmaker = sessionmaker
        self.details_limit = max(0, details_limit)

    async def begin(self, total_sites: int = 0, trigger: str = "manual") -> str:
        try:
            async with self._sessionmaker() as session:
                batch = SyncBatch(status=BATCH_RUNNING, total_sites=total_sites, trigger=trigger, stats={})
                session.add(batch)
                await session.commit()
                logger.info("[SYNC] batch %s started (%s)", batch.id, trigger)
                return batch.id
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not create sync batch: {e}") from e

    async def set_total_sites(self, batch_id: str, total_sites: int) -> None:
        try:
            async with self._sessionmaker() as session:
                await session.execute(
                    update(SyncBatch)
                    .where(SyncBatch.id == batch_id, SyncBatch.status == BATCH_RUNNING)
                    .values(total_sites=total_sites)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not update batch {batch_id}: {e}") from e

    async def record_site_result(self, batch_id: str, tally: SiteTally) -> int:
        details = tally.details
        truncated = len(details) > self.details_limit
        if truncated:
            details = details[: self.details_limit]
        try:
            async with self._sessionmaker() as session:
                row = SyncSiteResult(
                    batch_id=batch_id,
                    site_id=tally.site_id,
                    site_name=tally.site_name,
                    status=tally.status,
                    details=list(details),
                    details_truncated=truncated,
                    skipped_by_reason=dict(tally.skipped_by_reason),
                    error_message=tally.error,
                    **tally.counters(),
                )
                session.add(row)
                await session.commit()
                return row.id
        except SQLAlchemyError as e:
            raise PersistenceFailure(
                f"could not record result of site {tally.site_name} for batch {batch_id}: {e}"
            ) from e

    async def finish(
        self,
        batch_id: str,
        status: str,
        *,
        stats: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a running batch to completed/failed. A batch already terminal is left untouched."""
        if status not in TERMINAL_BATCH_STATUSES:
            raise ValueError(f"not a terminal batch status: {status!r}")
        try:
            async with self._sessionmaker() as session:
                values: Dict[str, Any] = {"status": status, "completed_at": _utcnow(), "error_message": error}
                if stats is not None:
                    values["stats"] = stats
                res = await session.execute(
                    update(SyncBatch)
                    .where(SyncBatch.id == batch_id, SyncBatch.status == BATCH_RUNNING)
                    .values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not finish batch {batch_id}: {e}") from e
        if not res.rowcount:
            logger.warning("[SYNC] batch %s is not running; left as is", batch_id)
            return False
        logger.info("[SYNC] batch %s → %s", batch_id, status)
        return True

    async def fail_stale_batches(self, older_than_minutes: int) -> int:
        """Mark batches stuck in `running` (e.g. the process died mid-pass) as failed."""
        cutoff = _utcnow() - timedelta(minutes=older_than_minutes)
        try:
            async with self._sessionmaker() as session:
                res = await session.execute(
                    update(SyncBatch)
                    .where(SyncBatch.status == BATCH_RUNNING, SyncBatch.created_at < cutoff)
                    .values(
                        status=BATCH_FAILED,
                        completed_at=_utcnow(),
                        error_message=f"stale: still running after {older_than_minutes} minutes",
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not clean up stale batches: {e}") from e
        count = res.rowcount or 0
        if count:
            logger.warning("[SYNC] marked %d stale batches as failed", count)
        return count

    # ---- Read model ----

    async def list_batches(self, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        async with self._sessionmaker() as session:
            q = select(SyncBatch).order_by(SyncBatch.created_at.desc())
            if status:
                q = q.where(SyncBatch.status == status)
            rows = (await session.execute(q.limit(limit).offset(offset))).scalars().all()
            return [batch_to_dict(b) for b in rows]

    async def get_batch(self, batch_id: str) -> Optional[Dict[str, Any]]:
        async with self._sessionmaker() as session:
            b = await session.get(SyncBatch, batch_id)
            return batch_to_dict(b) if b else None

    async def list_site_results(self, batch_id: str, include_details: bool = True) -> List[Dict[str, Any]]:
        async with self._sessionmaker() as session:
            q = select(SyncSiteResult).where(SyncSiteResult.batch_id == batch_id).order_by(SyncSiteResult.id)
            rows = (await session.execute(q)).scalars().all()
            return [site_result_to_dict(r, include_details) for r in rows]
