# stocksync/sync/pipeline.py
# ==========================================
# ERP → storefronts stock-status reconciliation pass
# ==========================================
#
# guard → begin batch → fetch ERP inventory + mapping → resolve net stock →
# per enabled site (concurrently): filter → lookup → decide → update →
# record site result → finish batch → release guard → notify.

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stocksync.config import settings
from stocksync.erp.h3yun_client import H3YunClient
from stocksync.models.run_log import add_run_entry
from stocksync.models.sync import BATCH_COMPLETED, BATCH_FAILED, Site
from stocksync.sites.site_store import list_sites, load_filters
from stocksync.sync.decision import Action, DEFAULT_POLICY, SyncPolicy, decide
from stocksync.sync.errors import FetchAborted, PersistenceFailure, StorefrontError
from stocksync.notify.wecom import PassNotifier
from stocksync.sync.filters import NO_DEFAULTS, CompiledFilter, FilterDefaults, compile_site_filter
from stocksync.sync.recorder import (
    DETAIL_FAILED,
    DETAIL_NOOP,
    DETAIL_SKIPPED,
    DETAIL_TO_INSTOCK,
    DETAIL_TO_OUTOFSTOCK,
    BatchRecorder,
    SiteTally,
)
from stocksync.sync.resolver import Resolution, resolve
from stocksync.sync.run_guard import RunGuard
from stocksync.woo.woocommerce import StorefrontClient

logger = logging.getLogger("uvicorn.error")


@dataclass
class PassOutcome:
    success: bool
    skipped: bool = False
    batch_id: Optional[str] = None
    stats: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    # per-site results for notifications; not part of the API payload
    site_tallies: List[SiteTally] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "batch_id": self.batch_id,
            "stats": dict(self.stats),
            "metrics": dict(self.metrics),
        }
        if self.skipped:
            out["skipped"] = True
        if self.error is not None:
            out["error"] = self.error
        return out


def empty_stats() -> Dict[str, int]:
    return {
        "total_checked": 0,
        "total_synced_to_instock": 0,
        "total_synced_to_outofstock": 0,
        "total_failed": 0,
        "total_skipped": 0,
        "total_unchanged": 0,
    }


def aggregate(tallies: List[SiteTally]) -> Dict[str, int]:
    stats = empty_stats()
    for t in tallies:
        stats["total_checked"] += t.total_checked
        stats["total_synced_to_instock"] += t.synced_to_instock
        stats["total_synced_to_outofstock"] += t.synced_to_outofstock
        stats["total_failed"] += t.failed
        stats["total_skipped"] += t.skipped
        stats["total_unchanged"] += t.unchanged
    return stats


class Reconciler:
    def __init__(
        self,
        guard: RunGuard,
        recorder: BatchRecorder,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        erp_factory: Callable[[], H3YunClient] = H3YunClient.from_settings,
        storefront_factory: Callable[[Site], StorefrontClient] = StorefrontClient.for_site,
        policy: SyncPolicy = DEFAULT_POLICY,
        site_concurrency: int = 4,
        pass_timeout: Optional[float] = None,
        filter_defaults: FilterDefaults = NO_DEFAULTS,
        notifier: Optional[PassNotifier] = None,
    ):
        self.guard = guard
        self.recorder = recorder
        self.sessionmaker = sessionmaker
        self.erp_factory = erp_factory
        self.storefront_factory = storefront_factory
        self.policy = policy
        self.site_concurrency = max(1, site_concurrency)
        self.pass_timeout = pass_timeout
        self.filter_defaults = filter_defaults
        self.notifier = notifier

    @classmethod
    def from_settings(cls, guard: RunGuard, sessionmaker: async_sessionmaker[AsyncSession]) -> "Reconciler":
        return cls(
            guard,
            BatchRecorder(sessionmaker, details_limit=settings.SYNC_DETAILS_LIMIT),
            sessionmaker,
            policy=SyncPolicy(
                sync_to_instock=settings.SYNC_TO_INSTOCK,
                sync_to_outofstock=settings.SYNC_TO_OUTOFSTOCK,
            ),
            site_concurrency=settings.SITE_SKU_CONCURRENCY,
            pass_timeout=settings.SYNC_PASS_TIMEOUT_SECONDS or None,
            filter_defaults=FilterDefaults.from_settings(),
            notifier=PassNotifier.from_settings(),
        )

    # ---- entry point ----

    async def run_pass(self, trigger: str = "manual") -> PassOutcome:
        if not self.guard.try_acquire():
            logger.info("[SYNC] a pass is already running; %s trigger skipped", trigger)
            add_run_entry("info", "pass", f"{trigger} trigger skipped: already running")
            return PassOutcome(success=True, skipped=True, stats=empty_stats(), error="already running")
        try:
            outcome = await self._run_with_deadline(trigger)
            self.guard.last_outcome = outcome.to_dict()
        except Exception as e:
            await self._notify(PassOutcome(success=False, error=f"pass crashed: {e}"))
            raise
        finally:
            self.guard.release()
        await self._notify(outcome)
        return outcome

    async def _notify(self, outcome: PassOutcome) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_pass(outcome)
        except Exception as e:
            logger.warning("[NOTIFY] pass notification failed: %s", e)

    async def _run_with_deadline(self, trigger: str) -> PassOutcome:
        batch_id = await self.recorder.begin(trigger=trigger)
        add_run_entry("info", "pass", f"{trigger} pass started", batch_id)
        try:
            if self.pass_timeout:
                return await asyncio.wait_for(self._execute(batch_id), timeout=self.pass_timeout)
            return await self._execute(batch_id)
        except asyncio.TimeoutError:
            reason = f"deadline exceeded after {self.pass_timeout:g}s"
            logger.error("[SYNC] batch %s: %s", batch_id, reason)
            add_run_entry("error", "pass", reason, batch_id)
            await self.recorder.finish(batch_id, BATCH_FAILED, error=reason)
            return PassOutcome(success=False, batch_id=batch_id, stats=empty_stats(), error=reason)
        except Exception as e:
            # leave no batch behind in `running`; the original error still propagates
            logger.error("[SYNC] batch %s crashed: %s", batch_id, e)
            add_run_entry("error", "pass", f"pass crashed: {e}", batch_id)
            try:
                await self.recorder.finish(batch_id, BATCH_FAILED, error=str(e))
            except PersistenceFailure as pe:
                logger.error("[SYNC] batch %s could not be marked failed: %s", batch_id, pe)
            raise

    async def _execute(self, batch_id: str) -> PassOutcome:
        started = time.monotonic()

        # 1) ERP; a partial inventory is never reconciled against
        try:
            async with self.erp_factory() as erp:
                inventory, rejected_inventory = await erp.fetch_inventory()
                mappings, rejected_mappings = await erp.fetch_mappings()
        except FetchAborted as e:
            logger.error("[SYNC] batch %s aborted: %s", batch_id, e)
            add_run_entry("error", "erp", str(e), batch_id)
            await self.recorder.finish(batch_id, BATCH_FAILED, error=str(e), stats=empty_stats())
            return PassOutcome(success=False, batch_id=batch_id, stats=empty_stats(), error=str(e))
        fetch_seconds = time.monotonic() - started

        # 2) net stock per storefront SKU
        resolution = resolve(inventory, mappings)

        # 3) enabled sites + their filters, loaded once for the pass
        try:
            async with self.sessionmaker() as session:
                sites = await list_sites(session, enabled_only=True)
                filter_rows = await load_filters(session, [s.id for s in sites])
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not load sites: {e}") from e
        compiled = {s.id: compile_site_filter(filter_rows.get(s.id), self.filter_defaults) for s in sites}
        await self.recorder.set_total_sites(batch_id, len(sites))
        add_run_entry(
            "info", "pass",
            f"ERP fetched in {fetch_seconds:.1f}s: {len(inventory)} inventory rows, "
            f"{len(resolution.skus)} storefront SKUs, {len(sites)} sites",
            batch_id,
        )

        # 4) fan out over sites; every branch yields a tally, none raises on its own
        results = await asyncio.gather(
            *(self._site_branch(batch_id, site, compiled[site.id], resolution) for site in sites),
            return_exceptions=True,
        )
        tallies: List[SiteTally] = []
        persistence_error: Optional[BaseException] = None
        for site, res in zip(sites, results):
            if isinstance(res, SiteTally):
                tallies.append(res)
            elif isinstance(res, PersistenceFailure):
                persistence_error = persistence_error or res
            elif isinstance(res, BaseException):
                raise res
        if persistence_error is not None:
            raise persistence_error

        stats = aggregate(tallies)
        metrics = {
            **resolution.metrics(),
            "inventory_rows": len(inventory),
            "mapping_rows": len(mappings),
            "rejected_inventory_rows": rejected_inventory,
            "rejected_mapping_rows": rejected_mappings,
            "sites": len(sites),
            "failed_sites": sum(1 for t in tallies if t.error),
            "fetch_seconds": round(fetch_seconds, 2),
            "total_seconds": round(time.monotonic() - started, 2),
        }
        await self.recorder.finish(batch_id, BATCH_COMPLETED, stats={**stats, "metrics": metrics})
        logger.info(
            "[SYNC] batch %s done: checked=%d instock+%d outofstock+%d failed=%d skipped=%d unchanged=%d",
            batch_id, stats["total_checked"], stats["total_synced_to_instock"],
            stats["total_synced_to_outofstock"], stats["total_failed"],
            stats["total_skipped"], stats["total_unchanged"],
        )
        add_run_entry("info", "pass", "pass completed", batch_id, **stats)
        return PassOutcome(success=True, batch_id=batch_id, stats=stats, metrics=metrics, site_tallies=tallies)

    # ---- per site ----

    async def _site_branch(self, batch_id: str, site: Site, cfilter: CompiledFilter,
                           resolution: Resolution) -> SiteTally:
        tally = await self.sync_site(site, cfilter, resolution)
        await self.recorder.record_site_result(batch_id, tally)
        level = "warning" if tally.error or tally.failed else "info"
        add_run_entry(
            level, "site",
            f"{site.name}: instock+{tally.synced_to_instock} outofstock+{tally.synced_to_outofstock} "
            f"failed {tally.failed} skipped {tally.skipped}" + (f" ({tally.error})" if tally.error else ""),
            batch_id,
        )
        return tally

    async def sync_site(self, site: Site, cfilter: CompiledFilter, resolution: Resolution) -> SiteTally:
        """One site's SKU loop. Never raises; a crash is reported on the tally."""
        tally = SiteTally(site_id=site.id, site_name=site.name)
        try:
            plan: List[Tuple[str, Optional[int], Optional[str]]] = []
            for sku in sorted(resolution.skus):
                resolved = resolution.skus[sku]
                in_scope = [
                    c for c in resolved.contributions
                    if cfilter.is_in_scope(sku, c.category, c.warehouse_id, c.erp_sku)
                ]
                if not in_scope:
                    first = resolved.contributions[0]
                    rule = cfilter.evaluate(sku, first.category, first.warehouse_id, first.erp_sku)
                    plan.append((sku, None, rule.value if rule else "filtered"))
                    continue
                # stock held in an excluded warehouse does not count for this site
                plan.append((sku, sum(c.net_stock for c in in_scope), None))

            candidates = [(sku, stock) for sku, stock, _ in plan if stock is not None]
            outcomes: Dict[str, Tuple[str, Optional[str]]] = {}
            if candidates:
                sem = asyncio.Semaphore(self.site_concurrency)
                async with self.storefront_factory(site) as wc:
                    async def _worker(sku: str, stock: int):
                        async with sem:
                            return sku, await self._sync_sku(wc, site, sku, stock)
                    for sku, outcome in await asyncio.gather(*(_worker(s, n) for s, n in candidates)):
                        outcomes[sku] = outcome

            for sku, stock, reason in plan:
                if stock is None:
                    tally.add(sku, DETAIL_SKIPPED, reason=reason)
                else:
                    action, error = outcomes[sku]
                    tally.add(sku, action, error=error)
        except Exception as e:
            logger.exception("[SYNC] site %s crashed", site.name)
            tally.error = f"{type(e).__name__}: {e}"
        return tally

    async def _sync_sku(self, wc: StorefrontClient, site: Site, sku: str, stock: int) -> Tuple[str, Optional[str]]:
        try:
            product = await wc.find_product(sku)
            decision = decide(stock, product.get("stock_status"), self.policy)
            if decision.action is Action.NOOP:
                return DETAIL_NOOP, None
            await wc.set_stock_status(product, decision.target_status)
        except StorefrontError as e:
            logger.warning("[WC] %s %s: %s", site.name, sku, e.detail())
            return DETAIL_FAILED, e.detail()
        except Exception as e:
            logger.exception("[WC] %s %s: unexpected error", site.name, sku)
            return DETAIL_FAILED, f"unexpected: {type(e).__name__}: {e}"
        if decision.action is Action.MARK_INSTOCK:
            return DETAIL_TO_INSTOCK, None
        return DETAIL_TO_OUTOFSTOCK, None
