from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from stocksync.models.sync import BATCH_COMPLETED, BATCH_FAILED, BATCH_RUNNING, SyncBatch
from stocksync.sync.recorder import BatchRecorder, SiteTally


def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _tally(n_details):
    t = SiteTally(site_id="s1", site_name="Shop One")
    for i in range(n_details):
        t.add(f"W{i}", "to_instock")
    t.add("W-skip", "skipped", reason="exclude_sku_prefix")
    t.add("W-bad", "failed", error="not_found: no product with this SKU")
    return t


def test_tally_counts_skips_outside_total_checked():
    t = _tally(2)
    assert t.counters() == {
        "total_checked": 3,
        "synced_to_instock": 2,
        "synced_to_outofstock": 0,
        "unchanged": 0,
        "failed": 1,
        "skipped": 1,
    }
    assert t.details[-2:] == [
        {"sku": "W-bad", "action": "failed", "error": "not_found: no product with this SKU"},
        {"sku": "W-skip", "action": "skipped", "reason": "exclude_sku_prefix"},
    ]
    assert t.skipped_by_reason == {"exclude_sku_prefix": 1}
    with pytest.raises(ValueError):
        t.add("W", "bogus")

@pytest.mark.asyncio
async def test_batch_lifecycle(recorder):
    batch_id = await recorder.begin(total_sites=2, trigger="auto")
    batch = await recorder.get_batch(batch_id)
    assert batch["status"] == BATCH_RUNNING
    assert batch["trigger"] == "auto"

    assert await recorder.finish(batch_id, BATCH_COMPLETED, stats={"total_checked": 3}) is True
    batch = await recorder.get_batch(batch_id)
    assert batch["status"] == BATCH_COMPLETED
    assert batch["stats"] == {"total_checked": 3}
    assert batch["completed_at"] is not None

@pytest.mark.asyncio
async def test_terminal_batch_is_never_rewritten(recorder):
    batch_id = await recorder.begin()
    await recorder.finish(batch_id, BATCH_FAILED, error="ERP down")
    assert await recorder.finish(batch_id, BATCH_COMPLETED, stats={}) is False
    batch = await recorder.get_batch(batch_id)
    assert batch["status"] == BATCH_FAILED
    assert batch["error_message"] == "ERP down"

@pytest.mark.asyncio
async def test_finish_rejects_non_terminal_status(recorder):
    batch_id = await recorder.begin()
    with pytest.raises(ValueError):
        await recorder.finish(batch_id, BATCH_RUNNING)

@pytest.mark.asyncio
async def test_details_are_capped_but_counters_are_not(session_factory):
    recorder = BatchRecorder(session_factory, details_limit=3)
    batch_id = await recorder.begin(total_sites=1)
    await recorder.record_site_result(batch_id, _tally(10))

    [result] = await recorder.list_site_results(batch_id)
    assert result["synced_to_instock"] == 10
    assert result["total_checked"] == 11
    assert result["skipped"] == 1
    assert len(result["details"]) == 3
    assert result["details_truncated"] is True
    assert result["status"] == BATCH_COMPLETED
    assert result["skipped_by_reason"] == {"exclude_sku_prefix": 1}

@pytest.mark.asyncio
async def test_site_error_is_recorded_as_failed(recorder):
    batch_id = await recorder.begin()
    t = SiteTally(site_id="s2", site_name="Shop Two", error="ConnectError: refused")
    await recorder.record_site_result(batch_id, t)
    [result] = await recorder.list_site_results(batch_id, include_details=False)
    assert result["status"] == BATCH_FAILED
    assert result["error_message"] == "ConnectError: refused"
    assert "details" not in result

@pytest.mark.asyncio
async def test_fail_stale_batches(recorder, session_factory):
    old_id = await recorder.begin()
    fresh_id = await recorder.begin()
    async with session_factory() as session:
        await session.execute(
            update(SyncBatch)
            .where(SyncBatch.id == old_id)
            .values(created_at=_now() - timedelta(hours=5))
        )
        await session.commit()

    assert await recorder.fail_stale_batches(120) == 1
    old = await recorder.get_batch(old_id)
    assert old["status"] == BATCH_FAILED
    assert "stale" in old["error_message"]
    assert (await recorder.get_batch(fresh_id))["status"] == BATCH_RUNNING

@pytest.mark.asyncio
async def test_list_batches_newest_first_with_status_filter(recorder, session_factory):
    ids = [await recorder.begin() for _ in range(3)]
    async with session_factory() as session:
        for age, batch_id in enumerate(reversed(ids)):
            await session.execute(
                update(SyncBatch)
                .where(SyncBatch.id == batch_id)
                .values(created_at=_now() - timedelta(minutes=age))
            )
        await session.commit()
    await recorder.finish(ids[0], BATCH_COMPLETED, stats={})

    rows = await recorder.list_batches()
    assert [r["id"] for r in rows] == list(reversed(ids))
    running = await recorder.list_batches(status=BATCH_RUNNING)
    assert {r["id"] for r in running} == set(ids[1:])
    assert len(await recorder.list_batches(limit=1, offset=1)) == 1

@pytest.mark.asyncio
async def test_details_cap_keeps_failures_ahead_of_skips(session_factory):
    recorder = BatchRecorder(session_factory, details_limit=3)
    t = SiteTally(site_id="s1", site_name="Shop One")
    for sku in ("A1", "A2", "A3", "A4", "A5"):
        t.add(sku, "skipped", reason="exclude_sku_prefix")
    t.add("Z1", "failed", error="update_failed: HTTP 403")
    batch_id = await recorder.begin(total_sites=1)
    await recorder.record_site_result(batch_id, t)

    [result] = await recorder.list_site_results(batch_id)
    assert result["details"][0] == {"sku": "Z1", "action": "failed", "error": "update_failed: HTTP 403"}
    assert [d["sku"] for d in result["details"][1:]] == ["A1", "A2"]
    assert result["details_truncated"] is True
    assert result["skipped"] == 5
    assert result["skipped_by_reason"] == {"exclude_sku_prefix": 5}
