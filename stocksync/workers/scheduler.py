# ---------------------------
# stocksync/workers/scheduler.py
# ---------------------------
import asyncio
import logging

from stocksync.models.run_log import add_run_entry
from stocksync.sync.pipeline import Reconciler
from stocksync.sync.run_guard import RunGuard

logger = logging.getLogger("uvicorn.error")


async def scheduler_loop(
    reconciler: Reconciler,
    guard: RunGuard,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """
    Periodic trigger: one `auto` pass per interval until stop_event is set.
    Overlap with a manual pass is handled by the run guard (the tick is skipped).
    """
    logger.info("[SCHEDULER] started (every %.0fs)", interval_seconds)
    guard.schedule_next(interval_seconds)
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        try:
            outcome = await reconciler.run_pass(trigger="auto")
            if outcome.skipped:
                logger.info("[SCHEDULER] tick skipped: %s", outcome.error)
            elif not outcome.success:
                logger.warning("[SCHEDULER] pass %s failed: %s", outcome.batch_id, outcome.error)
        except Exception as e:
            logger.error("[SCHEDULER] pass crashed: %s", e, exc_info=e)
            add_run_entry("error", "scheduler", f"pass crashed: {e}")
        finally:
            guard.schedule_next(interval_seconds)
    logger.info("[SCHEDULER] stopped")
