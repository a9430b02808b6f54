#=================================================================
# stocksync/main_app.py
# FastAPI application entry-point.
#=================================================================

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stocksync import logging_filters
from stocksync.config import settings
from stocksync.db import dispose_engine, get_sessionmaker, init_db
from stocksync.routes import router as api_router
from stocksync.routes import verify_admin
from stocksync.sites.site_api import filters_router as site_filters_router
from stocksync.sites.site_api import router as sites_router
from stocksync.sync.errors import PersistenceFailure
from stocksync.sync.pipeline import Reconciler
from stocksync.sync.run_guard import RunGuard
from stocksync.workers.scheduler import scheduler_loop

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()


# ---- Lifecycle: DB, run guard, reconciler, scheduler ----
@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    guard = RunGuard()
    reconciler = Reconciler.from_settings(guard, get_sessionmaker())
    try:
        await reconciler.recorder.fail_stale_batches(settings.SYNC_STALE_BATCH_MINUTES)
    except PersistenceFailure as e:
        logger.error("[SYNC] stale batch cleanup failed: %s", e)

    app.state.run_guard = guard
    app.state.recorder = reconciler.recorder
    app.state.reconciler = reconciler

    stop = asyncio.Event()
    task: asyncio.Task | None = None
    if settings.AUTO_SYNC_ENABLED:
        interval = max(1, settings.AUTO_SYNC_INTERVAL_MINUTES) * 60
        task = asyncio.create_task(scheduler_loop(reconciler, guard, interval, stop))
    try:
        yield
    finally:
        stop.set()
        if task:
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                task.cancel()
        await dispose_engine()


# --- FastAPI instance ---
app = FastAPI(
    title="H3Yun WooCommerce Stock Sync",
    description="Reconciles WooCommerce stock status with H3Yun ERP inventory.",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(api_router)                # /api/sync/*, /api/erp/*
app.include_router(sites_router, dependencies=[Depends(verify_admin)])         # /api/sites
app.include_router(site_filters_router, dependencies=[Depends(verify_admin)])  # /api/sync/site-filters

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "H3Yun WooCommerce Stock Sync"}

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "detail": f"Sync failed: {str(exc)}"},
    )
