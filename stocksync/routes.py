#=======================================================================================
# stocksync/routes.py
# FastAPI routes for the ERP → WooCommerce stock-status reconciliation.
#
# ✅ All endpoints live under /api/* and require HTTP Basic (admin)
#
# IMPORTANT: In main_app.py, include with NO extra prefix to avoid /api/api duplication:
#   from stocksync.routes import router as api_router
#   app.include_router(api_router)   # <-- no prefix here
#=======================================================================================

import secrets
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from stocksync.config import settings
from stocksync.erp.h3yun_client import H3YunClient
from stocksync.models.run_log import add_run_entry, get_run_log
from stocksync.models.sync import BATCH_COMPLETED, BATCH_FAILED, BATCH_RUNNING
from stocksync.sync.pipeline import Reconciler
from stocksync.sync.recorder import BatchRecorder
from stocksync.sync.run_guard import RunGuard

logger = logging.getLogger("uvicorn.error")

# ---------------------------
# HTTP Basic (admin)
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

router = APIRouter(prefix="/api", tags=["Sync API"], dependencies=[Depends(verify_admin)])

# ---------------------------
# Collaborators built by the app lifespan
# ---------------------------
def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler

def get_recorder(request: Request) -> BatchRecorder:
    return request.app.state.recorder

def get_guard(request: Request) -> RunGuard:
    return request.app.state.run_guard

# ---------------------------
# Reconciliation
# ---------------------------
@router.post("/sync/run")
async def api_sync_run(reconciler: Reconciler = Depends(get_reconciler)):
    """
    Runs one reconciliation pass and waits for it.
    A pass already in progress is not an error: → { success: true, skipped: true }.
    """
    add_run_entry("info", "api", "manual pass requested")
    outcome = await reconciler.run_pass(trigger="manual")
    return outcome.to_dict()

@router.get("/sync/status")
async def api_sync_status(guard: RunGuard = Depends(get_guard)):
    return {"success": True, "data": guard.snapshot()}

@router.get("/sync/batches")
async def api_sync_batches(
    status_: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    recorder: BatchRecorder = Depends(get_recorder),
):
    if status_ and status_ not in (BATCH_RUNNING, BATCH_COMPLETED, BATCH_FAILED):
        raise HTTPException(status_code=400, detail=f"Unknown batch status '{status_}'")
    rows = await recorder.list_batches(status=status_, limit=limit, offset=offset)
    return {"success": True, "data": rows}

@router.get("/sync/batches/{batch_id}")
async def api_sync_batch(
    batch_id: str,
    include_details: bool = Query(True),
    recorder: BatchRecorder = Depends(get_recorder),
):
    batch = await recorder.get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    batch["sites"] = await recorder.list_site_results(batch_id, include_details=include_details)
    return {"success": True, "data": batch}

@router.get("/sync/logs")
async def api_sync_logs(limit: int = Query(200, ge=1, le=1000), batch_id: Optional[str] = Query(None)):
    return {"success": True, "data": get_run_log(limit=limit, batch_id=batch_id)}

@router.post("/sync/cleanup")
async def api_sync_cleanup(
    older_than_minutes: Optional[int] = Query(None, ge=1),
    recorder: BatchRecorder = Depends(get_recorder),
    guard: RunGuard = Depends(get_guard),
):
    """Marks batches stuck in `running` as failed. Refused while a pass is in flight."""
    if guard.is_running:
        raise HTTPException(status_code=409, detail="A sync pass is running")
    minutes = older_than_minutes or settings.SYNC_STALE_BATCH_MINUTES
    count = await recorder.fail_stale_batches(minutes)
    add_run_entry("info", "api", f"stale batch cleanup: {count} marked failed")
    return {"success": True, "cleaned": count}

# ---------------------------
# ERP utilities
# ---------------------------
@router.get("/erp/ping")
async def api_erp_ping():
    async with H3YunClient.from_settings() as erp:
        return await erp.ping()
