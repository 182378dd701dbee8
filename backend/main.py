"""
Editor Payout Engine — FastAPI application.

Exposes the payout engine to the project, wallet and finance screens:

  Projects
    POST  /api/projects/{project_id}/unlock
    PATCH /api/projects/{project_id}/status        (COMPLETED triggers the unlock)

  Breakdowns
    POST  /api/projects/{project_id}/editors/{editor_id}/breakdown   compute + persist
    GET   /api/projects/{project_id}/editors/{editor_id}/breakdown   stored breakdown
    GET   /api/projects/{project_id}/editors/{editor_id}/preview     invitation range
    GET   /api/projects/{project_id}/editors/{editor_id}/projected   live projection

  Wallet / payout requests
    GET   /api/editors/{editor_id}/wallet
    GET   /api/editors/{editor_id}/payout-requests
    POST  /api/payout-requests
    GET   /api/payout-requests?status=REQUESTED
    GET   /api/payout-requests/stats
    POST  /api/payout-requests/{request_id}/approve | paid | reject

  Reports
    POST  /api/reports/payouts
    GET   /api/download/{filename}

Error handling:
  Every PayoutEngineError maps to its HTTP status with
  {"detail": {"status": "error", "code": ..., "message": ...}}.
"""

import os
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

import config
from database import SessionLocal, get_db, init_db
from models.db_models import PayoutRequestStatus
from models.schemas import (
    MarkPaidAction, PayoutBreakdown, PayoutPreview, PayoutRequestCreate,
    PayoutRequestOut, PendingPayoutStats, ProjectedEarnings, ProjectStatusResponse,
    ProjectStatusUpdate, RejectAction, ReportResponse, ReviewAction, UnlockResult, Wallet,
)
from services.errors import ConfigNotFound, InvalidInput, PayoutEngineError
from services.excel_export import generate_payout_report
from services.payout import PayoutComputer
from services.payout_requests import PayoutRequestWorkflow
from services.seed import seed_default_catalog
from services.unlock import UnlockCoordinator

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Editor Payout Engine",
    description="Computes project payouts and manages editor wallet withdrawals",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    init_db()
    if config.SEED_DEFAULT_CATALOG:
        with SessionLocal() as db:
            seed_default_catalog(db)
    os.makedirs(config.OUTPUT_DIR, exist_ok=True)


@app.exception_handler(PayoutEngineError)
async def payout_engine_error_handler(request: Request, exc: PayoutEngineError):
    if isinstance(exc, (ConfigNotFound, InvalidInput)):
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} refused: {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": {
                "status": "error",
                "code": exc.code,
                "message": exc.message,
            },
        },
    )


# ===========================================================================
# Projects — unlock trigger
# ===========================================================================

@app.post("/api/projects/{project_id}/unlock", response_model=UnlockResult)
def unlock_project(project_id: str, db: Session = Depends(get_db)):
    """Unlock payouts for a completed project. Safe to call repeatedly."""
    return UnlockCoordinator(db).unlock_with_retry(project_id)


@app.patch("/api/projects/{project_id}/status", response_model=ProjectStatusResponse)
def update_project_status(
    project_id: str,
    body: ProjectStatusUpdate,
    db: Session = Depends(get_db),
):
    return UnlockCoordinator(db).set_project_status(project_id, body.status)


# ===========================================================================
# Breakdowns
# ===========================================================================

@app.post(
    "/api/projects/{project_id}/editors/{editor_id}/breakdown",
    response_model=PayoutBreakdown,
)
def compute_breakdown(project_id: str, editor_id: str, db: Session = Depends(get_db)):
    return PayoutComputer(db).compute_breakdown(project_id, editor_id)


@app.get(
    "/api/projects/{project_id}/editors/{editor_id}/breakdown",
    response_model=PayoutBreakdown,
)
def get_breakdown(project_id: str, editor_id: str, db: Session = Depends(get_db)):
    return PayoutComputer(db).get_breakdown(project_id, editor_id)


@app.get(
    "/api/projects/{project_id}/editors/{editor_id}/preview",
    response_model=PayoutPreview,
)
def preview_payout(project_id: str, editor_id: str, db: Session = Depends(get_db)):
    return PayoutComputer(db).preview_payout(project_id, editor_id)


@app.get(
    "/api/projects/{project_id}/editors/{editor_id}/projected",
    response_model=ProjectedEarnings,
)
def projected_earnings(project_id: str, editor_id: str, db: Session = Depends(get_db)):
    return PayoutComputer(db).projected_earnings(project_id, editor_id)


# ===========================================================================
# Wallet / payout requests
# ===========================================================================

@app.get("/api/editors/{editor_id}/wallet", response_model=Wallet)
def get_wallet(editor_id: str, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).get_wallet(editor_id)


@app.get("/api/editors/{editor_id}/payout-requests", response_model=list[PayoutRequestOut])
def editor_payout_history(editor_id: str, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).editor_history(editor_id)


@app.post("/api/payout-requests", response_model=PayoutRequestOut, status_code=201)
def create_payout_request(body: PayoutRequestCreate, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).create_request(
        body.editor_id, body.amount, body.payout_method
    )


@app.get("/api/payout-requests", response_model=list[PayoutRequestOut])
def list_payout_requests(
    status: Optional[PayoutRequestStatus] = None,
    db: Session = Depends(get_db),
):
    return PayoutRequestWorkflow(db).list_requests(status)


@app.get("/api/payout-requests/stats", response_model=PendingPayoutStats)
def pending_payout_stats(db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).pending_stats()


@app.post("/api/payout-requests/{request_id}/approve", response_model=PayoutRequestOut)
def approve_payout_request(request_id: str, body: ReviewAction, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).approve(request_id, body.reviewer_id)


@app.post("/api/payout-requests/{request_id}/paid", response_model=PayoutRequestOut)
def mark_payout_request_paid(request_id: str, body: MarkPaidAction, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).mark_paid(request_id, body.reviewer_id, body.transaction_ref)


@app.post("/api/payout-requests/{request_id}/reject", response_model=PayoutRequestOut)
def reject_payout_request(request_id: str, body: RejectAction, db: Session = Depends(get_db)):
    return PayoutRequestWorkflow(db).reject(request_id, body.reviewer_id, body.reason)


# ===========================================================================
# Reports
# ===========================================================================

@app.post("/api/reports/payouts", response_model=ReportResponse)
def create_payout_report(db: Session = Depends(get_db)):
    """Workbook of pending withdrawals (bank layout) and unlocked earnings."""
    filepath, summary = generate_payout_report(db)
    filename = os.path.basename(filepath)
    logger.info(f"Payout report ready: {filename} {summary}")
    return ReportResponse(status="success", filename=filename, summary=summary)


@app.get("/api/download/{filename}")
async def download_report(filename: str):
    """
    Download a generated .xlsx report from the output directory.

    Returns 404 if the file doesn't exist.
    """
    file_path = os.path.join(config.OUTPUT_DIR, os.path.basename(filename))

    if not os.path.exists(file_path):
        raise HTTPException(
            status_code=404,
            detail={
                "status": "error",
                "code": "not_found",
                "message": f"Report not found: {filename}",
            },
        )

    return FileResponse(
        file_path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
