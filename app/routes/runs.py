"""Run routes."""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db, get_session_factory
from app.errors import RunBusy, RunNotFound
from app.models.run import Run
from app.schemas.run import (
    CancelResponse,
    Pagination,
    RunDetail,
    RunListResponse,
    RunProgress,
    RunStartResponse,
    RunSummary,
)
from app.services.coordinator import RunCoordinator, RunOutcome
from app.services.ledger import RunState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


def get_coordinator(session_factory=Depends(get_session_factory)) -> RunCoordinator:
    """FastAPI dependency returning a coordinator bound to the application database."""
    return RunCoordinator(session_factory)


def start_response(outcome: RunOutcome) -> RunStartResponse:
    return RunStartResponse(
        ok=outcome.ok,
        data=RunSummary(
            run_id=outcome.run_id,
            run_type=outcome.run_type,
            status=outcome.status,
            metrics=outcome.metrics,
        ),
        idempotent=outcome.idempotent,
    )


def run_detail(state: RunState) -> RunDetail:
    return RunDetail(
        run_id=state.run_id,
        model_id=state.model_id,
        run_type=state.run_type,
        scope=state.scope,
        scope_ids=state.scope_ids,
        limit=state.limit,
        skip=state.skip,
        status=state.status,
        cancel_requested=state.cancel_requested,
        metrics=state.metrics,
        error_summary=state.error_summary,
        created_by=state.created_by,
        created_at=state.created_at,
        started_at=state.started_at,
        completed_at=state.completed_at,
        duration_ms=state.duration_ms,
    )


@router.get("", response_model=RunListResponse)
def list_runs(
    run_type: Optional[str] = None,
    status: Optional[str] = None,
    model_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.RUNS_PAGE_SIZE, ge=1),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """List runs newest first, with optional filters."""
    limit = min(limit, settings.RUNS_MAX_PAGE_SIZE)
    runs, total = coordinator.runs.list_runs(
        run_type=run_type,
        status=status,
        model_id=model_id,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return RunListResponse(
        data=[run_detail(r) for r in runs],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.get("/{run_id}", response_model=RunDetail)
def get_run(
    run_id: str,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Get a run with its metrics."""
    return run_detail(coordinator.get_run(run_id))


@router.get("/{run_id}/items", response_model=RunProgress)
def get_run_items(
    run_id: str,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Poll run status and per-item progress."""
    return coordinator.get_progress(run_id)


@router.post("/{run_id}/cancel", response_model=CancelResponse)
def cancel_run(
    run_id: str,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Request cancellation of a running run."""
    return coordinator.request_cancel(run_id)


@router.post("/{run_id}/resume", response_model=RunStartResponse)
def resume_run(
    run_id: str,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Dispatch the pending items of a run."""
    return start_response(coordinator.resume_run(run_id))


@router.post("/{run_id}/retry-failed", response_model=RunStartResponse)
def retry_failed(
    run_id: str,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Re-dispatch only the failed items of a run."""
    return start_response(coordinator.retry_failed_items(run_id))


@router.delete("/{run_id}")
def delete_run(
    run_id: str,
    db: Session = Depends(get_db),
):
    """Delete a run and its items. Comparison results are kept."""
    run = db.query(Run).filter(Run.run_id == run_id).first()
    if not run:
        raise RunNotFound(f"Run {run_id} not found.")
    if run.lock_token:
        raise RunBusy(f"Run {run_id} is being dispatched and cannot be deleted.")

    db.delete(run)
    db.commit()

    logger.info(f"Deleted run {run_id}")

    return {"message": "Run deleted"}
