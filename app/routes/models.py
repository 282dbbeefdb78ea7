"""Model registry and run launch routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import RunError
from app.models.language_model import LanguageModel
from app.models.transform import TransformProfile
from app.routes.runs import get_coordinator, start_response
from app.schemas.canon import ModelCreate, ModelResponse
from app.schemas.run import (
    BatchRunRequest,
    BatchRunResponse,
    BatchRunResult,
    BibleRunRequest,
    BookRunRequest,
    ChapterRunRequest,
    RunStartResponse,
    VerseRunRequest,
)
from app.services.coordinator import RunCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["models"])


def to_response(model: LanguageModel) -> ModelResponse:
    return ModelResponse(
        model_id=model.model_id,
        provider=model.provider,
        display_name=model.display_name,
        model_name=model.model_name,
        output_profile_id=model.output_profile_id,
        is_active=model.is_active,
        created_at=model.created_at,
    )


@router.post("", response_model=ModelResponse)
def register_model(
    data: ModelCreate,
    db: Session = Depends(get_db),
):
    """Register a model, or update its settings if the id is already known."""
    if data.output_profile_id is not None and not (
        db.query(TransformProfile).filter(TransformProfile.profile_id == data.output_profile_id).first()
    ):
        raise HTTPException(status_code=404, detail=f"Transform profile {data.output_profile_id} not found")

    model = db.query(LanguageModel).filter(LanguageModel.model_id == data.model_id).first()
    if model:
        logger.info(f"Updating model {data.model_id}")
    else:
        model = LanguageModel(model_id=data.model_id)
        db.add(model)
        logger.info(f"Registering model {data.model_id} ({data.provider})")

    model.provider = data.provider
    model.display_name = data.display_name
    model.model_name = data.model_name
    model.api_config = data.api_config or {}
    model.output_profile_id = data.output_profile_id
    model.is_active = data.is_active
    db.commit()
    db.refresh(model)

    return to_response(model)


@router.get("", response_model=List[ModelResponse])
def list_models(
    active: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    """List registered models."""
    query = db.query(LanguageModel)
    if active is not None:
        query = query.filter(LanguageModel.is_active.is_(active))
    return [to_response(m) for m in query.order_by(LanguageModel.model_id).all()]


@router.post("/run", response_model=BatchRunResponse)
def run_batch(
    data: BatchRunRequest,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """
    Start chapter runs for several models at once.

    Each run is started independently; an error in one is reported in its
    result entry and does not stop the others.
    """
    results = []
    for command in data.to_commands():
        try:
            outcome = coordinator.start_run(command)
        except RunError as e:
            logger.warning(f"Batch run for model {command.model_id} failed: {e.message}")
            results.append(BatchRunResult(model_id=command.model_id, ok=False, error=e.to_dict()))
            continue
        results.append(
            BatchRunResult(
                model_id=command.model_id,
                run_id=outcome.run_id,
                ok=outcome.ok,
                status=outcome.status,
                metrics=outcome.metrics,
            )
        )

    succeeded = sum(1 for r in results if r.ok)
    return BatchRunResponse(
        ok=succeeded == len(results),
        results=results,
        summary={"total": len(results), "succeeded": succeeded, "failed": len(results) - succeeded},
    )


@router.post("/{model_id}/run/bible", response_model=RunStartResponse)
def run_bible(
    model_id: int,
    data: Optional[BibleRunRequest] = Body(None),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Evaluate a model chapter by chapter over a whole bible."""
    data = data or BibleRunRequest()
    return start_response(coordinator.start_run(data.to_command(model_id)))


@router.post("/{model_id}/run/book", response_model=RunStartResponse)
def run_book(
    model_id: int,
    data: BookRunRequest,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Evaluate a model chapter by chapter over one book."""
    return start_response(coordinator.start_run(data.to_command(model_id)))


@router.post("/{model_id}/run/chapter", response_model=RunStartResponse)
def run_chapter(
    model_id: int,
    data: ChapterRunRequest,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Evaluate a model on one chapter."""
    return start_response(coordinator.start_run(data.to_command(model_id)))


@router.post("/{model_id}/run/verse", response_model=RunStartResponse)
def run_verses(
    model_id: int,
    data: VerseRunRequest,
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    """Evaluate a model verse by verse over any scope."""
    return start_response(coordinator.start_run(data.to_command(model_id)))
