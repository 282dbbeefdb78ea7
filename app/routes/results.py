"""Comparison result routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.canon import Verse
from app.models.result import ComparisonResult
from app.schemas.canon import VerseComparison, VerseResultEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/results", tags=["results"])


@router.get("/verse/{verse_id}", response_model=VerseComparison)
def compare_verse(
    verse_id: int,
    db: Session = Depends(get_db),
):
    """Latest verdict of every model that has recited this verse."""
    verse = db.query(Verse).filter(Verse.verse_id == verse_id).first()
    if not verse:
        raise HTTPException(status_code=404, detail="Verse not found")

    rows = (
        db.query(ComparisonResult)
        .filter(ComparisonResult.verse_id == verse_id)
        .order_by(ComparisonResult.evaluated_at.desc(), ComparisonResult.result_id.desc())
        .all()
    )

    # Newest row first, so the first seen per model is the latest
    latest = {}
    for row in rows:
        latest.setdefault(row.model_id, row)

    return VerseComparison(
        verse_id=verse.verse_id,
        reference=verse.reference,
        canonical_text=verse.text_processed,
        results=[
            VerseResultEntry(
                model_id=r.model_id,
                run_id=r.run_id,
                result_ref=r.result_ref,
                hash_match=r.hash_match,
                fidelity_score=r.fidelity_score,
                diff=r.diff,
                response_processed=r.response_processed,
                evaluated_at=r.evaluated_at,
            )
            for r in sorted(latest.values(), key=lambda r: r.model_id)
        ],
    )
