"""Canonical content routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.canon import Bible, Book, Chapter
from app.schemas.canon import BibleSummary, ChapterUpsert, ChapterUpsertResponse
from app.services.canon import upsert_chapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/canon", tags=["canon"])


@router.post("/chapters", response_model=ChapterUpsertResponse)
def upsert_canon_chapter(
    data: ChapterUpsert,
    db: Session = Depends(get_db),
):
    """
    Upsert a canonical chapter with its verses.

    Args:
        data: Chapter, its book and bible, and the verse texts
        db: Database session

    Returns:
        ChapterUpsertResponse with the verse count and whether it already existed
    """
    chapter, existed = upsert_chapter(db, data)
    return ChapterUpsertResponse(
        chapter_id=chapter.chapter_id,
        verse_count=len(data.verses),
        existed=existed,
    )


@router.get("/bibles", response_model=List[BibleSummary])
def list_bibles(db: Session = Depends(get_db)):
    """List bibles with their book and chapter counts."""
    summaries = []
    for bible in db.query(Bible).order_by(Bible.bible_id).all():
        book_count = db.query(func.count(Book.book_id)).filter(
            Book.bible_id == bible.bible_id
        ).scalar()
        chapter_count = db.query(func.count(Chapter.chapter_id)).filter(
            Chapter.bible_id == bible.bible_id
        ).scalar()
        summaries.append(
            BibleSummary(
                bible_id=bible.bible_id,
                name=bible.name,
                language=bible.language,
                book_count=book_count,
                chapter_count=chapter_count,
            )
        )
    return summaries
