"""Ingest of canonical chapters and their verses."""

import logging
from typing import Tuple

from sqlalchemy.orm import Session

from app.models.canon import Bible, Book, Chapter, Verse
from app.schemas.canon import ChapterUpsert
from app.services.comparator import normalize_text, sha256

logger = logging.getLogger(__name__)


def upsert_chapter(db: Session, data: ChapterUpsert) -> Tuple[Chapter, bool]:
    """
    Upsert a chapter: insert if new, keep as is if its text is unchanged.

    The bible and book rows are created on first sight. When the chapter
    exists with different text, its verses are replaced.

    Args:
        db: Database session
        data: Chapter with its verses

    Returns:
        (chapter, existed) where existed is True when nothing changed
    """
    verses = sorted(data.verses, key=lambda v: v.verse_number)
    processed = [normalize_text(v.text) for v in verses]
    chapter_text = " ".join(processed)
    chapter_hash = sha256(chapter_text)

    bible = db.query(Bible).filter(Bible.bible_id == data.bible_id).first()
    if not bible:
        bible = Bible(
            bible_id=data.bible_id,
            name=data.bible_name or f"Bible {data.bible_id}",
            language=data.language,
        )
        db.add(bible)
        logger.info(f"Created bible {data.bible_id}")

    book = db.query(Book).filter(Book.book_id == data.book_id).first()
    if not book:
        book = Book(
            book_id=data.book_id,
            bible_id=data.bible_id,
            name=data.book_name,
            position=data.book_position,
        )
        db.add(book)
        logger.info(f"Created book {data.book_name} ({data.book_id})")

    reference = f"{data.book_name} {data.chapter_number}"
    chapter = db.query(Chapter).filter(Chapter.chapter_id == data.chapter_id).first()
    if chapter and chapter.hash_processed == chapter_hash:
        logger.info(f"Chapter {reference} unchanged")
        return chapter, True

    if chapter:
        db.query(Verse).filter(Verse.chapter_id == chapter.chapter_id).delete(
            synchronize_session=False
        )
        chapter.reference = reference
        chapter.chapter_number = data.chapter_number
        chapter.text_processed = chapter_text
        chapter.hash_processed = chapter_hash
        logger.info(f"Replacing verses of chapter {reference}")
    else:
        chapter = Chapter(
            chapter_id=data.chapter_id,
            bible_id=data.bible_id,
            book_id=data.book_id,
            chapter_number=data.chapter_number,
            reference=reference,
            text_processed=chapter_text,
            hash_processed=chapter_hash,
        )
        db.add(chapter)
    db.flush()

    for verse, text_processed in zip(verses, processed):
        db.add(
            Verse(
                verse_id=verse.verse_id,
                chapter_id=data.chapter_id,
                bible_id=data.bible_id,
                book_id=data.book_id,
                chapter_number=data.chapter_number,
                verse_number=verse.verse_number,
                reference=f"{reference}:{verse.verse_number}",
                text_raw=verse.text,
                text_processed=text_processed,
                hash_processed=sha256(text_processed),
            )
        )

    db.commit()
    logger.info(f"Stored chapter {reference} with {len(verses)} verses")
    return chapter, False
