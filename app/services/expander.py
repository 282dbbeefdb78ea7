"""Expansion of a run scope into an ordered list of canonical targets."""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.errors import InvalidScope
from app.models.canon import Book, Chapter, Verse

logger = logging.getLogger(__name__)

SCOPE_KEYS = {
    "bible": "bibleId",
    "book": "bookId",
    "chapter": "chapterId",
    "verse": "verseId",
}

TARGET_TYPES = {
    "MODEL_CHAPTER": "chapter",
    "MODEL_VERSE": "verse",
}


def target_type_for(run_type: str) -> str:
    """Map a run type to the kind of target its items refer to."""
    try:
        return TARGET_TYPES[run_type]
    except KeyError:
        raise InvalidScope(f"Unsupported run type: {run_type}")


def _scope_id(scope: str, scope_ids: Dict[str, int]) -> int:
    key = SCOPE_KEYS.get(scope)
    if key is None:
        raise InvalidScope(f"Unsupported scope: {scope}")

    value = (scope_ids or {}).get(key)
    if value is None:
        raise InvalidScope(f"{key} is required for {scope} scope.")
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidScope(f"{key} must be an integer.")
    return value


def _chapter_targets(db: Session, scope: str, scope_id: int) -> List[int]:
    query = (
        db.query(Chapter.chapter_id)
        .join(Book, Book.book_id == Chapter.book_id)
    )
    if scope == "bible":
        query = query.filter(Chapter.bible_id == scope_id)
    elif scope == "book":
        query = query.filter(Chapter.book_id == scope_id)
    elif scope == "chapter":
        query = query.filter(Chapter.chapter_id == scope_id)
    else:
        raise InvalidScope(f"Unsupported scope for chapter runs: {scope}")

    rows = query.order_by(Book.position, Chapter.chapter_number, Chapter.chapter_id).all()
    return [row.chapter_id for row in rows]


def _verse_targets(db: Session, scope: str, scope_id: int) -> List[int]:
    query = (
        db.query(Verse.verse_id)
        .join(Book, Book.book_id == Verse.book_id)
    )
    if scope == "bible":
        query = query.filter(Verse.bible_id == scope_id)
    elif scope == "book":
        query = query.filter(Verse.book_id == scope_id)
    elif scope == "chapter":
        query = query.filter(Verse.chapter_id == scope_id)
    else:
        query = query.filter(Verse.verse_id == scope_id)

    rows = query.order_by(
        Book.position, Verse.chapter_number, Verse.verse_number, Verse.verse_id
    ).all()
    return [row.verse_id for row in rows]


def expand(
    db: Session,
    run_type: str,
    scope: str,
    scope_ids: Dict[str, int],
    limit: Optional[int] = None,
    skip: Optional[int] = None,
) -> List[int]:
    """
    Resolve a scope into target ids in canonical order.

    Args:
        db: Database session
        run_type: 'MODEL_CHAPTER' or 'MODEL_VERSE'
        scope: 'bible', 'book', 'chapter' or 'verse'
        scope_ids: Scope identifiers, e.g. {"bibleId": 1001}
        limit: Maximum number of targets (None means unbounded)
        skip: Number of leading targets to drop (None means 0)

    Returns:
        Ordered, deduplicated target ids; empty when skip is past the end

    Raises:
        InvalidScope: If the scope is malformed or resolves to no content
    """
    if limit is not None and limit < 0:
        raise InvalidScope("limit must be a non-negative integer.")
    if skip is not None and skip < 0:
        raise InvalidScope("skip must be a non-negative integer.")

    target_type = target_type_for(run_type)
    scope_id = _scope_id(scope, scope_ids)

    if target_type == "chapter":
        resolved = _chapter_targets(db, scope, scope_id)
    else:
        resolved = _verse_targets(db, scope, scope_id)

    if not resolved:
        raise InvalidScope(f"No canonical {target_type}s found for {SCOPE_KEYS[scope]}={scope_id}.")

    seen = set()
    ordered = []
    for target_id in resolved:
        if target_id not in seen:
            seen.add(target_id)
            ordered.append(target_id)

    start = skip or 0
    end = start + limit if limit is not None else None
    targets = ordered[start:end]

    logger.info(
        f"Expanded {scope}={scope_id} into {len(targets)} of {len(ordered)} {target_type} targets"
    )
    return targets
