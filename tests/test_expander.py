"""Tests for scope expansion."""

import pytest

from app.errors import InvalidScope
from app.services.expander import expand, target_type_for
from tests.seed import BIBLE_ID, CHAPTERS_IN_ORDER, VERSES_IN_ORDER


def test_bible_chapters_in_canonical_order(test_db, canon):
    """Test chapters follow book position, not insertion order."""
    targets = expand(test_db, "MODEL_CHAPTER", "bible", {"bibleId": BIBLE_ID})

    assert targets == CHAPTERS_IN_ORDER


def test_expansion_is_deterministic(test_db, canon):
    """Test repeated expansion of the same scope gives the same list."""
    first = expand(test_db, "MODEL_VERSE", "bible", {"bibleId": BIBLE_ID})
    second = expand(test_db, "MODEL_VERSE", "bible", {"bibleId": BIBLE_ID})

    assert first == second == VERSES_IN_ORDER


def test_book_and_chapter_scopes(test_db, canon):
    """Test narrower scopes."""
    assert expand(test_db, "MODEL_CHAPTER", "book", {"bookId": 2}) == [201, 202]
    assert expand(test_db, "MODEL_CHAPTER", "chapter", {"chapterId": 102}) == [102]
    assert expand(test_db, "MODEL_VERSE", "chapter", {"chapterId": 202}) == [202001, 202002]
    assert expand(test_db, "MODEL_VERSE", "verse", {"verseId": 101003}) == [101003]


def test_pages_are_disjoint(test_db, canon):
    """Test skip/limit windows partition the ordered targets."""
    scope_ids = {"bibleId": BIBLE_ID}
    first = expand(test_db, "MODEL_VERSE", "bible", scope_ids, limit=10, skip=0)
    second = expand(test_db, "MODEL_VERSE", "bible", scope_ids, limit=10, skip=10)

    assert len(first) == 10
    assert not set(first) & set(second)
    assert first + second == VERSES_IN_ORDER


def test_zero_limit_and_skip_past_end(test_db, canon):
    """Test empty windows are not errors."""
    assert expand(test_db, "MODEL_CHAPTER", "bible", {"bibleId": BIBLE_ID}, limit=0) == []
    assert expand(test_db, "MODEL_CHAPTER", "bible", {"bibleId": BIBLE_ID}, skip=50) == []


@pytest.mark.parametrize(
    "run_type, scope, scope_ids",
    [
        ("MODEL_CHAPTER", "bible", {}),
        ("MODEL_CHAPTER", "bible", {"bibleId": "1001"}),
        ("MODEL_CHAPTER", "bible", {"bibleId": True}),
        ("MODEL_CHAPTER", "testament", {"bibleId": BIBLE_ID}),
        ("MODEL_CHAPTER", "verse", {"verseId": 101001}),
        ("MODEL_BOOK", "bible", {"bibleId": BIBLE_ID}),
        ("MODEL_CHAPTER", "book", {"bookId": 999}),
    ],
)
def test_invalid_scopes(test_db, canon, run_type, scope, scope_ids):
    """Test malformed or empty scopes raise InvalidScope."""
    with pytest.raises(InvalidScope):
        expand(test_db, run_type, scope, scope_ids)


def test_negative_window(test_db, canon):
    """Test negative limit or skip is rejected."""
    with pytest.raises(InvalidScope):
        expand(test_db, "MODEL_CHAPTER", "bible", {"bibleId": BIBLE_ID}, limit=-1)
    with pytest.raises(InvalidScope):
        expand(test_db, "MODEL_CHAPTER", "bible", {"bibleId": BIBLE_ID}, skip=-1)


def test_target_type_for():
    """Test run types map to target types."""
    assert target_type_for("MODEL_CHAPTER") == "chapter"
    assert target_type_for("MODEL_VERSE") == "verse"
