"""Tests for model response parsing."""

import json

import pytest

from app.errors import ItemDispatchFailure
from app.services.verse_parser import (
    map_to_canonical,
    parse_chapter_response,
    parse_verse_lines,
    parse_verse_response,
    strip_code_fences,
)


def test_verse_json():
    """Test verse text is taken from the verseText field."""
    raw = json.dumps({"book": "Genesis", "chapter": "1", "verseNumber": "1", "verseText": " In the beginning "})

    assert parse_verse_response(raw) == "In the beginning"


def test_verse_in_code_fence():
    """Test a fenced JSON answer is unwrapped."""
    raw = '```json\n{"verseText": "Jesus wept."}\n```'

    assert parse_verse_response(raw) == "Jesus wept."


def test_verse_plain_text():
    """Test a plain text answer is used as is."""
    assert parse_verse_response("Jesus wept.") == "Jesus wept."


def test_verse_missing_field():
    """Test JSON without verseText fails the item."""
    with pytest.raises(ItemDispatchFailure, match="Missing verseText"):
        parse_verse_response('{"text": "Jesus wept."}')


def test_empty_response():
    """Test an empty response fails the item."""
    with pytest.raises(ItemDispatchFailure, match="Empty response"):
        parse_verse_response("   ")
    with pytest.raises(ItemDispatchFailure, match="Empty response"):
        parse_chapter_response("")


def test_chapter_json():
    """Test chapter verses are keyed by their number."""
    raw = json.dumps({
        "verses": [
            {"verseNumber": "1", "verseText": "First."},
            {"verseNumber": 2, "verseText": "Second."},
            {"verseNumber": "x", "verseText": "Ignored."},
            {"verseNumber": "1", "verseText": "Duplicate."},
        ]
    })

    assert parse_chapter_response(raw) == {1: "First.", 2: "Second."}


def test_chapter_missing_verses():
    """Test chapter JSON without a verses array fails the item."""
    with pytest.raises(ItemDispatchFailure, match="Missing verses array"):
        parse_chapter_response('{"book": "Genesis"}')


def test_chapter_plain_text_fallback():
    """Test line parsing when the response is not JSON."""
    raw = "Genesis 1\n1 In the beginning\n2. And the earth\n[3] And God said"

    assert parse_chapter_response(raw) == {
        1: "In the beginning",
        2: "And the earth",
        3: "And God said",
    }


def test_chapter_plain_text_without_verses():
    """Test prose without verse numbers fails the item."""
    with pytest.raises(ItemDispatchFailure, match="No verses found"):
        parse_chapter_response("I cannot recite that chapter.")


def test_line_formats_and_continuations():
    """Test the supported verse number formats and wrapped lines."""
    text = "Verse 1: In the beginning\nGod created\nv2 And the earth\n3: And God said\n2 Duplicate"

    assert parse_verse_lines(text) == {
        1: "In the beginning God created",
        2: "And the earth",
        3: "And God said",
    }


def test_strip_code_fences():
    """Test fences with and without a language tag."""
    assert strip_code_fences("```\nabc\n```") == "abc"
    assert strip_code_fences("```json\n{}\n```") == "{}"
    assert strip_code_fences("plain") == "plain"


def test_map_to_canonical():
    """Test missing canonical verses are unmatched and extras ignored."""
    mapped = map_to_canonical({1: "One", 3: "Three", 9: "Extra"}, [1, 2, 3])

    assert [(m.verse_number, m.candidate, m.matched) for m in mapped] == [
        (1, "One", True),
        (2, "", False),
        (3, "Three", True),
    ]
