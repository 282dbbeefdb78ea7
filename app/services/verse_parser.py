"""Parsing of model responses into candidate verse text."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.errors import ItemDispatchFailure

logger = logging.getLogger(__name__)

# "1 In the beginning", "1. In the beginning", "[1] ...", "Verse 1: ...", "v1 ...", "1: ..."
VERSE_PATTERNS = [
    re.compile(r"^\[(\d{1,3})\]\s*(.+)$"),
    re.compile(r"^(?:verse\s*|v)(\d{1,3})[:\s]\s*(.+)$", re.IGNORECASE),
    re.compile(r"^(\d{1,3}):\s*(.+)$"),
    re.compile(r"^(\d{1,3})[.\s]\s*(.+)$"),
]


@dataclass
class MappedVerse:
    """A canonical verse paired with the candidate text extracted for it."""

    verse_number: int
    candidate: str
    matched: bool


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    stripped = text.strip()
    if stripped.startswith("```json"):
        stripped = stripped[7:]
    elif stripped.startswith("```"):
        stripped = stripped[3:]
    if stripped.endswith("```"):
        stripped = stripped[:-3]
    return stripped.strip()


def parse_verse_lines(text: str) -> Dict[int, str]:
    """
    Parse plain-text output into verses keyed by verse number.

    Lines without a verse number are appended to the preceding verse. The
    first occurrence of a duplicated verse number wins.
    """
    verses: Dict[int, str] = {}
    current: Optional[int] = None

    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = line.strip()
        if not line:
            continue

        for pattern in VERSE_PATTERNS:
            match = pattern.match(line)
            if match:
                number = int(match.group(1))
                if number in verses:
                    logger.warning(f"Duplicate verse number {number} in model output")
                    current = None
                else:
                    verses[number] = match.group(2).strip()
                    current = number
                break
        else:
            if current is not None:
                verses[current] = f"{verses[current]} {line}"

    return verses


def parse_verse_response(raw: str) -> str:
    """Extract verse text from a single-verse response."""
    if not raw.strip():
        raise ItemDispatchFailure("Empty response from provider.")

    body = strip_code_fences(raw)
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        # Plain text answer
        return body

    if not isinstance(parsed, dict) or not isinstance(parsed.get("verseText"), str):
        raise ItemDispatchFailure("Missing verseText field")
    return parsed["verseText"].strip()


def parse_chapter_response(raw: str) -> Dict[int, str]:
    """Extract verses keyed by verse number from a chapter response."""
    if not raw.strip():
        raise ItemDispatchFailure("Empty response from provider.")

    body = strip_code_fences(raw)
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        verses = parse_verse_lines(body)
        if not verses:
            raise ItemDispatchFailure("No verses found in model output")
        return verses

    if not isinstance(parsed, dict) or not isinstance(parsed.get("verses"), list):
        raise ItemDispatchFailure("Missing verses array")

    verses = {}
    for entry in parsed["verses"]:
        if not isinstance(entry, dict):
            continue
        try:
            number = int(str(entry.get("verseNumber", "")).strip())
        except ValueError:
            continue
        text = entry.get("verseText")
        if isinstance(text, str) and number not in verses:
            verses[number] = text.strip()
    return verses


def map_to_canonical(parsed: Dict[int, str], verse_numbers: List[int]) -> List[MappedVerse]:
    """Pair every canonical verse number with its candidate text; missing ones are unmatched."""
    mapped = []
    for number in verse_numbers:
        if number in parsed:
            mapped.append(MappedVerse(verse_number=number, candidate=parsed[number], matched=True))
        else:
            mapped.append(MappedVerse(verse_number=number, candidate="", matched=False))

    extra = sorted(set(parsed) - set(verse_numbers))
    if extra:
        logger.info(f"Ignoring {len(extra)} verses not in canon: {extra[:10]}")
    return mapped
