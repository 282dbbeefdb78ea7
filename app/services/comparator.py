"""Fidelity scoring of model output against canonical text."""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Dict

from rapidfuzz.distance import Levenshtein

from app.errors import ComparatorFailure

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ComparisonScore:
    """Outcome of comparing one candidate text with its canonical text."""

    hash_match: bool
    fidelity_score: float
    diff: Dict[str, int] = field(default_factory=dict)


def sha256(text: str) -> str:
    """Hash text using SHA256."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_text(text: str) -> str:
    """Collapse whitespace and trim, matching how canonical text is processed."""
    return _WHITESPACE.sub(" ", text).strip()


def edit_stats(source: str, target: str) -> Dict[str, int]:
    """
    Count edit operations turning source into target.

    Returns:
        Dict with distance, substitutions, omissions (deleted from source)
        and additions (inserted into target)
    """
    counts = {"substitutions": 0, "omissions": 0, "additions": 0}
    for op in Levenshtein.editops(source, target):
        if op.tag == "replace":
            counts["substitutions"] += 1
        elif op.tag == "delete":
            counts["omissions"] += 1
        elif op.tag == "insert":
            counts["additions"] += 1
    counts["distance"] = counts["substitutions"] + counts["omissions"] + counts["additions"]
    return counts


def score(canonical: str, candidate: str, canonical_hash: str = None) -> ComparisonScore:
    """
    Score a candidate against canonical text.

    Args:
        canonical: Canonical (already processed) text
        candidate: Model output for the same target
        canonical_hash: Stored hash of the canonical text, computed if absent

    Returns:
        ComparisonScore with fidelity in [0, 1]
    """
    try:
        processed = normalize_text(candidate)
        expected_hash = canonical_hash or sha256(canonical)
        stats = edit_stats(canonical, processed)
    except (TypeError, AttributeError) as e:
        raise ComparatorFailure(f"Comparison failed: {e}") from e

    max_length = max(len(canonical), len(processed))
    ratio = 1.0 if max_length == 0 else max(0.0, 1 - stats["distance"] / max_length)

    return ComparisonScore(
        hash_match=sha256(processed) == expected_hash,
        fidelity_score=round(ratio, 4),
        diff={
            "substitutions": stats["substitutions"],
            "omissions": stats["omissions"],
            "additions": stats["additions"],
            "transpositions": 0,
        },
    )
