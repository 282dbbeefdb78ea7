"""Transform profiles: ordered text clean-up steps applied to model output."""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.language_model import LanguageModel
from app.models.transform import TransformProfile

logger = logging.getLogger(__name__)

STEP_TYPES = (
    "stripMarkupTags",
    "stripParagraphMarkers",
    "stripVerseNumbers",
    "stripHeadings",
    "regexReplace",
    "replaceMap",
    "collapseWhitespace",
    "trim",
)

_WHITESPACE = re.compile(r"\s+")
_GROUP_REFERENCE = re.compile(r"\$(\d+)")


def _strings(value: Any) -> List[str]:
    return [item for item in value if isinstance(item, str)] if isinstance(value, list) else []


def _compile(pattern: str, flags: int = 0) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        logger.warning(f"Skipping invalid transform pattern {pattern!r}: {e}")
        return None


def _strip_patterns(text: str, patterns: List[str]) -> str:
    for pattern in patterns:
        regex = _compile(pattern)
        if regex is not None:
            text = regex.sub("", text)
    return text


def _python_replacement(replacement: str) -> str:
    """Turn a ``$1`` style replacement into one ``re.sub`` reads literally."""
    return _GROUP_REFERENCE.sub(r"\\g<\1>", replacement.replace("\\", "\\\\"))


def apply_step(text: str, step: Dict[str, Any]) -> str:
    """Apply one transform step. Unknown step types leave the text unchanged."""
    params = step.get("params") or {}
    step_type = step.get("type")

    if step_type == "stripMarkupTags":
        for tag in _strings(params.get("tagNames")):
            text = re.sub(rf"</?{re.escape(tag)}\b[^>]*>", "", text, flags=re.IGNORECASE)
        return text
    if step_type == "stripParagraphMarkers":
        for marker in _strings(params.get("markers")):
            if marker:
                text = text.replace(marker, "")
        return text
    if step_type in ("stripVerseNumbers", "stripHeadings"):
        return _strip_patterns(text, _strings(params.get("patterns")))
    if step_type == "regexReplace":
        pattern = params.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            return text
        regex = _compile(pattern)
        if regex is None:
            return text
        replacement = params.get("replacement")
        return regex.sub(_python_replacement(replacement if isinstance(replacement, str) else ""), text)
    if step_type == "replaceMap":
        mapping = params.get("map")
        if not isinstance(mapping, dict):
            return text
        for key, value in mapping.items():
            if key and isinstance(value, str):
                text = text.replace(key, value)
        return text
    if step_type == "collapseWhitespace":
        return _WHITESPACE.sub(" ", text)
    if step_type == "trim":
        return text.strip()
    return text


def apply_profile(text: str, steps: List[Dict[str, Any]]) -> str:
    """
    Run text through the enabled steps of a profile in ``order``.

    Args:
        text: Text extracted from a model response
        steps: Step dicts with ``order``, ``type``, ``enabled`` and ``params``

    Returns:
        Transformed text
    """
    ordered = sorted(steps, key=lambda s: s.get("order", 0))
    for step in ordered:
        if step.get("enabled", True):
            text = apply_step(text, step)
    return text


def resolve_output_profile(db: Session, model: LanguageModel) -> Optional[TransformProfile]:
    """
    Find the output profile for a model.

    The model's own active ``model_output`` profile wins; otherwise the active
    default ``model_output`` profile with the lowest id is used.
    """
    if model.output_profile_id is not None:
        profile = (
            db.query(TransformProfile)
            .filter(
                TransformProfile.profile_id == model.output_profile_id,
                TransformProfile.scope == "model_output",
                TransformProfile.is_active.is_(True),
            )
            .first()
        )
        if profile:
            return profile

    return (
        db.query(TransformProfile)
        .filter(
            TransformProfile.scope == "model_output",
            TransformProfile.is_default.is_(True),
            TransformProfile.is_active.is_(True),
        )
        .order_by(TransformProfile.profile_id)
        .first()
    )
