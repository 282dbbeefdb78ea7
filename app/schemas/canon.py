"""Canonical content and model registry schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.services.transforms import STEP_TYPES


class VerseIn(BaseModel):
    """A canonical verse as ingested."""

    verse_id: int
    verse_number: int = Field(..., ge=1)
    text: str


class ChapterUpsert(BaseModel):
    """Schema for upserting a canonical chapter with its verses."""

    bible_id: int
    bible_name: Optional[str] = None
    language: Optional[str] = None
    book_id: int
    book_name: str
    book_position: int = Field(..., ge=0)
    chapter_id: int
    chapter_number: int = Field(..., ge=1)
    verses: List[VerseIn] = Field(..., min_length=1)


class ChapterUpsertResponse(BaseModel):
    chapter_id: int
    verse_count: int
    existed: bool


class BibleSummary(BaseModel):
    bible_id: int
    name: str
    language: Optional[str] = None
    book_count: int
    chapter_count: int


class ModelCreate(BaseModel):
    """Schema for registering a model."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: int
    provider: str = "mock"
    display_name: str
    model_name: Optional[str] = None
    api_config: Optional[Dict[str, Any]] = None
    output_profile_id: Optional[int] = None
    is_active: bool = True


class ModelResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: int
    provider: str
    display_name: str
    model_name: Optional[str] = None
    output_profile_id: Optional[int] = None
    is_active: bool
    created_at: Optional[datetime] = None


class VerseResultEntry(BaseModel):
    """One model's latest verdict on a verse."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: int
    run_id: str
    result_ref: str
    hash_match: bool
    fidelity_score: float
    diff: Optional[Dict[str, Any]] = None
    response_processed: str
    evaluated_at: Optional[datetime] = None


class VerseComparison(BaseModel):
    verse_id: int
    reference: str
    canonical_text: str
    results: List[VerseResultEntry]


class TransformStep(BaseModel):
    order: int = 0
    type: Literal[STEP_TYPES]
    enabled: bool = True
    params: Dict[str, Any] = Field(default_factory=dict)


class TransformProfileIn(BaseModel):
    """Schema for creating or replacing a transform profile."""

    profile_id: int
    name: str
    scope: Literal["canonical", "model_output"] = "model_output"
    description: Optional[str] = None
    steps: List[TransformStep]
    is_default: bool = False
    is_active: bool = True


class TransformProfileResponse(TransformProfileIn):
    created_at: Optional[datetime] = None
