"""Run-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import settings
from app.services.coordinator import StartRunCommand


class RunStartBase(BaseModel):
    """Fields shared by every start-run request."""

    run_id: Optional[str] = Field(None, max_length=64)
    limit: Optional[int] = Field(None, ge=0)
    skip: Optional[int] = Field(None, ge=0)

    @field_validator("run_id")
    @classmethod
    def strip_run_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("run_id must be a non-empty string.")
        return value

    def _command(self, model_id: int, run_type: str, scope: str, scope_ids: Dict[str, int]):
        return StartRunCommand(
            model_id=model_id,
            run_type=run_type,
            scope=scope,
            scope_ids=scope_ids,
            run_id=self.run_id,
            limit=self.limit,
            skip=self.skip,
        )


class BibleRunRequest(RunStartBase):
    """Run every chapter of a bible."""

    bible_id: int = Field(default_factory=lambda: settings.DEFAULT_BIBLE_ID)

    def to_command(self, model_id: int) -> StartRunCommand:
        return self._command(model_id, "MODEL_CHAPTER", "bible", {"bibleId": self.bible_id})


class BookRunRequest(RunStartBase):
    """Run every chapter of a book."""

    book_id: int

    def to_command(self, model_id: int) -> StartRunCommand:
        return self._command(model_id, "MODEL_CHAPTER", "book", {"bookId": self.book_id})


class ChapterRunRequest(RunStartBase):
    """Run a single chapter."""

    chapter_id: int

    def to_command(self, model_id: int) -> StartRunCommand:
        return self._command(model_id, "MODEL_CHAPTER", "chapter", {"chapterId": self.chapter_id})


class VerseRunRequest(RunStartBase):
    """Run verse by verse over any scope."""

    scope: Literal["bible", "book", "chapter", "verse"]
    scope_id: int

    def to_command(self, model_id: int) -> StartRunCommand:
        key = {"bible": "bibleId", "book": "bookId", "chapter": "chapterId", "verse": "verseId"}[self.scope]
        return self._command(model_id, "MODEL_VERSE", self.scope, {key: self.scope_id})


class BatchRunRequest(BaseModel):
    """Launch chapter runs for several models at once."""

    model_config = ConfigDict(protected_namespaces=())

    model_ids: List[int] = Field(..., min_length=1)
    scope: Literal["book", "chapter"]
    book_id: Optional[int] = None
    chapter_ids: Optional[List[int]] = None
    limit: Optional[int] = Field(None, ge=0)
    skip: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_scope_ids(self):
        if self.scope == "book" and self.book_id is None:
            raise ValueError("book_id is required for book scope.")
        if self.scope == "chapter" and not self.chapter_ids:
            raise ValueError("chapter_ids must be a non-empty list for chapter scope.")
        return self

    def to_commands(self) -> List[StartRunCommand]:
        commands = []
        for model_id in self.model_ids:
            if self.scope == "book":
                scopes = [("book", {"bookId": self.book_id})]
            else:
                scopes = [("chapter", {"chapterId": c}) for c in self.chapter_ids]
            for scope, scope_ids in scopes:
                commands.append(
                    StartRunCommand(
                        model_id=model_id,
                        run_type="MODEL_CHAPTER",
                        scope=scope,
                        scope_ids=scope_ids,
                        limit=self.limit,
                        skip=self.skip,
                    )
                )
        return commands


class RunMetrics(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0


class RunSummary(BaseModel):
    """Outcome of a start, resume or retry call."""

    run_id: str
    run_type: str
    status: str
    metrics: RunMetrics


class RunStartResponse(BaseModel):
    ok: bool
    data: RunSummary
    idempotent: bool = False


class BatchRunResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: int
    run_id: Optional[str] = None
    ok: bool
    status: Optional[str] = None
    metrics: Optional[RunMetrics] = None
    error: Optional[Dict[str, str]] = None


class BatchRunResponse(BaseModel):
    ok: bool
    results: List[BatchRunResult]
    summary: Dict[str, int]


class RunDetail(BaseModel):
    """Full run record."""

    model_config = ConfigDict(protected_namespaces=())

    run_id: str
    model_id: int
    run_type: str
    scope: str
    scope_ids: Dict[str, int]
    limit: Optional[int] = None
    skip: Optional[int] = None
    status: str
    cancel_requested: bool
    metrics: RunMetrics
    error_summary: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class RunListResponse(BaseModel):
    data: List[RunDetail]
    pagination: Pagination


class RunItemStatus(BaseModel):
    target_id: int
    target_type: str
    status: str
    attempt: int
    last_error: Optional[str] = None
    result_ref: Optional[str] = None


class RunProgress(BaseModel):
    """Polling view of a run."""

    run_id: str
    status: str
    cancel_requested: bool
    metrics: RunMetrics
    items: List[RunItemStatus]


class CancelResponse(BaseModel):
    run_id: str
    message: str
