"""Run and RunItem models."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")

RUN_TYPES = ("MODEL_CHAPTER", "MODEL_VERSE")
RUN_SCOPES = ("bible", "book", "chapter", "verse")
RUN_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
ITEM_STATUSES = ("pending", "running", "succeeded", "failed")


class Run(Base):
    """Run is one batch evaluation of a model against a scoped set of targets."""

    __tablename__ = "runs"

    run_id = Column(String(64), primary_key=True)
    model_id = Column(Integer, nullable=False)
    run_type = Column(Text, nullable=False)  # 'MODEL_CHAPTER', 'MODEL_VERSE'
    scope = Column(Text, nullable=False)  # 'bible', 'book', 'chapter', 'verse'
    scope_ids = Column(JSONType, nullable=False)
    limit = Column(Integer)
    skip = Column(Integer)
    status = Column(Text, nullable=False)  # 'pending', 'running', 'completed', 'failed', 'cancelled'
    cancel_requested = Column(Boolean, nullable=False, default=False)

    # Metrics, kept as counters so concurrent completions can increment them in SQL
    total = Column(Integer, nullable=False, default=0)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    pending = Column(Integer, nullable=False, default=0)

    # Dispatch lease
    lock_token = Column(String(64))
    locked_at = Column(DateTime)

    error_summary = Column(JSONType)
    created_by = Column(Text, default="admin")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    duration_ms = Column(Integer)

    items = relationship("RunItem", back_populates="run", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_runs_model_id", "model_id"),
        Index("idx_runs_status", "status"),
    )

    def metrics(self):
        return {
            "total": self.total or 0,
            "succeeded": self.succeeded or 0,
            "failed": self.failed or 0,
            "skipped": self.skipped or 0,
            "pending": self.pending or 0,
        }


class RunItem(Base):
    """Per-target unit of work within a run."""

    __tablename__ = "run_items"

    item_pk = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(64), ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False)
    target_type = Column(Text, nullable=False)  # 'chapter', 'verse'
    target_id = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(Text, nullable=False)  # 'pending', 'running', 'succeeded', 'failed'
    attempt = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    result_ref = Column(String(64))
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    run = relationship("Run", back_populates="items")

    __table_args__ = (
        UniqueConstraint("run_id", "target_id", name="uq_run_items_run_target"),
        Index("idx_run_items_run_status", "run_id", "status"),
    )
