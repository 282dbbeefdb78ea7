"""Comparison result model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base


class ComparisonResult(Base):
    """Verse-level fidelity verdict for one model output. Never updated after insert."""

    __tablename__ = "comparison_results"

    result_id = Column(Integer, primary_key=True, autoincrement=True)
    result_ref = Column(String(64), nullable=False)  # Shared by all rows of one item attempt
    run_id = Column(String(64), nullable=False)
    model_id = Column(Integer, nullable=False)
    target_id = Column(Integer, nullable=False)
    verse_id = Column(Integer, nullable=False)
    chapter_id = Column(Integer, nullable=False)
    book_id = Column(Integer, nullable=False)
    bible_id = Column(Integer, nullable=False)
    attempt = Column(Integer, nullable=False)
    response_raw = Column(Text, nullable=False)
    response_processed = Column(Text, nullable=False)
    hash_raw = Column(String(64), nullable=False)
    hash_processed = Column(String(64), nullable=False)
    hash_match = Column(Boolean, nullable=False)
    fidelity_score = Column(Float, nullable=False)
    diff = Column(JSON().with_variant(JSONB, "postgresql"))
    latency_ms = Column(Integer)
    evaluated_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_results_verse_id", "verse_id"),
        Index("idx_results_run_id", "run_id"),
        Index("idx_results_result_ref", "result_ref"),
    )
