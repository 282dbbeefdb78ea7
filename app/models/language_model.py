"""Language model registry."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base


class LanguageModel(Base):
    """A model under evaluation and how to reach it."""

    __tablename__ = "models"

    model_id = Column(Integer, primary_key=True, autoincrement=False)
    provider = Column(Text, nullable=False)  # 'mock', 'openrouter'
    display_name = Column(Text, nullable=False)
    model_name = Column(Text)  # Provider-side identifier
    api_config = Column(JSON().with_variant(JSONB, "postgresql"))
    output_profile_id = Column(Integer, ForeignKey("transform_profiles.profile_id", ondelete="SET NULL"))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
