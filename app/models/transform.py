"""Text transform profiles applied to model output before scoring."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base


class TransformProfile(Base):
    """An ordered list of text transform steps."""

    __tablename__ = "transform_profiles"

    profile_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False)
    scope = Column(Text, nullable=False, default="model_output")  # 'canonical', 'model_output'
    description = Column(Text)
    steps = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
