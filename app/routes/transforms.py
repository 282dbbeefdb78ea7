"""Transform profile routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.transform import TransformProfile
from app.schemas.canon import TransformProfileIn, TransformProfileResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transform-profiles", tags=["transforms"])


def to_response(profile: TransformProfile) -> TransformProfileResponse:
    return TransformProfileResponse(
        profile_id=profile.profile_id,
        name=profile.name,
        scope=profile.scope,
        description=profile.description,
        steps=profile.steps or [],
        is_default=profile.is_default,
        is_active=profile.is_active,
        created_at=profile.created_at,
    )


@router.post("", response_model=TransformProfileResponse)
def upsert_profile(
    data: TransformProfileIn,
    db: Session = Depends(get_db),
):
    """Create a transform profile, or replace the steps of an existing one."""
    profile = db.query(TransformProfile).filter(TransformProfile.profile_id == data.profile_id).first()
    if profile:
        logger.info(f"Updating transform profile {data.profile_id}")
    else:
        profile = TransformProfile(profile_id=data.profile_id)
        db.add(profile)
        logger.info(f"Creating transform profile {data.profile_id} ({data.name})")

    profile.name = data.name
    profile.scope = data.scope
    profile.description = data.description
    profile.steps = [step.model_dump() for step in data.steps]
    profile.is_default = data.is_default
    profile.is_active = data.is_active
    db.commit()
    db.refresh(profile)

    return to_response(profile)


@router.get("", response_model=List[TransformProfileResponse])
def list_profiles(
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
):
    query = db.query(TransformProfile)
    if scope:
        query = query.filter(TransformProfile.scope == scope)
    return [to_response(p) for p in query.order_by(TransformProfile.profile_id).all()]
