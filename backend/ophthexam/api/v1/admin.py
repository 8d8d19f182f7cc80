from __future__ import annotations

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ophthexam.api.deps import RequestUser, get_admin_user
from ophthexam.api.v1.auth import profile_read
from ophthexam.core.config import get_settings
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.db.models import Profile
from ophthexam.db.session import get_db
from ophthexam.schemas.auth import ProfileRead, ProfileStatusUpdate
from ophthexam.services.audit import write_audit_log

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
settings = get_settings()


@router.patch("/profiles/{profile_id}/status", response_model=ProfileRead)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def update_profile_status(
    request: Request,
    response: Response,
    profile_id: str,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    try:
        parsed_payload = ProfileStatusUpdate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    profile = db.get(Profile, profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")

    previous = profile.status
    profile.status = parsed_payload.status.value
    write_audit_log(
        db,
        user_id=admin.db_user.id,
        action="PROFILE_STATUS_CHANGED",
        resource_type="profile",
        resource_id=profile.id,
        metadata={"from": previous, "to": profile.status},
    )
    db.commit()
    logger.info("profile_status_changed", profile_id=profile.id, previous=previous, status=profile.status)
    return profile_read(profile)
