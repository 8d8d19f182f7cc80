"""Public edge handlers mounted under ``/functions/v1``.

Responses carry permissive CORS headers and errors are rendered as
``{"error": message}`` so browser clients can call them directly.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ophthexam.api.deps import find_owned_exam
from ophthexam.core.config import Settings, get_settings
from ophthexam.core.enums import ProfileStatus
from ophthexam.core.errors import CORS_HEADERS, EdgeFunctionError
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.core.security import AuthenticationError, authenticate_token, extract_bearer_token
from ophthexam.db.models import Profile
from ophthexam.db.session import get_db
from ophthexam.schemas.sharing import CleanupResponse, ShareReportRequest, ShareReportResponse
from ophthexam.services.audit import record_auth_failure, write_audit_log
from ophthexam.services.exams import reclaim_stuck_exams
from ophthexam.services.sharing import issue_share_token

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["functions"])
settings = get_settings()

UNAUTHORIZED = "Não autorizado"
EXAM_ID_REQUIRED = "exam_id é obrigatório"
INVALID_EXPIRY = "expires_in_hours deve ser um número positivo"
INVALID_EXAM_ID = "exam_id deve ser um texto"
INVALID_BODY = "Corpo da requisição deve ser um objeto JSON"
FORBIDDEN = "Acesso negado"


def _preflight() -> Response:
    return Response(
        status_code=200,
        headers={**CORS_HEADERS, "Access-Control-Allow-Methods": "GET, POST, OPTIONS"},
    )


async def raw_body(request: Request) -> bytes:
    # Read unparsed so credentials are checked before the body is judged.
    return await request.body()


def _json_object(body: bytes) -> dict:
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise EdgeFunctionError(400, INVALID_BODY) from exc
    if not isinstance(payload, dict):
        raise EdgeFunctionError(400, INVALID_BODY)
    return payload


@router.options("/share-report")
def share_report_preflight():
    return _preflight()


@router.post("/share-report", response_model=ShareReportResponse)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def share_report(
    request: Request,
    response: Response,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    response.headers.update(CORS_HEADERS)

    token = extract_bearer_token(request)
    if token is None:
        record_auth_failure(reason="BEARER_MISSING", metadata={"path": request.url.path})
        raise EdgeFunctionError(401, UNAUTHORIZED)
    try:
        auth = authenticate_token(db, token, cfg)
    except AuthenticationError as exc:
        record_auth_failure(reason=exc.reason, metadata={"path": request.url.path})
        raise EdgeFunctionError(401, UNAUTHORIZED) from exc

    payload = _json_object(body)
    exam_id = payload.get("exam_id")
    if exam_id is None or exam_id == "":
        raise EdgeFunctionError(400, EXAM_ID_REQUIRED)
    if not isinstance(exam_id, str):
        raise EdgeFunctionError(400, INVALID_EXAM_ID)
    try:
        parsed_payload = ShareReportRequest.model_validate(payload)
    except ValidationError as exc:
        raise EdgeFunctionError(400, INVALID_EXPIRY) from exc

    profile = db.scalar(select(Profile).where(Profile.user_id == auth.user_id))
    if profile is None or profile.status != ProfileStatus.APPROVED.value:
        record_auth_failure(
            reason="PROFILE_NOT_APPROVED",
            metadata={"user_id": auth.user_id, "status": profile.status if profile else None},
        )
        raise EdgeFunctionError(403, FORBIDDEN)

    exam = find_owned_exam(db, parsed_payload.exam_id, profile.id)
    if exam is None:
        record_auth_failure(
            reason="OWNERSHIP_DENIED",
            metadata={"exam_id": parsed_payload.exam_id, "user_id": auth.user_id},
        )
        raise EdgeFunctionError(404, "Exame não encontrado")

    expires_in_hours = parsed_payload.expires_in_hours or cfg.share_default_expiry_hours
    origin = request.headers.get("origin") or cfg.public_app_origin

    try:
        link = issue_share_token(
            db,
            exam_id=exam.id,
            expires_in_hours=expires_in_hours,
            origin=origin,
            token_length=cfg.share_token_length,
        )
        write_audit_log(
            db,
            user_id=auth.user_id,
            action="REPORT_SHARED",
            resource_type="exam",
            resource_id=exam.id,
            metadata={"expires_at": link.expires_at.isoformat()},
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("share_report_failed", exam_id=exam.id, error=str(exc))
        raise EdgeFunctionError(500, str(exc)) from exc

    return ShareReportResponse(share_url=link.share_url, expires_at=link.expires_at.isoformat())


@router.options("/cleanup-stuck-exams")
def cleanup_preflight():
    return _preflight()


@router.api_route("/cleanup-stuck-exams", methods=["GET", "POST"], response_model=CleanupResponse)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
def cleanup_stuck_exams(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    response.headers.update(CORS_HEADERS)

    if cfg.cleanup_cron_token:
        if extract_bearer_token(request) != cfg.cleanup_cron_token:
            record_auth_failure(reason="CRON_TOKEN_INVALID", metadata={"path": request.url.path})
            raise EdgeFunctionError(401, UNAUTHORIZED)

    try:
        result = reclaim_stuck_exams(db, threshold_minutes=cfg.stuck_exam_threshold_minutes)
    except SQLAlchemyError as exc:
        logger.error("cleanup_stuck_exams_failed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            headers=CORS_HEADERS,
        )

    return CleanupResponse(
        success=True,
        cleaned_count=result.cleaned_count,
        exam_ids=result.exam_ids,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
