from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.audit.schemas import AuditLogListEnvelope, AuditStatsEnvelope
from app.audit.service import AuditFilters, audit_query_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.errors import http_error_response


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/logs", response_model=AuditLogListEnvelope)
def list_audit_logs(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None, alias="entityType"),
    user_id: str | None = Query(default=None, alias="userId"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    sort_by: str = Query(default="timestamp", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AuditLogListEnvelope | JSONResponse:
    try:
        return audit_query_service.list_logs(
            db,
            AuditFilters(
                action=action,
                entity_type=entity_type,
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
            ),
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "audit_logs_failed")


@router.get("/stats", response_model=AuditStatsEnvelope)
def audit_stats(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AuditStatsEnvelope:
    return AuditStatsEnvelope(data=audit_query_service.stats(db))
