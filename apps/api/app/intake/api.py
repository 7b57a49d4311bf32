from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, get_current_user, get_optional_user
from app.core.context import RequestContext
from app.core.database import get_db
from app.core.errors import http_error_response
from app.intake.schemas import IntakeDeleteResult, IntakeEnvelope, IntakeListEnvelope, IntakeStatsEnvelope
from app.intake.service import IntakeFilters, intake_service, parse_intake_id
from app.intake.stats import intake_stats_service


router = APIRouter(prefix="/api/intake", tags=["intake"])
stats_router = APIRouter(prefix="/api/stats", tags=["intake.stats"])


def _request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


@router.post("", response_model=IntakeEnvelope, status_code=status.HTTP_201_CREATED)
def create_intake(
    request: Request,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: AuthUser | None = Depends(get_optional_user),
) -> IntakeEnvelope | JSONResponse:
    try:
        created = intake_service.create_intake(db, user, payload, _request_context(request))
        return IntakeEnvelope(message="Client intake submitted successfully", data=created)
    except HTTPException as exc:
        return http_error_response(request, exc, "intake_create_failed")


@router.get("", response_model=IntakeListEnvelope)
def list_intakes(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    type_filter: str | None = Query(default=None, alias="type"),
    ramis_status: str | None = Query(default=None, alias="ramisStatus"),
    service: str | None = Query(default=None),
    tax_type: str | None = Query(default=None, alias="taxType"),
    search: str | None = Query(default=None),
    sort_by: str = Query(default="submittedAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> IntakeListEnvelope | JSONResponse:
    try:
        return intake_service.list_intakes(
            db,
            IntakeFilters(
                type=type_filter,
                ramis_status=ramis_status,
                service=service,
                tax_type=tax_type,
                search=search,
            ),
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "intake_list_failed")


@router.get("/{intake_id}", response_model=IntakeEnvelope)
def get_intake(
    request: Request,
    intake_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> IntakeEnvelope | JSONResponse:
    try:
        return IntakeEnvelope(data=intake_service.get_intake(db, parse_intake_id(intake_id)))
    except HTTPException as exc:
        return http_error_response(request, exc, "intake_get_failed")


@router.put("/{intake_id}", response_model=IntakeEnvelope)
def update_intake(
    request: Request,
    intake_id: str,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> IntakeEnvelope | JSONResponse:
    try:
        updated = intake_service.update_intake(db, user, parse_intake_id(intake_id), payload, _request_context(request))
        return IntakeEnvelope(message="Client intake updated successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "intake_update_failed")


@router.delete("/{intake_id}", response_model=IntakeDeleteResult)
def delete_intake(
    request: Request,
    intake_id: str,
    payload: dict[str, Any] | None = Body(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> IntakeDeleteResult | JSONResponse:
    passcode = payload.get("passcode") if payload else None
    try:
        deleted = intake_service.soft_delete_intake(
            db,
            user,
            parse_intake_id(intake_id),
            passcode if isinstance(passcode, str) else None,
            _request_context(request),
        )
        return IntakeDeleteResult(
            message="Client intake deleted successfully",
            deleted_by=deleted.deleted_by or user.username,
            deleted_at=deleted.deleted_at,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "intake_delete_failed")


@stats_router.get("", response_model=IntakeStatsEnvelope)
def dashboard_stats(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> IntakeStatsEnvelope:
    return IntakeStatsEnvelope(data=intake_stats_service.dashboard(db))
