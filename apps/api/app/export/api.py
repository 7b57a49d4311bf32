from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.errors import http_error_response
from app.export.service import ExportFormat, RenderedExport, export_service
from app.intake.service import parse_intake_id


router = APIRouter(prefix="/api/export", tags=["export"])


def _download(rendered: RenderedExport) -> Response:
    return Response(
        content=rendered.content,
        media_type=rendered.media_type,
        headers={"Content-Disposition": f'attachment; filename="{rendered.filename}"'},
    )


def _export_one(request: Request, db: Session, intake_id: str, export_format: ExportFormat) -> Response | JSONResponse:
    try:
        return _download(export_service.export_one(db, parse_intake_id(intake_id), export_format))
    except HTTPException as exc:
        return http_error_response(request, exc, "export_failed")


@router.get("/excel-all")
def export_all_excel(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Response:
    return _download(export_service.export_all(db, "xlsx"))


@router.get("/csv-all")
def export_all_csv(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Response:
    return _download(export_service.export_all(db, "csv"))


@router.get("/excel/{intake_id}")
def export_excel(
    request: Request,
    intake_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Response:
    return _export_one(request, db, intake_id, "xlsx")


@router.get("/csv/{intake_id}")
def export_csv(
    request: Request,
    intake_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Response:
    return _export_one(request, db, intake_id, "csv")
