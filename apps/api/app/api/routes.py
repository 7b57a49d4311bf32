import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError

from app.audit.api import router as audit_router
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.export.api import router as export_router
from app.intake.api import router as intake_router, stats_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.staff.api import auth_router, department_router, role_router, staff_router


logger = logging.getLogger("app.system")

router = APIRouter()
router.include_router(auth_router)
router.include_router(intake_router)
router.include_router(stats_router)
router.include_router(export_router)
router.include_router(audit_router)
router.include_router(department_router)
router.include_router(role_router)
router.include_router(staff_router)


def _database_status(request: Request) -> str:
    database = getattr(request.app.state, "database", None)
    if database is None:
        return "Unavailable"
    try:
        database.ping()
    except SQLAlchemyError as exc:
        logger.warning("health.database_unavailable", extra={"error": str(exc)})
        return "Unavailable"
    return "Connected"


@router.get("/health", tags=["system"])
def health(request: Request) -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "OK",
        "service": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": _database_status(request),
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: ADMIN")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
