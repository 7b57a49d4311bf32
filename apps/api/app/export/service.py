from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Literal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.export.render import (
    CSV_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    all_export_filename,
    render_all_csv,
    render_all_workbook,
    render_single_csv,
    render_single_workbook,
    single_export_filename,
)
from app.intake.models import ClientIntake
from app.intake.schemas import ClientIntakeRead
from app.metrics import observe_export
from app.otel import traced


logger = logging.getLogger("app.export")

ExportFormat = Literal["xlsx", "csv"]


@dataclass
class RenderedExport:
    content: bytes
    media_type: str
    filename: str


class ExportService:
    def export_one(self, session: Session, intake_id: uuid.UUID, export_format: ExportFormat) -> RenderedExport:
        # single-record exports still reach soft-deleted intakes
        intake = session.scalar(
            select(ClientIntake)
            .where(ClientIntake.id == intake_id)
            .options(selectinload(ClientIntake.related_parties))
        )
        if intake is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        record = ClientIntakeRead.model_validate(intake)

        started = time.perf_counter()
        with traced("export.render", export_scope="single", export_format=export_format, intake_id=str(intake_id)):
            if export_format == "xlsx":
                content = render_single_workbook(record)
                media_type = XLSX_MEDIA_TYPE
            else:
                content = render_single_csv(record).encode("utf-8")
                media_type = CSV_MEDIA_TYPE
        self._observe("single", export_format, started, 1)
        return RenderedExport(
            content=content,
            media_type=media_type,
            filename=single_export_filename(record.legal_name, export_format, self._today()),
        )

    def export_all(self, session: Session, export_format: ExportFormat) -> RenderedExport:
        intakes = session.scalars(
            select(ClientIntake)
            .where(ClientIntake.deleted_at.is_(None))
            .options(selectinload(ClientIntake.related_parties))
            .order_by(ClientIntake.submitted_at.desc(), ClientIntake.id)
        ).all()
        records = [ClientIntakeRead.model_validate(intake) for intake in intakes]

        started = time.perf_counter()
        with traced("export.render", export_scope="all", export_format=export_format, row_count=len(records)):
            if export_format == "xlsx":
                content = render_all_workbook(records)
                media_type = XLSX_MEDIA_TYPE
            else:
                content = render_all_csv(records).encode("utf-8")
                media_type = CSV_MEDIA_TYPE
        self._observe("all", export_format, started, len(records))
        return RenderedExport(
            content=content,
            media_type=media_type,
            filename=all_export_filename(export_format, self._today()),
        )

    @staticmethod
    def _observe(scope: str, export_format: str, started: float, row_count: int) -> None:
        duration = time.perf_counter() - started
        observe_export(scope, export_format, duration)
        logger.info(
            "export.rendered",
            extra={
                "export_scope": scope,
                "export_format": export_format,
                "row_count": row_count,
                "duration_ms": round(duration * 1000, 2),
            },
        )

    @staticmethod
    def _today() -> date:
        return datetime.now(timezone.utc).date()


export_service = ExportService()
