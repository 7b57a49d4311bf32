from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, desc, func, select
from sqlalchemy.orm import Session

from app.audit.models import AuditLog
from app.audit.schemas import (
    ActionCount,
    AuditIntakeRef,
    AuditLogListEnvelope,
    AuditLogRead,
    AuditStats,
    AuditUserRef,
    UserActivity,
)
from app.context import get_correlation_id
from app.core.auth import AuthUser
from app.core.context import RequestContext
from app.core.query import count_rows, order_by_clause
from app.core.schemas import build_pagination
from app.intake.models import ClientIntake
from app.metrics import observe_audit_write_failure
from app.staff.models import User


logger = logging.getLogger("app.audit")

AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE", "VIEW")


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class AuditLogger:
    """Writes audit rows in their own commit; a failed write is logged and counted, never raised."""

    def record(
        self,
        session: Session,
        *,
        action: str,
        entity_type: str,
        entity_id: str,
        actor: AuthUser | None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        client_intake_id: uuid.UUID | None = None,
        context: RequestContext | None = None,
    ) -> AuditLog | None:
        try:
            entry = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                old_values=old_values,
                new_values=new_values,
                user_id=_as_uuid(actor.id) if actor is not None else None,
                client_intake_id=client_intake_id,
                ip_address=context.ip_address if context is not None else None,
                user_agent=context.user_agent if context is not None else None,
                correlation_id=get_correlation_id() or (context.correlation_id if context is not None else None),
            )
            session.add(entry)
            session.commit()
        except Exception as exc:
            session.rollback()
            observe_audit_write_failure(action)
            logger.exception(
                "audit_write_failed",
                extra={"action": action, "entity_type": entity_type, "entity_id": entity_id, "error": str(exc)},
            )
            return None

        logger.info(
            "audit.recorded",
            extra={"action": action, "entity_type": entity_type, "entity_id": entity_id},
        )
        return entry


def _parse_bound(raw: str | None, *, end: bool) -> datetime | None:
    if raw is None or not raw.strip():
        return None
    value = raw.strip()
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            # a bare end date covers the whole day
            if end:
                return datetime.combine(day, time.max, tzinfo=timezone.utc)
            return datetime.combine(day, time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        field = "endDate" if end else "startDate"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {field}: {raw}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class AuditFilters:
    action: str | None = None
    entity_type: str | None = None
    user_id: str | None = None
    start_date: str | None = None
    end_date: str | None = None


class AuditQueryService:
    def list_logs(
        self,
        session: Session,
        filters: AuditFilters,
        *,
        page: int,
        limit: int,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> AuditLogListEnvelope:
        stmt = self._filtered(filters)
        total = count_rows(session, stmt)
        rows = session.scalars(
            stmt.order_by(order_by_clause(AuditLog, sort_by, sort_order), AuditLog.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return AuditLogListEnvelope(
            data=self._to_reads(session, rows),
            pagination=build_pagination(page, limit, total),
        )

    def stats(self, session: Session) -> AuditStats:
        total_logs = int(session.scalar(select(func.count()).select_from(AuditLog)) or 0)

        action_rows = session.execute(
            select(AuditLog.action, func.count()).group_by(AuditLog.action).order_by(AuditLog.action)
        ).all()

        activity_count = func.count().label("activity_count")
        user_rows = session.execute(
            select(AuditLog.user_id, activity_count)
            .where(AuditLog.user_id.is_not(None))
            .group_by(AuditLog.user_id)
            .order_by(desc(activity_count), AuditLog.user_id)
            .limit(10)
        ).all()
        users = self._users_by_id(session, {row[0] for row in user_rows})

        recent = session.scalars(select(AuditLog).order_by(AuditLog.timestamp.desc(), AuditLog.id).limit(10)).all()

        return AuditStats(
            total_logs=total_logs,
            action_stats=[ActionCount(action=action, count=count) for action, count in action_rows],
            user_stats=[
                UserActivity(
                    user_id=user_id,
                    username=users[user_id].username if user_id in users else None,
                    full_name=users[user_id].full_name if user_id in users else None,
                    count=count,
                )
                for user_id, count in user_rows
            ],
            recent_activity=self._to_reads(session, recent),
        )

    def _filtered(self, filters: AuditFilters) -> Select[tuple[AuditLog]]:
        conditions = []
        if filters.action:
            action = filters.action.upper()
            if action not in AUDIT_ACTIONS:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid action: {filters.action}")
            conditions.append(AuditLog.action == action)
        if filters.entity_type:
            conditions.append(AuditLog.entity_type == filters.entity_type)
        if filters.user_id:
            user_id = _as_uuid(filters.user_id)
            if user_id is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid userId: {filters.user_id}")
            conditions.append(AuditLog.user_id == user_id)

        start = _parse_bound(filters.start_date, end=False)
        end = _parse_bound(filters.end_date, end=True)
        if start is not None:
            conditions.append(AuditLog.timestamp >= start)
        if end is not None:
            conditions.append(AuditLog.timestamp <= end)

        stmt = select(AuditLog)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        return stmt

    @staticmethod
    def _users_by_id(session: Session, user_ids: set[uuid.UUID]) -> dict[uuid.UUID, User]:
        if not user_ids:
            return {}
        return {user.id: user for user in session.scalars(select(User).where(User.id.in_(user_ids)))}

    def _to_reads(self, session: Session, rows: list[AuditLog] | Any) -> list[AuditLogRead]:
        rows = list(rows)
        users = self._users_by_id(session, {row.user_id for row in rows if row.user_id is not None})
        intake_ids = {row.client_intake_id for row in rows if row.client_intake_id is not None}
        intakes: dict[uuid.UUID, ClientIntake] = {}
        if intake_ids:
            intakes = {
                intake.id: intake
                for intake in session.scalars(select(ClientIntake).where(ClientIntake.id.in_(intake_ids)))
            }

        reads: list[AuditLogRead] = []
        for row in rows:
            user = users.get(row.user_id) if row.user_id is not None else None
            intake = intakes.get(row.client_intake_id) if row.client_intake_id is not None else None
            reads.append(
                AuditLogRead.model_validate(
                    {
                        "id": row.id,
                        "action": row.action,
                        "entity_type": row.entity_type,
                        "entity_id": row.entity_id,
                        "old_values": row.old_values,
                        "new_values": row.new_values,
                        "user_id": row.user_id,
                        "client_intake_id": row.client_intake_id,
                        "ip_address": row.ip_address,
                        "user_agent": row.user_agent,
                        "correlation_id": row.correlation_id,
                        "timestamp": row.timestamp,
                        "user": (
                            AuditUserRef(username=user.username, full_name=user.full_name, role=user.role)
                            if user is not None
                            else None
                        ),
                        "client_intake": (
                            AuditIntakeRef(id=intake.id, legal_name=intake.legal_name, email=intake.email)
                            if intake is not None
                            else None
                        ),
                    }
                )
            )
        return reads


audit_logger = AuditLogger()
audit_query_service = AuditQueryService()
