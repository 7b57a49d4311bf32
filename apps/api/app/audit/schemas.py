from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from app.core.schemas import CamelModel, Pagination


AuditAction = Literal["CREATE", "UPDATE", "DELETE", "VIEW"]


class AuditUserRef(CamelModel):
    username: str
    full_name: str | None
    role: str


class AuditIntakeRef(CamelModel):
    id: UUID
    legal_name: str
    email: str | None


class AuditLogRead(CamelModel):
    id: UUID
    action: str
    entity_type: str
    entity_id: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    user_id: UUID | None
    client_intake_id: UUID | None
    ip_address: str | None
    user_agent: str | None
    correlation_id: str | None
    timestamp: datetime
    user: AuditUserRef | None = None
    client_intake: AuditIntakeRef | None = None


class AuditLogListEnvelope(CamelModel):
    success: bool = True
    data: list[AuditLogRead]
    pagination: Pagination


class ActionCount(CamelModel):
    action: str
    count: int


class UserActivity(CamelModel):
    user_id: UUID
    username: str | None
    full_name: str | None
    count: int


class AuditStats(CamelModel):
    total_logs: int
    action_stats: list[ActionCount]
    user_stats: list[UserActivity]
    recent_activity: list[AuditLogRead]


class AuditStatsEnvelope(CamelModel):
    success: bool = True
    data: AuditStats
