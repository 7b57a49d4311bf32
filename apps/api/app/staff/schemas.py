from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.schemas import CamelModel, Pagination


StaffStatus = Literal["ACTIVE", "RESIGNED", "STUDY_LEAVE", "INACTIVE"]
StaffRoleType = Literal["STAFF", "SUPERVISOR", "MANAGER", "PARTNER", "HR", "OFFICE_ADMIN"]
UserRole = Literal["ADMIN", "MANAGER", "STAFF"]


class _RequestModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DepartmentCreate(_RequestModel):
    name: str | None = None
    description: str | None = None
    is_active: bool = True


class DepartmentUpdate(_RequestModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None


class DepartmentRead(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    is_active: bool
    staff_count: int = 0
    created_at: datetime
    updated_at: datetime


class DepartmentEnvelope(CamelModel):
    success: bool = True
    message: str | None = None
    data: DepartmentRead


class DepartmentListEnvelope(CamelModel):
    success: bool = True
    data: list[DepartmentRead]


class RoleCreate(_RequestModel):
    name: str | None = None
    type: StaffRoleType | None = None
    description: str | None = None


class RoleUpdate(_RequestModel):
    name: str | None = None
    type: StaffRoleType | None = None
    description: str | None = None


class RoleRead(CamelModel):
    id: UUID
    name: str
    type: str
    description: str | None = None
    assignment_count: int = 0
    created_at: datetime
    updated_at: datetime


class RoleEnvelope(CamelModel):
    success: bool = True
    message: str | None = None
    data: RoleRead


class RoleListEnvelope(CamelModel):
    success: bool = True
    data: list[RoleRead]


class StaffCreate(_RequestModel):
    employee_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    photo_url: str | None = None
    department_id: UUID | None = None
    hire_date: date | None = None
    status: StaffStatus = "ACTIVE"
    resign_date: date | None = None
    resign_reason: str | None = None
    role_ids: list[UUID] = Field(default_factory=list)
    create_user_account: bool = True


class StaffUpdate(_RequestModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    photo_url: str | None = None
    department_id: UUID | None = None
    hire_date: date | None = None
    status: StaffStatus | None = None
    resign_date: date | None = None
    resign_reason: str | None = None
    role_ids: list[UUID] | None = None


class StaffRolesRequest(_RequestModel):
    role_ids: list[UUID] | None = None


class DepartmentRef(CamelModel):
    id: UUID
    name: str


class RoleRef(CamelModel):
    id: UUID
    name: str
    type: str


class StaffRoleRead(CamelModel):
    id: UUID
    assigned_at: datetime
    role: RoleRef


class StaffUserRef(CamelModel):
    id: UUID
    username: str
    role: str
    is_active: bool


class StaffRead(CamelModel):
    id: UUID
    employee_id: str
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    photo_url: str | None = None
    hire_date: date | None = None
    is_active: bool
    status: str
    resign_date: date | None = None
    resign_reason: str | None = None
    department_id: UUID
    department: DepartmentRef | None = None
    user_id: UUID | None = None
    user: StaffUserRef | None = None
    roles: list[StaffRoleRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class UserCredentials(CamelModel):
    """Generated login details; only ever returned in the staff creation response."""

    username: str
    password: str
    email: str


class StaffEnvelope(CamelModel):
    success: bool = True
    message: str | None = None
    data: StaffRead


class StaffCreateEnvelope(StaffEnvelope):
    user_credentials: UserCredentials | None = None


class StaffListEnvelope(CamelModel):
    success: bool = True
    data: list[StaffRead]
    pagination: Pagination


class LoginRequest(_RequestModel):
    username: str | None = None
    password: str | None = None


class UserRead(CamelModel):
    id: UUID
    username: str
    full_name: str | None = None
    role: str
    is_active: bool = True


class LoginResponse(CamelModel):
    success: bool = True
    message: str = "Login successful"
    token: str
    user: UserRead


class UserListEnvelope(CamelModel):
    success: bool = True
    data: list[UserRead]


class Identity(CamelModel):
    id: str
    username: str
    role: str


class IdentityEnvelope(CamelModel):
    success: bool = True
    data: Identity
