from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, get_current_user, require_roles
from app.core.database import get_db
from app.core.errors import http_error_response
from app.core.schemas import MessageEnvelope
from app.staff.accounts import account_service
from app.staff.schemas import (
    DepartmentCreate,
    DepartmentEnvelope,
    DepartmentListEnvelope,
    DepartmentUpdate,
    Identity,
    IdentityEnvelope,
    LoginRequest,
    LoginResponse,
    RoleCreate,
    RoleEnvelope,
    RoleListEnvelope,
    RoleUpdate,
    StaffCreate,
    StaffCreateEnvelope,
    StaffEnvelope,
    StaffListEnvelope,
    StaffRolesRequest,
    StaffUpdate,
    UserListEnvelope,
)
from app.staff.service import StaffFilters, department_service, parse_uuid, role_service, staff_service


department_router = APIRouter(prefix="/api/departments", tags=["staff.departments"])
role_router = APIRouter(prefix="/api/roles", tags=["staff.roles"])
staff_router = APIRouter(prefix="/api/staff", tags=["staff"])
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

require_admin = require_roles("ADMIN")

DEPARTMENT_NOT_FOUND = "Department not found"
ROLE_NOT_FOUND = "Role not found"
STAFF_NOT_FOUND = "Staff member not found"


@department_router.get("", response_model=DepartmentListEnvelope)
def list_departments(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> DepartmentListEnvelope:
    return DepartmentListEnvelope(data=department_service.list_departments(db))


@department_router.get("/all", response_model=DepartmentListEnvelope)
def list_all_departments(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> DepartmentListEnvelope:
    return DepartmentListEnvelope(data=department_service.list_departments(db, include_inactive=True))


@department_router.post("", response_model=DepartmentEnvelope, status_code=status.HTTP_201_CREATED)
def create_department(
    request: Request,
    dto: DepartmentCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> DepartmentEnvelope | JSONResponse:
    try:
        created = department_service.create_department(db, user, dto)
        return DepartmentEnvelope(message="Department created successfully", data=created)
    except HTTPException as exc:
        return http_error_response(request, exc, "department_create_failed")


@department_router.put("/{department_id}", response_model=DepartmentEnvelope)
def update_department(
    request: Request,
    department_id: str,
    dto: DepartmentUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> DepartmentEnvelope | JSONResponse:
    try:
        updated = department_service.update_department(
            db, user, parse_uuid(department_id, DEPARTMENT_NOT_FOUND), dto
        )
        return DepartmentEnvelope(message="Department updated successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "department_update_failed")


@department_router.delete("/{department_id}", response_model=DepartmentEnvelope)
def delete_department(
    request: Request,
    department_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> DepartmentEnvelope | JSONResponse:
    try:
        deactivated = department_service.deactivate_department(db, user, parse_uuid(department_id, DEPARTMENT_NOT_FOUND))
        return DepartmentEnvelope(message="Department deleted successfully", data=deactivated)
    except HTTPException as exc:
        return http_error_response(request, exc, "department_delete_failed")


@role_router.get("", response_model=RoleListEnvelope)
def list_roles(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> RoleListEnvelope:
    return RoleListEnvelope(data=role_service.list_roles(db))


@role_router.post("", response_model=RoleEnvelope, status_code=status.HTTP_201_CREATED)
def create_role(
    request: Request,
    dto: RoleCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> RoleEnvelope | JSONResponse:
    try:
        return RoleEnvelope(message="Role created successfully", data=role_service.create_role(db, user, dto))
    except HTTPException as exc:
        return http_error_response(request, exc, "role_create_failed")


@role_router.put("/{role_id}", response_model=RoleEnvelope)
def update_role(
    request: Request,
    role_id: str,
    dto: RoleUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> RoleEnvelope | JSONResponse:
    try:
        updated = role_service.update_role(db, user, parse_uuid(role_id, ROLE_NOT_FOUND), dto)
        return RoleEnvelope(message="Role updated successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "role_update_failed")


@role_router.delete("/{role_id}", response_model=MessageEnvelope)
def delete_role(
    request: Request,
    role_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_admin),
) -> MessageEnvelope | JSONResponse:
    try:
        role_service.delete_role(db, user, parse_uuid(role_id, ROLE_NOT_FOUND))
        return MessageEnvelope(message="Role deleted successfully")
    except HTTPException as exc:
        return http_error_response(request, exc, "role_delete_failed")


@staff_router.post("", response_model=StaffCreateEnvelope, status_code=status.HTTP_201_CREATED)
def create_staff(
    request: Request,
    dto: StaffCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StaffCreateEnvelope | JSONResponse:
    try:
        created, credentials = staff_service.create_staff(db, user, dto)
        return StaffCreateEnvelope(
            message="Staff member created successfully",
            data=created,
            user_credentials=credentials,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_create_failed")


@staff_router.get("", response_model=StaffListEnvelope)
def list_staff(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    search: str | None = Query(default=None),
    department: str | None = Query(default=None),
    staff_status: str | None = Query(default=None, alias="status"),
    role: str | None = Query(default=None),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> StaffListEnvelope | JSONResponse:
    try:
        return staff_service.list_staff(
            db,
            StaffFilters(search=search, department=department, status=staff_status, role=role),
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_list_failed")


@staff_router.get("/{staff_id}", response_model=StaffEnvelope)
def get_staff(
    request: Request,
    staff_id: str,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> StaffEnvelope | JSONResponse:
    try:
        return StaffEnvelope(data=staff_service.get_staff(db, parse_uuid(staff_id, STAFF_NOT_FOUND)))
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_get_failed")


@staff_router.put("/{staff_id}", response_model=StaffEnvelope)
def update_staff(
    request: Request,
    staff_id: str,
    dto: StaffUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StaffEnvelope | JSONResponse:
    try:
        updated = staff_service.update_staff(db, user, parse_uuid(staff_id, STAFF_NOT_FOUND), dto)
        return StaffEnvelope(message="Staff member updated successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_update_failed")


@staff_router.delete("/{staff_id}", response_model=StaffEnvelope)
def delete_staff(
    request: Request,
    staff_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StaffEnvelope | JSONResponse:
    try:
        deactivated = staff_service.deactivate_staff(db, user, parse_uuid(staff_id, STAFF_NOT_FOUND))
        return StaffEnvelope(message="Staff member deleted successfully", data=deactivated)
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_delete_failed")


@staff_router.post("/{staff_id}/roles", response_model=StaffEnvelope)
def assign_staff_roles(
    request: Request,
    staff_id: str,
    dto: StaffRolesRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StaffEnvelope | JSONResponse:
    try:
        updated = staff_service.assign_roles(db, user, parse_uuid(staff_id, STAFF_NOT_FOUND), dto.role_ids)
        return StaffEnvelope(message="Roles assigned successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_roles_failed")


@staff_router.delete("/{staff_id}/roles/{role_id}", response_model=StaffEnvelope)
def remove_staff_role(
    request: Request,
    staff_id: str,
    role_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StaffEnvelope | JSONResponse:
    try:
        updated = staff_service.remove_role(
            db,
            user,
            parse_uuid(staff_id, STAFF_NOT_FOUND),
            parse_uuid(role_id, ROLE_NOT_FOUND),
        )
        return StaffEnvelope(message="Role removed successfully", data=updated)
    except HTTPException as exc:
        return http_error_response(request, exc, "staff_roles_failed")


@auth_router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> LoginResponse | JSONResponse:
    try:
        return account_service.login(db, dto, getattr(request.state, "context", None))
    except HTTPException as exc:
        return http_error_response(request, exc, "login_failed")


@auth_router.get("/users", response_model=UserListEnvelope)
def list_users(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> UserListEnvelope:
    return UserListEnvelope(data=account_service.list_users(db))


@auth_router.get("/me", response_model=IdentityEnvelope)
def me(user: AuthUser = Depends(get_current_user)) -> IdentityEnvelope:
    return IdentityEnvelope(data=Identity(id=user.id, username=user.username, role=user.role))
