from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.auth import AuthUser, hash_password
from app.core.query import count_rows, order_by_clause
from app.core.schemas import build_pagination
from app.intake.validation import is_valid_email
from app.metrics import observe_staff_mutation
from app.staff.models import Department, Role, Staff, StaffRole, User
from app.staff.schemas import (
    DepartmentCreate,
    DepartmentRead,
    DepartmentUpdate,
    RoleCreate,
    RoleRead,
    RoleUpdate,
    StaffCreate,
    StaffListEnvelope,
    StaffRead,
    StaffUpdate,
    UserCredentials,
)


logger = logging.getLogger("app.staff")

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"
GENERATED_PASSWORD_LENGTH = 12


def parse_uuid(raw: str, not_found: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found)


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def username_from_email(email: str) -> str:
    return email.split("@", 1)[0].strip()


def next_employee_id(session: Session, today: date) -> str:
    """``EMP<yy><seq>``, continuing from the highest sequence issued this year."""
    prefix = f"EMP{today:%y}"
    issued = session.scalars(
        select(Staff.employee_id).where(Staff.employee_id.startswith(prefix, autoescape=True))
    ).all()
    sequences = [int(value[len(prefix) :]) for value in issued if value[len(prefix) :].isdigit()]
    return f"{prefix}{max(sequences, default=0) + 1:04d}"


class DepartmentService:
    def list_departments(self, session: Session, *, include_inactive: bool = False) -> list[DepartmentRead]:
        staff_count = func.count(Staff.id).label("staff_count")
        stmt = (
            select(Department, staff_count)
            .outerjoin(Staff, Staff.department_id == Department.id)
            .group_by(Department.id)
            .order_by(Department.name.asc())
        )
        if not include_inactive:
            stmt = stmt.where(Department.is_active.is_(True))
        return [self._to_read(department, count) for department, count in session.execute(stmt).all()]

    def create_department(self, session: Session, actor: AuthUser, dto: DepartmentCreate) -> DepartmentRead:
        if _blank(dto.name):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department name is required")
        name = dto.name.strip()
        self._ensure_name_free(session, name)

        department = Department(name=name, description=dto.description, is_active=dto.is_active)
        session.add(department)
        self._commit(session)
        session.refresh(department)
        observe_staff_mutation("department", "create")
        logger.info("department.created", extra={"department_id": str(department.id), "actor": actor.username})
        return self._to_read(department, 0)

    def update_department(
        self,
        session: Session,
        actor: AuthUser,
        department_id: uuid.UUID,
        dto: DepartmentUpdate,
    ) -> DepartmentRead:
        department = self._get(session, department_id)
        if _blank(dto.name):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department name is required")
        name = dto.name.strip()
        if name != department.name:
            self._ensure_name_free(session, name)

        department.name = name
        if "description" in dto.model_fields_set:
            department.description = dto.description
        if dto.is_active is not None:
            department.is_active = dto.is_active
        self._commit(session)
        session.refresh(department)
        observe_staff_mutation("department", "update")
        logger.info("department.updated", extra={"department_id": str(department.id), "actor": actor.username})
        return self._to_read(department, self._staff_count(session, department.id))

    def deactivate_department(self, session: Session, actor: AuthUser, department_id: uuid.UUID) -> DepartmentRead:
        department = self._get(session, department_id)
        staff_count = self._staff_count(session, department.id)
        if staff_count > 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete department with staff members. Please reassign staff first.",
            )

        department.is_active = False
        session.commit()
        session.refresh(department)
        observe_staff_mutation("department", "delete")
        logger.info("department.deactivated", extra={"department_id": str(department.id), "actor": actor.username})
        return self._to_read(department, staff_count)

    @staticmethod
    def _get(session: Session, department_id: uuid.UUID) -> Department:
        department = session.get(Department, department_id)
        if department is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found")
        return department

    @staticmethod
    def _ensure_name_free(session: Session, name: str) -> None:
        if session.scalar(select(Department.id).where(Department.name == name)) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Department with this name already exists",
            )

    @staticmethod
    def _staff_count(session: Session, department_id: uuid.UUID) -> int:
        return int(session.scalar(select(func.count(Staff.id)).where(Staff.department_id == department_id)) or 0)

    @staticmethod
    def _commit(session: Session) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Department with this name already exists",
            )

    @staticmethod
    def _to_read(department: Department, staff_count: int) -> DepartmentRead:
        return DepartmentRead(
            id=department.id,
            name=department.name,
            description=department.description,
            is_active=department.is_active,
            staff_count=int(staff_count or 0),
            created_at=department.created_at,
            updated_at=department.updated_at,
        )


class RoleService:
    def list_roles(self, session: Session) -> list[RoleRead]:
        assignment_count = func.count(StaffRole.id).label("assignment_count")
        rows = session.execute(
            select(Role, assignment_count)
            .outerjoin(StaffRole, StaffRole.role_id == Role.id)
            .group_by(Role.id)
            .order_by(Role.name.asc())
        ).all()
        return [self._to_read(role, count) for role, count in rows]

    def create_role(self, session: Session, actor: AuthUser, dto: RoleCreate) -> RoleRead:
        if _blank(dto.name) or dto.type is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role name and type are required")
        name = dto.name.strip()
        self._ensure_unique(session, name, dto.type)

        role = Role(name=name, type=dto.type, description=dto.description)
        session.add(role)
        self._commit(session)
        session.refresh(role)
        observe_staff_mutation("role", "create")
        logger.info("role.created", extra={"role_id": str(role.id), "actor": actor.username})
        return self._to_read(role, 0)

    def update_role(self, session: Session, actor: AuthUser, role_id: uuid.UUID, dto: RoleUpdate) -> RoleRead:
        if _blank(dto.name) or dto.type is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role name and type are required")
        role = self._get(session, role_id)
        name = dto.name.strip()
        self._ensure_unique(session, name, dto.type, exclude_id=role.id)

        role.name = name
        role.type = dto.type
        if "description" in dto.model_fields_set:
            role.description = dto.description
        self._commit(session)
        session.refresh(role)
        observe_staff_mutation("role", "update")
        logger.info("role.updated", extra={"role_id": str(role.id), "actor": actor.username})
        return self._to_read(role, self._assignment_count(session, role.id))

    def delete_role(self, session: Session, actor: AuthUser, role_id: uuid.UUID) -> None:
        role = self._get(session, role_id)
        if self._assignment_count(session, role.id) > 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete role that is assigned to staff members. Please reassign staff first.",
            )
        session.delete(role)
        session.commit()
        observe_staff_mutation("role", "delete")
        logger.info("role.deleted", extra={"role_id": str(role_id), "actor": actor.username})

    @staticmethod
    def _get(session: Session, role_id: uuid.UUID) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
        return role

    @staticmethod
    def _ensure_unique(session: Session, name: str, role_type: str, exclude_id: uuid.UUID | None = None) -> None:
        for column, value, message in (
            (Role.name, name, "Role with this name already exists"),
            (Role.type, role_type, "Role with this type already exists"),
        ):
            stmt = select(Role.id).where(column == value)
            if exclude_id is not None:
                stmt = stmt.where(Role.id != exclude_id)
            if session.scalar(stmt) is not None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    @staticmethod
    def _assignment_count(session: Session, role_id: uuid.UUID) -> int:
        return int(session.scalar(select(func.count(StaffRole.id)).where(StaffRole.role_id == role_id)) or 0)

    @staticmethod
    def _commit(session: Session) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role with this name already exists")

    @staticmethod
    def _to_read(role: Role, assignment_count: int) -> RoleRead:
        return RoleRead(
            id=role.id,
            name=role.name,
            type=role.type,
            description=role.description,
            assignment_count=int(assignment_count or 0),
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


@dataclass
class StaffFilters:
    search: str | None = None
    department: str | None = None
    status: str | None = None
    role: str | None = None


class StaffService:
    def create_staff(
        self,
        session: Session,
        actor: AuthUser,
        dto: StaffCreate,
    ) -> tuple[StaffRead, UserCredentials | None]:
        if _blank(dto.first_name) or _blank(dto.last_name) or _blank(dto.email) or dto.department_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="First name, last name, email, and department are required",
            )
        email = dto.email.strip()
        if not is_valid_email(email):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid email format required")
        if session.scalar(select(Staff.id).where(Staff.email == email)) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Staff member with this email already exists",
            )
        self._ensure_department(session, dto.department_id)
        role_ids = self._ensure_roles(session, dto.role_ids)

        today = date.today()
        employee_id = dto.employee_id.strip() if not _blank(dto.employee_id) else next_employee_id(session, today)
        if session.scalar(select(Staff.id).where(Staff.employee_id == employee_id)) is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Employee ID already exists")

        first_name = dto.first_name.strip()
        last_name = dto.last_name.strip()
        credentials: UserCredentials | None = None
        user: User | None = None
        if dto.create_user_account:
            username = username_from_email(email)
            if session.scalar(select(User.id).where(User.username == username)) is not None:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"User account {username} already exists",
                )
            password = generate_password()
            user = User(
                username=username,
                password_hash=hash_password(password),
                full_name=f"{first_name} {last_name}",
                role="STAFF",
            )
            session.add(user)
            credentials = UserCredentials(username=username, password=password, email=email)

        staff = Staff(
            employee_id=employee_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=dto.phone,
            photo_url=dto.photo_url,
            department_id=dto.department_id,
            hire_date=dto.hire_date or today,
            status=dto.status,
            resign_date=dto.resign_date,
            resign_reason=dto.resign_reason,
            user=user,
        )
        staff.roles = [StaffRole(role_id=role_id) for role_id in role_ids]
        session.add(staff)
        self._commit(session)

        created = self.get_staff(session, staff.id)
        observe_staff_mutation("staff", "create")
        logger.info(
            "staff.created",
            extra={"staff_id": str(created.id), "actor": actor.username, "username": credentials.username if credentials else None},
        )
        return created, credentials

    def list_staff(
        self,
        session: Session,
        filters: StaffFilters,
        *,
        page: int,
        limit: int,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> StaffListEnvelope:
        stmt = self._filtered(filters)
        order = order_by_clause(Staff, sort_by, sort_order)
        total = count_rows(session, stmt)
        rows = session.scalars(
            stmt.options(*self._load_options()).order_by(order, Staff.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return StaffListEnvelope(
            data=[StaffRead.model_validate(row) for row in rows],
            pagination=build_pagination(page, limit, total),
        )

    def get_staff(self, session: Session, staff_id: uuid.UUID) -> StaffRead:
        return StaffRead.model_validate(self._load(session, staff_id))

    def update_staff(self, session: Session, actor: AuthUser, staff_id: uuid.UUID, dto: StaffUpdate) -> StaffRead:
        staff = self._load(session, staff_id)
        supplied = dto.model_fields_set

        if not _blank(dto.email) and dto.email.strip() != staff.email:
            email = dto.email.strip()
            if not is_valid_email(email):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid email format required")
            if session.scalar(select(Staff.id).where(Staff.email == email)) is not None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already exists")
            staff.email = email
        if dto.department_id is not None:
            self._ensure_department(session, dto.department_id)
            staff.department_id = dto.department_id
        role_ids = self._ensure_roles(session, dto.role_ids) if dto.role_ids is not None else None

        for field in ("first_name", "last_name"):
            value = getattr(dto, field)
            if not _blank(value):
                setattr(staff, field, value.strip())
        for field in ("phone", "photo_url", "resign_date", "resign_reason"):
            if field in supplied:
                setattr(staff, field, getattr(dto, field))
        if dto.hire_date is not None:
            staff.hire_date = dto.hire_date
        if dto.status is not None:
            staff.status = dto.status

        if role_ids is not None:
            # an explicit role list replaces the current assignments
            session.execute(delete(StaffRole).where(StaffRole.staff_id == staff.id))
            session.add_all([StaffRole(staff_id=staff.id, role_id=role_id) for role_id in role_ids])
        self._commit(session)

        updated = self.get_staff(session, staff_id)
        observe_staff_mutation("staff", "update")
        logger.info("staff.updated", extra={"staff_id": str(staff_id), "actor": actor.username})
        return updated

    def deactivate_staff(self, session: Session, actor: AuthUser, staff_id: uuid.UUID) -> StaffRead:
        staff = self._load(session, staff_id)
        staff.is_active = False
        session.commit()
        deactivated = self.get_staff(session, staff_id)
        observe_staff_mutation("staff", "delete")
        logger.info("staff.deactivated", extra={"staff_id": str(staff_id), "actor": actor.username})
        return deactivated

    def assign_roles(
        self,
        session: Session,
        actor: AuthUser,
        staff_id: uuid.UUID,
        role_ids: list[uuid.UUID] | None,
    ) -> StaffRead:
        if role_ids is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role IDs array is required")
        staff = self._load(session, staff_id)
        requested = self._ensure_roles(session, role_ids)

        held = {assignment.role_id for assignment in staff.roles}
        added = [role_id for role_id in requested if role_id not in held]
        session.add_all([StaffRole(staff_id=staff.id, role_id=role_id) for role_id in added])
        self._commit(session)

        updated = self.get_staff(session, staff_id)
        observe_staff_mutation("staff", "assign_roles")
        logger.info("staff.roles_assigned", extra={"staff_id": str(staff_id), "actor": actor.username})
        return updated

    def remove_role(self, session: Session, actor: AuthUser, staff_id: uuid.UUID, role_id: uuid.UUID) -> StaffRead:
        staff = self._load(session, staff_id)
        session.execute(
            delete(StaffRole).where(and_(StaffRole.staff_id == staff.id, StaffRole.role_id == role_id))
        )
        session.commit()

        updated = self.get_staff(session, staff_id)
        observe_staff_mutation("staff", "remove_role")
        logger.info(
            "staff.role_removed",
            extra={"staff_id": str(staff_id), "role_id": str(role_id), "actor": actor.username},
        )
        return updated

    def _filtered(self, filters: StaffFilters) -> Select[tuple[Staff]]:
        conditions: list[Any] = []
        if filters.search and filters.search.strip():
            term = filters.search.strip()
            conditions.append(
                or_(
                    Staff.first_name.icontains(term, autoescape=True),
                    Staff.last_name.icontains(term, autoescape=True),
                    Staff.email.icontains(term, autoescape=True),
                    Staff.employee_id.icontains(term, autoescape=True),
                )
            )
        if filters.department:
            conditions.append(Staff.department_id == self._filter_uuid(filters.department, "department"))
        if filters.status:
            conditions.append(Staff.status == filters.status)
        if filters.role:
            role_id = self._filter_uuid(filters.role, "role")
            conditions.append(Staff.roles.any(StaffRole.role_id == role_id))

        stmt = select(Staff)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        return stmt

    @staticmethod
    def _filter_uuid(raw: str, name: str) -> uuid.UUID:
        try:
            return uuid.UUID(raw)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {name}: {raw}")

    @staticmethod
    def _load_options() -> tuple[Any, ...]:
        return (
            selectinload(Staff.department),
            selectinload(Staff.user),
            selectinload(Staff.roles).selectinload(StaffRole.role),
        )

    def _load(self, session: Session, staff_id: uuid.UUID) -> Staff:
        staff = session.scalar(
            select(Staff)
            .where(Staff.id == staff_id)
            .options(*self._load_options())
            .execution_options(populate_existing=True)
        )
        if staff is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
        return staff

    @staticmethod
    def _ensure_department(session: Session, department_id: uuid.UUID) -> None:
        if session.get(Department, department_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department not found")

    @staticmethod
    def _ensure_roles(session: Session, role_ids: list[uuid.UUID]) -> list[uuid.UUID]:
        unique_ids = list(dict.fromkeys(role_ids))
        if not unique_ids:
            return []
        found = set(session.scalars(select(Role.id).where(Role.id.in_(unique_ids))).all())
        if len(found) != len(unique_ids):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="One or more roles not found")
        return unique_ids

    @staticmethod
    def _commit(session: Session) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.warning("staff.conflict", extra={"error": str(exc.orig)})
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Staff member conflicts with an existing record",
            )


department_service = DepartmentService()
role_service = RoleService()
staff_service = StaffService()
