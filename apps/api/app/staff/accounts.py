from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit.service import audit_logger
from app.core.auth import AuthUser, create_access_token, hash_password, verify_password
from app.core.config import Settings
from app.core.context import RequestContext
from app.metrics import observe_login_attempt
from app.staff.models import User
from app.staff.schemas import LoginRequest, LoginResponse, UserRead


logger = logging.getLogger("app.auth")


class AccountService:
    def login(self, session: Session, dto: LoginRequest, context: RequestContext | None = None) -> LoginResponse:
        if not dto.username or not dto.password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username and password are required")

        user = session.scalar(select(User).where(User.username == dto.username, User.is_active.is_(True)))
        if user is None or not verify_password(dto.password, user.password_hash):
            observe_login_attempt("rejected")
            logger.warning("auth.login_rejected", extra={"username": dto.username, "outcome": "rejected"})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

        actor = AuthUser(id=str(user.id), username=user.username, role=user.role)
        token = create_access_token(actor.id, actor.username, actor.role)
        observe_login_attempt("success")
        logger.info("auth.login", extra={"username": user.username, "outcome": "success"})

        audit_logger.record(
            session,
            action="VIEW",
            entity_type="User",
            entity_id=str(user.id),
            actor=actor,
            new_values={"action": "LOGIN", "username": user.username},
            context=context,
        )
        return LoginResponse(token=token, user=UserRead.model_validate(user))

    def list_users(self, session: Session) -> list[UserRead]:
        users = session.scalars(select(User).order_by(User.username.asc())).all()
        return [UserRead.model_validate(user) for user in users]

    def ensure_bootstrap_admin(self, session: Session, settings: Settings) -> User | None:
        """Create the configured administrator account once; existing accounts are left untouched."""
        username = (settings.bootstrap_admin_username or "").strip()
        password = settings.bootstrap_admin_password or ""
        if not username or not password:
            return None
        if session.scalar(select(User.id).where(User.username == username)) is not None:
            return None

        user = User(
            username=username,
            password_hash=hash_password(password),
            full_name="System Administrator",
            role="ADMIN",
        )
        session.add(user)
        session.commit()
        logger.info("auth.bootstrap_admin_created", extra={"username": username})
        return user


account_service = AccountService()
