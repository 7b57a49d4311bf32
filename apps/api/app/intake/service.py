from __future__ import annotations

import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, Text, and_, cast, delete, or_, select, update
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, selectinload

from app.audit.service import audit_logger
from app.core.auth import AuthUser
from app.core.config import get_settings
from app.core.context import RequestContext
from app.core.query import count_rows, order_by_clause
from app.core.schemas import build_pagination
from app.intake.models import ClientIntake, RelatedParty, utcnow
from app.intake.schemas import ClientIntakeRead, IntakeListEnvelope, RelatedPartyInput
from app.intake.validation import validate_intake
from app.metrics import observe_intake_mutation, observe_intake_validation_failure


logger = logging.getLogger("app.intake")

STORE_UNAVAILABLE_DETAIL = {
    "message": "Database temporarily unavailable",
    "errors": "Please try again in a few moments",
}


def parse_intake_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")


def json_list_contains(column: Any, value: str) -> Any:
    """Membership test against a JSON array column, portable across SQLite and PostgreSQL."""
    return cast(column, Text).contains(json.dumps(value), autoescape=True)


@dataclass
class IntakeFilters:
    type: str | None = None
    ramis_status: str | None = None
    service: str | None = None
    tax_type: str | None = None
    search: str | None = None


class IntakeService:
    entity_type = "ClientIntake"

    def create_intake(
        self,
        session: Session,
        actor: AuthUser | None,
        payload: Any,
        context: RequestContext | None = None,
    ) -> ClientIntakeRead:
        try:
            validated = validate_intake(payload)
        except HTTPException:
            observe_intake_validation_failure("create")
            raise

        actor_name = actor.username if actor is not None else "unknown"
        intake = ClientIntake(**validated.values, created_by=actor_name, submitted_at=utcnow())
        intake.related_parties = self._build_parties(validated.related_parties)
        try:
            session.add(intake)
            session.commit()
        except (OperationalError, DisconnectionError) as exc:
            session.rollback()
            logger.error("intake.store_unavailable", exc_info=True, extra={"error": str(exc)})
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=STORE_UNAVAILABLE_DETAIL)

        created = self._to_read(self._load(session, intake.id, include_deleted=True))
        observe_intake_mutation("create")
        logger.info("intake.created", extra={"intake_id": str(created.id), "actor": actor_name})

        audit_logger.record(
            session,
            action="CREATE",
            entity_type=self.entity_type,
            entity_id=str(created.id),
            actor=actor,
            old_values=None,
            new_values=created.model_dump(mode="json", by_alias=True),
            client_intake_id=created.id,
            context=context,
        )
        return created

    def get_intake(self, session: Session, intake_id: uuid.UUID) -> ClientIntakeRead:
        intake = self._load(session, intake_id)
        if intake is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        return self._to_read(intake)

    def list_intakes(
        self,
        session: Session,
        filters: IntakeFilters,
        *,
        page: int,
        limit: int,
        sort_by: str = "submittedAt",
        sort_order: str = "desc",
    ) -> IntakeListEnvelope:
        stmt = self._filtered(filters)
        order = order_by_clause(ClientIntake, sort_by, sort_order)
        total = count_rows(session, stmt)
        rows = session.scalars(
            stmt.options(selectinload(ClientIntake.related_parties))
            .order_by(order, ClientIntake.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return IntakeListEnvelope(
            data=[self._to_read(row) for row in rows],
            pagination=build_pagination(page, limit, total),
        )

    def update_intake(
        self,
        session: Session,
        actor: AuthUser,
        intake_id: uuid.UUID,
        payload: Any,
        context: RequestContext | None = None,
    ) -> ClientIntakeRead:
        existing = self._load(session, intake_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")

        before = self._to_read(existing).model_dump(mode="json", by_alias=True)
        expected_version = existing.row_version
        if isinstance(payload, dict) and payload.get("rowVersion") is not None:
            if str(payload["rowVersion"]) != str(expected_version):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        try:
            validated = validate_intake(payload, existing=before)
        except HTTPException:
            observe_intake_validation_failure("update")
            raise

        changes: dict[str, Any] = dict(validated.values)
        changes["updated_by"] = actor.username
        changes["updated_at"] = utcnow()
        changes["row_version"] = ClientIntake.row_version + 1

        result = session.execute(
            update(ClientIntake)
            .where(
                and_(
                    ClientIntake.id == intake_id,
                    ClientIntake.row_version == expected_version,
                    ClientIntake.deleted_at.is_(None),
                )
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        # related parties are replaced wholesale; anything not resubmitted is dropped
        session.execute(
            delete(RelatedParty)
            .where(RelatedParty.client_intake_id == intake_id)
            .execution_options(synchronize_session=False)
        )
        session.add_all(self._build_parties(validated.related_parties, client_intake_id=intake_id))
        session.commit()

        updated = self._load(session, intake_id, include_deleted=True, refresh=True)
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        after = self._to_read(updated)
        observe_intake_mutation("update")
        logger.info("intake.updated", extra={"intake_id": str(intake_id), "actor": actor.username})

        audit_logger.record(
            session,
            action="UPDATE",
            entity_type=self.entity_type,
            entity_id=str(intake_id),
            actor=actor,
            old_values=before,
            new_values=after.model_dump(mode="json", by_alias=True),
            client_intake_id=intake_id,
            context=context,
        )
        return after

    def soft_delete_intake(
        self,
        session: Session,
        actor: AuthUser,
        intake_id: uuid.UUID,
        passcode: str | None,
        context: RequestContext | None = None,
    ) -> ClientIntakeRead:
        expected = get_settings().delete_passcode
        if not passcode or not secrets.compare_digest(passcode.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("intake.delete_rejected", extra={"intake_id": str(intake_id), "actor": actor.username})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid delete passcode")

        existing = self._load(session, intake_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        before = self._to_read(existing).model_dump(mode="json", by_alias=True)

        deleted_at = utcnow()
        result = session.execute(
            update(ClientIntake)
            .where(and_(ClientIntake.id == intake_id, ClientIntake.deleted_at.is_(None)))
            .values(
                deleted_by=actor.username,
                deleted_at=deleted_at,
                row_version=ClientIntake.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        session.commit()

        deleted = self._load(session, intake_id, include_deleted=True, refresh=True)
        if deleted is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client intake not found")
        observe_intake_mutation("delete")
        logger.info("intake.deleted", extra={"intake_id": str(intake_id), "actor": actor.username})

        audit_logger.record(
            session,
            action="DELETE",
            entity_type=self.entity_type,
            entity_id=str(intake_id),
            actor=actor,
            old_values=before,
            new_values=None,
            client_intake_id=intake_id,
            context=context,
        )
        return self._to_read(deleted)

    def _filtered(self, filters: IntakeFilters) -> Select[tuple[ClientIntake]]:
        conditions: list[Any] = [ClientIntake.deleted_at.is_(None)]
        if filters.type:
            conditions.append(ClientIntake.type == filters.type)
        if filters.ramis_status:
            conditions.append(ClientIntake.ramis_status == filters.ramis_status)
        if filters.service:
            conditions.append(json_list_contains(ClientIntake.services_selected, filters.service))
        if filters.tax_type:
            conditions.append(
                or_(
                    json_list_contains(ClientIntake.direct_tax_subcategories, filters.tax_type),
                    json_list_contains(ClientIntake.indirect_tax_subcategories, filters.tax_type),
                    json_list_contains(ClientIntake.income_tax_types, filters.tax_type),
                )
            )
        if filters.search and filters.search.strip():
            term = filters.search.strip()
            conditions.append(
                or_(
                    ClientIntake.legal_name.icontains(term, autoescape=True),
                    ClientIntake.email.icontains(term, autoescape=True),
                    ClientIntake.owner_name.icontains(term, autoescape=True),
                )
            )
        return select(ClientIntake).where(and_(*conditions))

    def _load(
        self,
        session: Session,
        intake_id: uuid.UUID,
        *,
        include_deleted: bool = False,
        refresh: bool = False,
    ) -> ClientIntake | None:
        stmt = select(ClientIntake).where(ClientIntake.id == intake_id).options(selectinload(ClientIntake.related_parties))
        if not include_deleted:
            stmt = stmt.where(ClientIntake.deleted_at.is_(None))
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return session.scalar(stmt)

    @staticmethod
    def _build_parties(
        parties: list[RelatedPartyInput],
        client_intake_id: uuid.UUID | None = None,
    ) -> list[RelatedParty]:
        built: list[RelatedParty] = []
        for position, party in enumerate(parties):
            related = RelatedParty(
                name=party.name.strip(),
                relationship=party.relationship.strip(),
                tin=party.tin,
                email=party.email.strip() if party.email else None,
                phone=party.phone,
                position=position,
            )
            if client_intake_id is not None:
                related.client_intake_id = client_intake_id
            built.append(related)
        return built

    @staticmethod
    def _to_read(intake: ClientIntake) -> ClientIntakeRead:
        return ClientIntakeRead.model_validate(intake)


intake_service = IntakeService()
