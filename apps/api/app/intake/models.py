from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientIntake(Base):
    __tablename__ = "client_intake"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # organization
    legal_name: Mapped[str] = mapped_column(Text, nullable=False)
    trade_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    managed_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    managed_by_contact_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone_mobile: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phone_land: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    nature_of_business: Mapped[str | None] = mapped_column(Text, nullable=True)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    client_priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM", server_default="MEDIUM")

    # services and tax profile
    services_selected: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    direct_tax_subcategories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    indirect_tax_subcategories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    income_tax_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    service_frequencies: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    tax_return_years: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    tin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    other_registrations: Mapped[str | None] = mapped_column(Text, nullable=True)

    # company
    company_secretary: Mapped[str | None] = mapped_column(Text, nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    incorporation_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    annual_revenue: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # compliance
    ramis_status: Mapped[str] = mapped_column(String(32), nullable=False)
    ramis_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    docs_business_reg: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    docs_deed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    docs_vehicle_reg: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    docs_tin_certificate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    docs_other1: Mapped[str | None] = mapped_column(Text, nullable=True)
    docs_other2: Mapped[str | None] = mapped_column(Text, nullable=True)
    compliance_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # financial terms
    credit_limit: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(128), nullable=True)
    preferred_currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD", server_default="USD")

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    related_parties: Mapped[list[RelatedParty]] = relationship(
        "RelatedParty",
        back_populates="client_intake",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RelatedParty.position",
    )

    __table_args__ = (
        Index("ix_client_intake_deleted_submitted", "deleted_at", "submitted_at"),
        Index("ix_client_intake_type", "type"),
        Index("ix_client_intake_ramis_status", "ramis_status"),
    )


class RelatedParty(Base):
    __tablename__ = "related_party"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_intake_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client_intake.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # declared before the `relationship` column, which shadows the ORM helper below it
    client_intake: Mapped[ClientIntake] = relationship("ClientIntake", back_populates="related_parties")
    name: Mapped[str] = mapped_column(Text, nullable=False)
    relationship: Mapped[str] = mapped_column(String(64), nullable=False)
    tin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)