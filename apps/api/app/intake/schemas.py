from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.schemas import CamelModel, Pagination


ClientType = Literal["INDIVIDUAL", "PARTNERSHIP", "COMPANY", "NGO", "OTHER"]
ClientPriority = Literal["LOW", "MEDIUM", "HIGH", "VIP"]
RamisStatus = Literal["AVAILABLE", "NOT_AVAILABLE"]


class RelatedPartyInput(CamelModel):
    name: str = Field(min_length=1)
    relationship: str = Field(min_length=1)
    tin: str | None = None
    email: str | None = None
    phone: str | None = None


class ClientIntakeFields(CamelModel):
    """Typed view of the writable intake columns; every field is optional so updates can be partial."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    legal_name: str | None = None
    trade_name: str | None = None
    type: ClientType | None = None
    managed_by: str | None = None
    managed_by_contact_name: str | None = None
    owner_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    phone_mobile: str | None = None
    phone_land: str | None = None
    email: str | None = None
    website: str | None = None
    nature_of_business: str | None = None
    industry: str | None = None
    client_priority: ClientPriority | None = None
    services_selected: list[str] | None = None
    direct_tax_subcategories: list[str] | None = None
    indirect_tax_subcategories: list[str] | None = None
    income_tax_types: list[str] | None = None
    service_frequencies: dict[str, str] | None = None
    tax_return_years: dict[str, list[str | int]] | None = None
    tin: str | None = None
    other_registrations: str | None = None
    company_secretary: str | None = None
    registration_number: str | None = None
    incorporation_date: date | None = None
    annual_revenue: Decimal | None = None
    employee_count: int | None = Field(default=None, ge=0)
    ramis_status: RamisStatus | None = None
    ramis_email: str | None = None
    docs_business_reg: bool | None = None
    docs_deed: bool | None = None
    docs_vehicle_reg: bool | None = None
    docs_tin_certificate: bool | None = None
    docs_other1: str | None = None
    docs_other2: str | None = None
    compliance_notes: str | None = None
    credit_limit: Decimal | None = None
    payment_terms: str | None = None
    preferred_currency: str | None = None
    notes: str | None = None
    consent: bool | None = None


class RelatedPartyRead(CamelModel):
    id: UUID
    client_intake_id: UUID
    name: str
    relationship: str
    tin: str | None
    email: str | None
    phone: str | None


class ClientIntakeRead(CamelModel):
    id: UUID
    legal_name: str
    trade_name: str | None
    type: str
    managed_by: str | None
    managed_by_contact_name: str | None
    owner_name: str
    address: str
    city: str | None
    state: str | None
    zip_code: str | None
    country: str | None
    phone_mobile: str | None
    phone_land: str | None
    email: str | None
    website: str | None
    nature_of_business: str | None
    industry: str | None
    client_priority: str
    services_selected: list[str]
    direct_tax_subcategories: list[str]
    indirect_tax_subcategories: list[str]
    income_tax_types: list[str]
    service_frequencies: dict[str, Any]
    tax_return_years: dict[str, Any]
    tin: str | None
    other_registrations: str | None
    company_secretary: str | None
    registration_number: str | None
    incorporation_date: date | None
    annual_revenue: Decimal | None
    employee_count: int | None
    ramis_status: str
    ramis_email: str | None
    docs_business_reg: bool
    docs_deed: bool
    docs_vehicle_reg: bool
    docs_tin_certificate: bool
    docs_other1: str | None
    docs_other2: str | None
    compliance_notes: str | None
    credit_limit: Decimal | None
    payment_terms: str | None
    preferred_currency: str
    notes: str | None
    consent: bool
    created_by: str | None
    updated_by: str | None
    submitted_at: datetime
    updated_at: datetime
    deleted_by: str | None
    deleted_at: datetime | None
    row_version: int
    related_parties: list[RelatedPartyRead]


class IntakeEnvelope(CamelModel):
    success: bool = True
    message: str | None = None
    data: ClientIntakeRead


class IntakeListEnvelope(CamelModel):
    success: bool = True
    data: list[ClientIntakeRead]
    pagination: Pagination


class IntakeDeleteResult(CamelModel):
    success: bool = True
    message: str
    deleted_by: str
    deleted_at: datetime


class ServiceCount(CamelModel):
    service: str
    count: int


class PriorityCount(CamelModel):
    priority: str
    count: int


class RamisStatusCount(CamelModel):
    status: str
    count: int


class IntakeStats(CamelModel):
    total_clients: int
    tax_clients: int
    service_breakdown: list[ServiceCount]
    priority_distribution: list[PriorityCount]
    ramis_status_breakdown: list[RamisStatusCount]
    recent_clients: int
    direct_tax_count: int
    indirect_tax_count: int


class IntakeStatsEnvelope(CamelModel):
    success: bool = True
    data: IntakeStats
