"""In-memory rendering of client intakes into workbooks (openpyxl) and CSV text."""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from app.intake.schemas import ClientIntakeRead, RelatedPartyRead


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"

FLATTENED_PARTY_SLOTS = 4
MAX_COLUMN_WIDTH = 50
MIN_COLUMN_WIDTH = 10

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="FFE6E6FA", end_color="FFE6E6FA", fill_type="solid")

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def format_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (list, tuple)):
        return format_list(value)
    return str(value)


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def format_list(values: Sequence[Any] | None) -> str:
    if not values:
        return ""
    return ", ".join(str(item) for item in values)


def format_tax_return_years(years: dict[str, Any] | None) -> str:
    """``Category: 2022, 2023 | Category2: 2021``; a category with no years says so."""
    if not years:
        return ""
    parts = []
    for category, submitted in years.items():
        listed = format_list(submitted) if isinstance(submitted, (list, tuple)) else format_text(submitted)
        parts.append(f"{category}: {listed or 'No years submitted'}")
    return " | ".join(parts)


def format_service_frequencies(frequencies: dict[str, Any] | None) -> str:
    if not frequencies:
        return ""
    return " | ".join(f"{service}: {format_text(frequency)}" for service, frequency in frequencies.items())


Column = tuple[str, Callable[[ClientIntakeRead], Any]]

CLIENT_COLUMNS: tuple[Column, ...] = (
    ("Legal Name", lambda c: c.legal_name),
    ("Trade Name", lambda c: c.trade_name),
    ("Type", lambda c: c.type),
    ("Owner Name", lambda c: c.owner_name),
    ("Managed By", lambda c: c.managed_by),
    ("Other Contact Name", lambda c: c.managed_by_contact_name),
    ("Address", lambda c: c.address),
    ("City", lambda c: c.city),
    ("State", lambda c: c.state),
    ("ZIP Code", lambda c: c.zip_code),
    ("Country", lambda c: c.country),
    ("Mobile Phone", lambda c: c.phone_mobile),
    ("Landline Phone", lambda c: c.phone_land),
    ("Email", lambda c: c.email),
    ("Website", lambda c: c.website),
    ("Nature of Business", lambda c: c.nature_of_business),
    ("Industry", lambda c: c.industry),
    ("Client Priority", lambda c: c.client_priority),
    ("Services Selected", lambda c: format_list(c.services_selected)),
    ("Direct Tax Subcategories", lambda c: format_list(c.direct_tax_subcategories)),
    ("Indirect Tax Subcategories", lambda c: format_list(c.indirect_tax_subcategories)),
    ("Income Tax Types", lambda c: format_list(c.income_tax_types)),
    ("Service Frequency", lambda c: format_service_frequencies(c.service_frequencies)),
    ("TIN", lambda c: c.tin),
    ("Tax Return Years", lambda c: format_tax_return_years(c.tax_return_years)),
    ("Other Registrations", lambda c: c.other_registrations),
    ("Company Secretary", lambda c: c.company_secretary),
    ("Registration Number", lambda c: c.registration_number),
    ("Incorporation Date", lambda c: c.incorporation_date),
    ("Annual Revenue", lambda c: c.annual_revenue),
    ("Employee Count", lambda c: c.employee_count),
    ("RAMIS Status", lambda c: c.ramis_status),
    ("RAMIS Email", lambda c: c.ramis_email),
    ("Business Registration Doc", lambda c: c.docs_business_reg),
    ("Deed Copy Doc", lambda c: c.docs_deed),
    ("Vehicle Registration Doc", lambda c: c.docs_vehicle_reg),
    ("TIN Certificate Doc", lambda c: c.docs_tin_certificate),
    ("Other Document 1", lambda c: c.docs_other1),
    ("Other Document 2", lambda c: c.docs_other2),
    ("Compliance Notes", lambda c: c.compliance_notes),
    ("Credit Limit", lambda c: c.credit_limit),
    ("Payment Terms", lambda c: c.payment_terms),
    ("Preferred Currency", lambda c: c.preferred_currency),
    ("Notes", lambda c: c.notes),
    ("Consent Given", lambda c: c.consent),
    ("Created By", lambda c: c.created_by),
    ("Submitted At", lambda c: c.submitted_at),
)

PARTY_FIELDS: tuple[tuple[str, str], ...] = (
    ("Name", "name"),
    ("Relationship", "relationship"),
    ("TIN", "tin"),
    ("Email", "email"),
    ("Phone", "phone"),
)


def party_headers(slots: int) -> list[str]:
    return [f"Related Party {index} {label}" for index in range(1, slots + 1) for label, _ in PARTY_FIELDS]


def party_cells(parties: Sequence[RelatedPartyRead], slots: int) -> list[str]:
    cells: list[str] = []
    for index in range(slots):
        party = parties[index] if index < len(parties) else None
        for _, attribute in PARTY_FIELDS:
            cells.append(format_text(getattr(party, attribute)) if party is not None else "")
    return cells


def client_cells(intake: ClientIntakeRead) -> list[str]:
    return [format_text(getter(intake)) for _, getter in CLIENT_COLUMNS]


def flattened_row(intake: ClientIntakeRead, slots: int = FLATTENED_PARTY_SLOTS) -> list[str]:
    # parties beyond the slot count are dropped from the flattened view
    return client_cells(intake) + party_cells(intake.related_parties, slots)


def flattened_headers(slots: int = FLATTENED_PARTY_SLOTS) -> list[str]:
    return [header for header, _ in CLIENT_COLUMNS] + party_headers(slots)


def _style_header(sheet: Worksheet) -> None:
    for cell in sheet[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL


def _fit_columns(sheet: Worksheet) -> None:
    for index, column in enumerate(sheet.iter_cols(values_only=True), start=1):
        longest = max((len(str(value)) for value in column if value is not None), default=0)
        width = min(max(longest + 2, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
        sheet.column_dimensions[get_column_letter(index)].width = width


def _append_text_row(sheet: Worksheet, values: Sequence[str]) -> None:
    # control characters are rejected by the xlsx writer; text never becomes a formula
    sheet.append([ILLEGAL_CHARACTERS_RE.sub("", value) for value in values])
    for cell in sheet[sheet.max_row]:
        if isinstance(cell.value, str):
            cell.data_type = "s"


def _workbook_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render_single_workbook(intake: ClientIntakeRead) -> bytes:
    workbook = Workbook()
    details = workbook.active
    details.title = "Client Details"
    details.append(["Field", "Value"])
    for header, getter in CLIENT_COLUMNS:
        _append_text_row(details, [header, format_text(getter(intake))])
    _style_header(details)
    _fit_columns(details)

    if intake.related_parties:
        parties = workbook.create_sheet("Related Parties")
        parties.append([label for label, _ in PARTY_FIELDS])
        for party in intake.related_parties:
            _append_text_row(parties, [format_text(getattr(party, attribute)) for _, attribute in PARTY_FIELDS])
        _style_header(parties)
        _fit_columns(parties)

    return _workbook_bytes(workbook)


def render_all_workbook(intakes: Sequence[ClientIntakeRead]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "All Client Intakes"
    sheet.append(flattened_headers())
    for intake in intakes:
        _append_text_row(sheet, flattened_row(intake))
    _style_header(sheet)
    _fit_columns(sheet)
    return _workbook_bytes(workbook)


def _csv_text(headers: list[str], rows: list[list[str]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue()


def render_single_csv(intake: ClientIntakeRead) -> str:
    slots = max(FLATTENED_PARTY_SLOTS, len(intake.related_parties))
    return _csv_text(flattened_headers(slots), [flattened_row(intake, slots)])


def render_all_csv(intakes: Sequence[ClientIntakeRead]) -> str:
    return _csv_text(flattened_headers(), [flattened_row(intake) for intake in intakes])


def single_export_filename(legal_name: str, extension: str, today: date) -> str:
    # header values must stay latin-1 safe
    slug = _UNSAFE_FILENAME_RE.sub("", _WHITESPACE_RE.sub("-", legal_name.strip())) or "client"
    return f"client-intake-{slug}-{today.isoformat()}.{extension}"


def all_export_filename(extension: str, today: date) -> str:
    return f"all-client-intakes-comprehensive-{today.isoformat()}.{extension}"
