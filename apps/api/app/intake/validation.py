"""Declarative rule table for client intake payloads.

Payloads arrive as raw camelCase JSON objects. Rules are evaluated in two passes:
per-field rules first, then cross-field rules, which only run once every per-field
rule has passed. All failures of a pass are collected and reported together as
``{"field": ..., "message": ...}`` items.

In partial mode (updates) per-field rules only look at the keys the caller sent,
while cross-field rules see the stored record overlaid with the submitted keys.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import EmailStr, TypeAdapter, ValidationError

from app.core.errors import validation_error
from app.intake.schemas import ClientIntakeFields, RelatedPartyInput


CLIENT_TYPES = ("INDIVIDUAL", "PARTNERSHIP", "COMPANY", "NGO", "OTHER")
CLIENT_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "VIP")
RAMIS_STATUSES = ("AVAILABLE", "NOT_AVAILABLE")

DIRECT_TAX = "Direct Tax"
INDIRECT_TAX = "Indirect Tax"

_NON_NULLABLE_COLUMNS = {
    "client_priority",
    "services_selected",
    "direct_tax_subcategories",
    "indirect_tax_subcategories",
    "income_tax_types",
    "service_frequencies",
    "tax_return_years",
    "docs_business_reg",
    "docs_deed",
    "docs_vehicle_reg",
    "docs_tin_certificate",
    "preferred_currency",
}

_email_adapter = TypeAdapter(EmailStr)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _non_blank(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _one_of(choices: tuple[str, ...]) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        return value in choices

    return check


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _literal_true(value: Any) -> bool:
    return value is True


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        _email_adapter.validate_python(value.strip())
    except ValidationError:
        return False
    return True


@dataclass(frozen=True)
class FieldRule:
    field: str
    message: str
    check: Callable[[Any], bool]
    required: bool = False

    def applies(self, payload: Mapping[str, Any], partial: bool) -> bool:
        if partial and self.field not in payload:
            return False
        if self.required:
            return True
        return not _is_blank(payload.get(self.field))


@dataclass(frozen=True)
class CrossFieldRule:
    field: str
    message: str
    violated: Callable[[Mapping[str, Any]], bool]


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("legalName", "Legal name is required", _non_blank, required=True),
    FieldRule("type", "Invalid client type", _one_of(CLIENT_TYPES), required=True),
    FieldRule("ownerName", "Owner/Primary contact name is required", _non_blank, required=True),
    FieldRule("address", "Business address is required", _non_blank, required=True),
    FieldRule("email", "Valid email format required", is_valid_email),
    FieldRule("servicesSelected", "At least one service must be selected", _non_empty_list, required=True),
    FieldRule("ramisStatus", "Invalid RAMIS status", _one_of(RAMIS_STATUSES), required=True),
    FieldRule("consent", "Consent must be given", _literal_true, required=True),
    FieldRule("clientPriority", "Invalid client priority", _one_of(CLIENT_PRIORITIES)),
    FieldRule("ramisEmail", "Valid RAMIS email format required", is_valid_email),
)


def _selected(view: Mapping[str, Any], service: str) -> bool:
    services = view.get("servicesSelected")
    return isinstance(services, list) and service in services


def _empty(view: Mapping[str, Any], key: str) -> bool:
    value = view.get(key)
    return not isinstance(value, list) or len(value) == 0


CROSS_FIELD_RULES: tuple[CrossFieldRule, ...] = (
    CrossFieldRule(
        "directTaxSubcategories",
        "At least one Direct Tax subcategory must be selected",
        lambda view: _selected(view, DIRECT_TAX) and _empty(view, "directTaxSubcategories"),
    ),
    CrossFieldRule(
        "indirectTaxSubcategories",
        "At least one Indirect Tax subcategory must be selected",
        lambda view: _selected(view, INDIRECT_TAX) and _empty(view, "indirectTaxSubcategories"),
    ),
    CrossFieldRule(
        "companySecretary",
        "Company Secretary is required for Company type",
        lambda view: view.get("type") == "COMPANY" and _is_blank(view.get("companySecretary")),
    ),
)


@dataclass
class ValidatedIntake:
    """Column values ready to persist plus the replacement related-party set."""

    values: dict[str, Any]
    related_parties: list[RelatedPartyInput]


def _check_fields(payload: Mapping[str, Any], partial: bool) -> list[dict[str, str]]:
    return [
        {"field": rule.field, "message": rule.message}
        for rule in FIELD_RULES
        if rule.applies(payload, partial) and not rule.check(payload.get(rule.field))
    ]


def _check_cross_fields(view: Mapping[str, Any]) -> list[dict[str, str]]:
    return [{"field": rule.field, "message": rule.message} for rule in CROSS_FIELD_RULES if rule.violated(view)]


def _normalize(payload: Mapping[str, Any]) -> dict[str, Any]:
    # forms post "" for untouched optional inputs
    return {key: (None if isinstance(value, str) and not value.strip() else value) for key, value in payload.items()}


def _pydantic_errors(exc: ValidationError, prefix: str = "") -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        errors.append({"field": f"{prefix}{location}" or "request", "message": str(item.get("msg", "Invalid value"))})
    return errors


def _parse_related_parties(raw: Any) -> tuple[list[RelatedPartyInput], list[dict[str, str]]]:
    if raw is None:
        return [], []
    if not isinstance(raw, list):
        return [], [{"field": "relatedParties", "message": "Related parties must be a list"}]

    parties: list[RelatedPartyInput] = []
    errors: list[dict[str, str]] = []
    for index, item in enumerate(raw):
        prefix = f"relatedParties[{index}]"
        if not isinstance(item, dict):
            errors.append({"field": prefix, "message": "Related party must be an object"})
            continue
        item = _normalize(item)
        if _is_blank(item.get("name")):
            errors.append({"field": f"{prefix}.name", "message": "Related party name is required"})
        if _is_blank(item.get("relationship")):
            errors.append({"field": f"{prefix}.relationship", "message": "Related party relationship is required"})
        if not _is_blank(item.get("email")) and not is_valid_email(item.get("email")):
            errors.append({"field": f"{prefix}.email", "message": "Valid email format required"})
        if errors:
            continue
        try:
            parties.append(RelatedPartyInput.model_validate(item))
        except ValidationError as exc:
            errors.extend(_pydantic_errors(exc, prefix=f"{prefix}."))
    return parties, errors


def validate_intake(
    payload: Any,
    *,
    existing: Mapping[str, Any] | None = None,
) -> ValidatedIntake:
    """Validate a create payload, or an update payload when ``existing`` is given.

    ``existing`` is the stored record in its camelCase API shape. Raises a 400
    ``HTTPException`` carrying every collected field error.
    """
    if not isinstance(payload, dict):
        raise validation_error([{"field": "request", "message": "Request body must be a JSON object"}])

    partial = existing is not None
    submitted = _normalize(payload)

    errors = _check_fields(submitted, partial)
    parties, party_errors = _parse_related_parties(submitted.get("relatedParties"))
    errors.extend(party_errors)
    if errors:
        raise validation_error(errors)

    view = {**existing, **submitted} if existing is not None else submitted
    errors = _check_cross_fields(view)
    if errors:
        raise validation_error(errors)

    try:
        fields = ClientIntakeFields.model_validate(submitted)
    except ValidationError as exc:
        raise validation_error(_pydantic_errors(exc))

    supplied = {name for name in fields.model_fields_set}
    values = fields.model_dump(include=supplied)
    if not partial:
        values = {key: value for key, value in values.items() if value is not None}
    else:
        # required columns cannot be cleared through a partial update
        values = {
            key: value
            for key, value in values.items()
            if value is not None or key not in _NON_NULLABLE_COLUMNS
        }
    for key in ("legal_name", "owner_name", "address", "company_secretary", "email"):
        if isinstance(values.get(key), str):
            values[key] = values[key].strip()
    return ValidatedIntake(values=values, related_parties=parties)
