from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from pydantic.alias_generators import to_camel
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


SORT_ORDERS = ("asc", "desc")


def sortable_columns(model: type[Any]) -> dict[str, Any]:
    """Map both snake_case and camelCase column names to the mapped attribute."""
    columns: dict[str, Any] = {}
    for column in model.__table__.columns:
        attribute = getattr(model, column.key)
        columns[column.key] = attribute
        columns[to_camel(column.key)] = attribute
    return columns


def order_by_clause(model: type[Any], sort_by: str, sort_order: str) -> Any:
    column = sortable_columns(model).get(sort_by)
    if column is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid sortBy value: {sort_by}")
    normalized_order = sort_order.lower()
    if normalized_order not in SORT_ORDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid sortOrder value: {sort_order}")
    return column.asc() if normalized_order == "asc" else column.desc()


def count_rows(session: Session, stmt: Select[Any]) -> int:
    return int(session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0)
