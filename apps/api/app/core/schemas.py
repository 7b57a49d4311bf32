from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API payloads: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class MessageEnvelope(CamelModel):
    success: bool = True
    message: str
