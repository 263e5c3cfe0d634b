from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from flask import request
from sqlalchemy.orm import Query

from app.spipuniform.errors import ValidationFailed

MAX_PAGE_SIZE = 100


def slugify(value: str) -> str:
    """ASCII, lowercase, hyphen-separated."""
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    normalized = normalized.replace("&", " and ")
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", normalized).strip("-").lower()
    return slug or "item"


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1]
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationFailed(f"Invalid date/time: {value}") from e
    return parsed.replace(tzinfo=None)


def arg_int(name: str, default: int | None = None) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationFailed(f"Query parameter '{name}' must be an integer.") from e


def arg_bool(name: str) -> bool | None:
    raw = (request.args.get(name) or "").strip().lower()
    if not raw:
        return None
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int
    sort_by: str
    sort_order: str

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(*, default_sort: str, allowed_sorts: tuple[str, ...], default_limit: int = 10, default_order: str = "desc") -> PageParams:
    page = max(arg_int("page", 1), 1)
    limit = arg_int("limit", default_limit)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    sort_by = (request.args.get("sort_by") or default_sort).strip()
    if sort_by not in allowed_sorts:
        raise ValidationFailed(f"Invalid sort_by. Must be one of: {', '.join(allowed_sorts)}")
    sort_order = (request.args.get("sort_order") or default_order).strip().lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationFailed("Invalid sort_order. Must be 'asc' or 'desc'.")
    return PageParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


def paginate(q: Query, params: PageParams) -> tuple[list[Any], dict[str, Any]]:
    total = q.order_by(None).count()
    items = q.offset(params.offset).limit(params.limit).all()
    total_pages = (total + params.limit - 1) // params.limit if total else 0
    return items, {
        "page": params.page,
        "limit": params.limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": params.page < total_pages,
        "has_prev": params.page > 1,
    }
