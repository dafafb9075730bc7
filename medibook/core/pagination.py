from dataclasses import dataclass
from typing import Dict, Optional
import math

from fastapi import Query
from sqlalchemy.orm import Query as SAQuery

from .config import settings
from .exceptions import BadRequestError

@dataclass
class PageParams:
    page: int = 1
    limit: int = 10
    sort_by: Optional[str] = None
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

def page_params(
    page: int = Query(1, description="Page number, starting at 1"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, description="Items per page"),
    sort_by: Optional[str] = Query(None, alias="sortBy", max_length=50),
    sort_order: str = Query("desc", alias="sortOrder"),
) -> PageParams:
    """Pagination and sorting query parameters; limit is capped at MAX_PAGE_SIZE."""
    if page < 1:
        raise BadRequestError("Page number must be greater than 0")
    if limit < 1:
        raise BadRequestError("Limit must be greater than 0")
    if sort_order.lower() not in ("asc", "desc"):
        raise BadRequestError("Sort order must be 'asc' or 'desc'")

    return PageParams(
        page=page,
        limit=min(limit, settings.MAX_PAGE_SIZE),
        sort_by=sort_by,
        sort_order=sort_order.lower(),
    )

def apply_sort(query: SAQuery, params: PageParams, columns: Dict[str, object], default: str) -> SAQuery:
    """Order ``query`` by a whitelisted column; unknown fields fall back to ``default``."""
    column = columns.get(params.sort_by or default, columns[default])
    return query.order_by(column.asc() if params.sort_order == "asc" else column.desc())

def paginate(query: SAQuery, params: PageParams):
    """Return ``(items, pagination)`` for an already filtered and sorted query."""
    total = query.order_by(None).count()
    items = query.offset(params.offset).limit(params.limit).all()
    pagination = {
        "page": params.page,
        "limit": params.limit,
        "total": total,
        "pages": math.ceil(total / params.limit) if total else 0,
    }
    return items, pagination
