"""Response envelopes shared by every route."""

import math
from typing import Any, List, Optional

from pydantic import BaseModel


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class Page(BaseModel):
    items: List[Any]
    pagination: Pagination


class ApiResponse(BaseModel):
    success: bool = True
    data: Any = None
    message: Optional[str] = None
