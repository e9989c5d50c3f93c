"""Offset pagination shared by the list endpoints."""

import math
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

from mealledger.app.core.config import settings

T = TypeVar("T")


def clamp_page_size(limit: Optional[int]) -> int:
    if limit is None or limit < 1:
        return settings.default_page_size
    return min(limit, settings.max_page_size)


@dataclass
class Page(Generic[T]):
    """One page of results plus the total number of matching rows."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def pagination(self) -> dict:
        return {
            "current_page": self.page,
            "total_pages": self.total_pages,
            "total_count": self.total,
            "limit": self.limit,
            "has_next": self.page < self.total_pages,
            "has_prev": self.page > 1,
        }
