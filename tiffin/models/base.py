"""
Shared model bases and pagination
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, List, Optional, Tuple


def page_count(total: int, size: int) -> int:
    return (total + size - 1) // size


class TimestampMixin(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BaseEntity(BaseModel):
    """Store-backed entity; enum fields serialise as their string values"""

    model_config = {"from_attributes": True, "use_enum_values": True}


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1, description="1-based page number")
    size: int = Field(default=20, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size

    def limit_offset(self) -> Tuple[int, int]:
        """Parameters for a trailing LIMIT ? OFFSET ? clause"""
        return self.size, self.offset


class PaginatedResponse(BaseModel):
    """One page of a filtered listing"""
    items: List[Any]
    total: int
    page: int
    size: int
    pages: int

    @classmethod
    def create(cls, items: list, total: int, pagination: PaginationParams) -> "PaginatedResponse":
        return cls(items=items, total=total, page=pagination.page, size=pagination.size,
                   pages=page_count(total, pagination.size))
