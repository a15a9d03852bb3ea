"""
Base schema classes shared by the HR schemas.

Response schemas read straight from ORM rows (employees, attendance,
leave requests), so they all inherit from_attributes from BaseResponseSchema.
"""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base for schemas built from ORM rows.

    UUIDs serialize as strings and datetimes as ISO 8601, so punch times
    keep their UTC offset on the wire.
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base for request bodies. Unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base for partial updates.

    Every field is optional; services apply only what the client sent
    (model_dump(exclude_unset=True)).
    """
    model_config = ConfigDict(
        extra='ignore',
    )


class PaginatedResponse(BaseModel):
    """Page envelope for listings: page is 1-based, pages = ceil(total / size)."""
    total: int
    page: int = 1
    size: int = 20
    pages: int = 0
