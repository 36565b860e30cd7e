"""
Base schemas and mixins for all models.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Features:
        - Auto-trim whitespace from strings
        - Validate on attribute assignment
        - Allow ORM objects (from_attributes)
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


class RawSchema(BaseModel):
    """
    Base for schemas carrying user cell values.

    Cell text is kept exactly as ingested, so no whitespace trimming.
    """
    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True
    )


class TimestampMixin(BaseModel):
    """Add timestamps to response models."""
    created_at: datetime
    updated_at: Optional[datetime] = None


def total_pages(total: int, page_size: int) -> int:
    """Ceiling division for paginated responses."""
    return (total + page_size - 1) // page_size
