"""
Field mapping schemas.

A field mapping links one column of the uploaded file to one
marketplace field, with provenance (suggested or manual).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, model_validator

from models.base import BaseSchema


class MappingOrigin(str, Enum):
    """Where a mapping came from."""
    SUGGESTED = "suggested"
    MANUAL = "manual"


class MappingSuggestion(BaseSchema):
    """
    One suggestion per source column.

    marketplace_field is None when no usable match was found.
    """

    user_column: str
    marketplace_field: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class FieldMappingEntry(BaseSchema):
    """
    Mapping entry sent by the client on save.

    marketplace_field_name None means explicitly unmapped; such entries
    are not stored. Manual entries never carry a confidence.
    """

    user_column: str = Field(..., min_length=1)
    marketplace_field_name: Optional[str] = None
    marketplace_field_id: Optional[str] = None
    origin: MappingOrigin = MappingOrigin.MANUAL
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def manual_has_no_confidence(cls, data):
        if isinstance(data, dict) and data.get("origin", MappingOrigin.MANUAL) == MappingOrigin.MANUAL:
            data = {**data, "confidence": None}
        return data


class FieldMappingSaveRequest(BaseSchema):
    mappings: list[FieldMappingEntry]


class FieldMappingResponse(BaseSchema):
    """Stored mapping."""

    id: str
    session_id: str
    user_column: str
    marketplace_field_id: Optional[str] = None
    marketplace_field_name: Optional[str] = None
    origin: MappingOrigin = MappingOrigin.MANUAL
    confidence: Optional[float] = None
    position: Optional[int] = None
    created_at: Optional[datetime] = None


class FieldMappingListResponse(BaseSchema):
    data: list[FieldMappingResponse]
    total: int


class SuggestRequest(BaseSchema):
    session_id: str
    marketplace_id: str


class SuggestResponse(BaseSchema):
    suggestions: list[MappingSuggestion]
