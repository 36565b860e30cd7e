"""
Upload session schemas.

An upload session is one upload-to-export run: the parsed source file,
its rows, its field mappings and the files generated from it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, computed_field, field_validator

from models.base import BaseSchema, RawSchema, TimestampMixin
from models.marketplace import MarketplaceResponse
from models.mapping import MappingSuggestion


class SessionStatus(str, Enum):
    """Session lifecycle."""
    UPLOADED = "uploaded"
    MAPPED = "mapped"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


# Allowed status moves. done/error may re-enter generating (regenerate)
# or go back to mapped when the user edits the mapping again.
STATUS_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.UPLOADED: {SessionStatus.MAPPED},
    SessionStatus.MAPPED: {SessionStatus.MAPPED, SessionStatus.GENERATING},
    SessionStatus.GENERATING: {SessionStatus.DONE, SessionStatus.ERROR},
    SessionStatus.DONE: {SessionStatus.MAPPED, SessionStatus.GENERATING},
    SessionStatus.ERROR: {SessionStatus.MAPPED, SessionStatus.GENERATING},
}


class OutputFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"


def effective_data(
    data: Optional[dict[str, str]],
    edited_data: Optional[dict[str, str]]
) -> dict[str, str]:
    """
    Original row values overlaid with the user's edits.

    Always computed on read, never stored.
    """
    return {**(data or {}), **(edited_data or {})}


class UserColumn(RawSchema):
    """A column of the uploaded file with up to 3 sample values."""

    name: str
    sample_values: list[str] = Field(default_factory=list)


class SessionResponse(BaseSchema, TimestampMixin):
    """Upload session with all fields."""

    id: str = Field(..., description="Session UUID")
    original_filename: str
    file_path: Optional[str] = None
    marketplace_id: Optional[str] = None
    category: Optional[str] = None
    status: SessionStatus
    row_count: Optional[int] = None
    user_columns: list[UserColumn] = Field(default_factory=list)
    marketplace: Optional[MarketplaceResponse] = None

    @field_validator("user_columns", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class UploadResponse(BaseSchema):
    session_id: str
    session: SessionResponse


class SessionUpdateRequest(BaseSchema):
    category: Optional[str] = None


class AssignMarketplaceRequest(BaseSchema):
    marketplace_id: str = Field(..., min_length=1)
    category: Optional[str] = None


class AssignMarketplaceResponse(BaseSchema):
    session: SessionResponse
    suggestions: list[MappingSuggestion]


class SessionRowResponse(RawSchema):
    """
    One ingested row.

    data is never modified after ingest; edited_data holds only the
    columns the user changed.
    """

    id: str
    session_id: str
    row_index: int
    data: dict[str, str] = Field(default_factory=dict)
    edited_data: Optional[dict[str, str]] = None

    @computed_field
    @property
    def effective_data(self) -> dict[str, str]:
        return effective_data(self.data, self.edited_data)


class RowListResponse(BaseSchema):
    """Rows of one session with pagination."""

    data: list[SessionRowResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class RowEditRequest(RawSchema):
    edited_data: dict[str, str]


class GenerateRequest(BaseSchema):
    format: OutputFormat


class GeneratedFileResponse(BaseSchema):
    """A generated output file. Immutable once written."""

    id: str
    session_id: str
    file_path: str
    output_format: OutputFormat
    row_count: Optional[int] = None
    created_at: Optional[datetime] = None


class GeneratedFileListResponse(BaseSchema):
    data: list[GeneratedFileResponse]
    total: int


class DownloadUrlResponse(BaseSchema):
    url: str


# ===================
# SKU VIEW
# ===================

class SkuRowResponse(SessionRowResponse):
    """Row listed across sessions, with its owning session's context."""

    original_filename: Optional[str] = None
    marketplace_id: Optional[str] = None
    category: Optional[str] = None
    marketplace_display_name: Optional[str] = None


class SessionSummary(BaseSchema):
    id: str
    original_filename: str
    marketplace_id: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None


class SkuListResponse(BaseSchema):
    data: list[SkuRowResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
    sessions: list[SessionSummary]
