"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    RawSchema,
    TimestampMixin,
    total_pages,
)
from models.marketplace import (
    DEFAULT_CATEGORY,
    is_default_category,
    normalize_category,
    MarketplaceCreate,
    MarketplaceResponse,
    MarketplaceListResponse,
    MarketplaceFieldResponse,
    MarketplaceFieldListResponse,
    MarketplaceFieldUpdate,
    MarketplaceFieldBulkUpdate,
    FieldBulkUpdateResponse,
    TemplateExtractionResponse,
    FieldsSummaryItem,
    FieldsSummaryResponse,
)
from models.mapping import (
    MappingOrigin,
    MappingSuggestion,
    FieldMappingEntry,
    FieldMappingSaveRequest,
    FieldMappingResponse,
    FieldMappingListResponse,
    SuggestRequest,
    SuggestResponse,
)
from models.session import (
    SessionStatus,
    STATUS_TRANSITIONS,
    OutputFormat,
    effective_data,
    UserColumn,
    SessionResponse,
    UploadResponse,
    SessionUpdateRequest,
    AssignMarketplaceRequest,
    AssignMarketplaceResponse,
    SessionRowResponse,
    RowListResponse,
    RowEditRequest,
    GenerateRequest,
    GeneratedFileResponse,
    GeneratedFileListResponse,
    DownloadUrlResponse,
    SkuRowResponse,
    SessionSummary,
    SkuListResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "RawSchema",
    "TimestampMixin",
    "total_pages",

    # Marketplace
    "DEFAULT_CATEGORY",
    "is_default_category",
    "normalize_category",
    "MarketplaceCreate",
    "MarketplaceResponse",
    "MarketplaceListResponse",
    "MarketplaceFieldResponse",
    "MarketplaceFieldListResponse",
    "MarketplaceFieldUpdate",
    "MarketplaceFieldBulkUpdate",
    "FieldBulkUpdateResponse",
    "TemplateExtractionResponse",
    "FieldsSummaryItem",
    "FieldsSummaryResponse",

    # Mapping
    "MappingOrigin",
    "MappingSuggestion",
    "FieldMappingEntry",
    "FieldMappingSaveRequest",
    "FieldMappingResponse",
    "FieldMappingListResponse",
    "SuggestRequest",
    "SuggestResponse",

    # Session
    "SessionStatus",
    "STATUS_TRANSITIONS",
    "OutputFormat",
    "effective_data",
    "UserColumn",
    "SessionResponse",
    "UploadResponse",
    "SessionUpdateRequest",
    "AssignMarketplaceRequest",
    "AssignMarketplaceResponse",
    "SessionRowResponse",
    "RowListResponse",
    "RowEditRequest",
    "GenerateRequest",
    "GeneratedFileResponse",
    "GeneratedFileListResponse",
    "DownloadUrlResponse",
    "SkuRowResponse",
    "SessionSummary",
    "SkuListResponse",
]
