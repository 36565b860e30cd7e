"""
Upload session API routes.

Session details, marketplace assignment, mappings, row edits and
output generation.
"""

from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from config import settings
from models.base import total_pages
from models.mapping import (
    FieldMappingSaveRequest,
    FieldMappingListResponse,
)
from models.session import (
    SessionResponse,
    SessionUpdateRequest,
    AssignMarketplaceRequest,
    AssignMarketplaceResponse,
    RowListResponse,
    RowEditRequest,
    SessionRowResponse,
    GenerateRequest,
    GeneratedFileResponse,
    GeneratedFileListResponse,
    DownloadUrlResponse,
)
from services.session_service import get_session_service
from services.mapping_service import get_mapping_service
from services.row_service import get_row_service
from services.generator_service import get_generator_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# SESSION
# ===================

@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
    """
    Get a session with its marketplace.

    Raises:
        404: Session not found
    """
    try:
        return get_session_service().get_by_id(session_id)

    except Exception as e:
        return handle_error(e)


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(session_id: str, data: SessionUpdateRequest):
    """
    Set the session's category.

    Raises:
        404: Session not found
    """
    try:
        return get_session_service().set_category(session_id, data.category)

    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/marketplace", response_model=AssignMarketplaceResponse)
async def assign_marketplace(session_id: str, data: AssignMarketplaceRequest):
    """
    Assign a marketplace and store suggested mappings.

    Suggestions that failed come back unmapped; the assignment still
    succeeds.

    Raises:
        404: Session or marketplace not found
        422: Session is being generated
    """
    try:
        session, suggestions = get_mapping_service().assign_marketplace(
            session_id,
            data.marketplace_id,
            category=data.category
        )
        return AssignMarketplaceResponse(session=session, suggestions=suggestions)

    except Exception as e:
        return handle_error(e)


# ===================
# MAPPINGS
# ===================

@router.get("/{session_id}/mappings", response_model=FieldMappingListResponse)
async def get_mappings(session_id: str):
    """Stored mappings of a session."""
    try:
        get_session_service().get_by_id(session_id)
        mappings = get_mapping_service().get(session_id)
        return FieldMappingListResponse(data=mappings, total=len(mappings))

    except Exception as e:
        return handle_error(e)


@router.put("/{session_id}/mappings", response_model=FieldMappingListResponse)
async def save_mappings(session_id: str, data: FieldMappingSaveRequest):
    """
    Replace a session's mappings.

    Raises:
        404: Session not found
        422: Duplicate source column or session is being generated
    """
    try:
        mappings = get_mapping_service().save(session_id, data.mappings)
        return FieldMappingListResponse(data=mappings, total=len(mappings))

    except Exception as e:
        return handle_error(e)


# ===================
# ROWS
# ===================

@router.get("/{session_id}/rows", response_model=RowListResponse)
async def list_rows(
    session_id: str,
    page: int = Query(1, ge=1, description="Page number")
):
    """Rows of a session with effective values, ordered by row_index."""
    try:
        get_session_service().get_by_id(session_id)

        page_size = settings.rows_page_size
        rows, total = get_row_service().list_for_session(session_id, page=page, page_size=page_size)

        return RowListResponse(
            data=rows,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size)
        )

    except Exception as e:
        return handle_error(e)


@router.patch("/{session_id}/rows", response_model=SessionRowResponse)
async def edit_row(
    session_id: str,
    data: RowEditRequest,
    row_id: str = Query(..., description="Row UUID")
):
    """
    Merge edits into a row.

    Raises:
        404: Row not found in this session
    """
    try:
        return get_row_service().apply_edits(session_id, row_id, data.edited_data)

    except Exception as e:
        return handle_error(e)


# ===================
# GENERATION
# ===================

@router.post("/{session_id}/generate", response_model=GeneratedFileResponse, status_code=201)
async def generate(session_id: str, data: GenerateRequest):
    """
    Generate an output file in the marketplace's layout.

    Raises:
        404: Session not found
        422: No marketplace assigned, no fields or wrong status
        500: Generation failed (session is set to error)
    """
    try:
        return get_generator_service().generate(session_id, data.format)

    except Exception as e:
        return handle_error(e)


@router.get("/{session_id}/files", response_model=GeneratedFileListResponse)
async def list_files(session_id: str):
    """Generated files of a session, newest first."""
    try:
        files = get_session_service().list_files(session_id)
        return GeneratedFileListResponse(data=files, total=len(files))

    except Exception as e:
        return handle_error(e)


@router.get("/{session_id}/download/{file_id}", response_model=DownloadUrlResponse)
async def download_file(session_id: str, file_id: str):
    """
    Signed download URL for a generated file.

    Raises:
        404: File not found in this session
    """
    try:
        return DownloadUrlResponse(url=get_session_service().get_download_url(session_id, file_id))

    except Exception as e:
        return handle_error(e)
