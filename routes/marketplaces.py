"""
Marketplace admin API routes.

Marketplaces, their field sets and template uploads.
"""

from typing import Optional

from fastapi import APIRouter, Query, UploadFile, File, Form
from fastapi.responses import JSONResponse
import structlog

from models.marketplace import (
    MarketplaceCreate,
    MarketplaceResponse,
    MarketplaceListResponse,
    MarketplaceFieldListResponse,
    MarketplaceFieldBulkUpdate,
    FieldBulkUpdateResponse,
    TemplateExtractionResponse,
    FieldsSummaryResponse,
)
from services.marketplace_service import get_marketplace_service
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
# MARKETPLACES
# ===================

@router.get("", response_model=MarketplaceListResponse)
async def list_marketplaces():
    """List all marketplaces ordered by display name."""
    try:
        marketplaces = get_marketplace_service().get_all()
        return MarketplaceListResponse(data=marketplaces, total=len(marketplaces))

    except Exception as e:
        return handle_error(e)


@router.post("", response_model=MarketplaceResponse, status_code=201)
async def create_marketplace(data: MarketplaceCreate):
    """
    Create a marketplace.

    Raises:
        409: Name already taken
    """
    try:
        return get_marketplace_service().create(data)

    except Exception as e:
        return handle_error(e)


@router.get("/fields-summary", response_model=FieldsSummaryResponse)
async def fields_summary():
    """Field count and categories for every marketplace."""
    try:
        return FieldsSummaryResponse(summary=get_marketplace_service().fields_summary())

    except Exception as e:
        return handle_error(e)


@router.get("/{marketplace_id}", response_model=MarketplaceResponse)
async def get_marketplace(marketplace_id: str):
    """
    Get a single marketplace.

    Raises:
        404: Marketplace not found
    """
    try:
        return get_marketplace_service().get_by_id(marketplace_id)

    except Exception as e:
        return handle_error(e)


@router.delete("/{marketplace_id}")
async def delete_marketplace(
    marketplace_id: str,
    category: Optional[str] = Query(None, description="Only delete this category's fields")
):
    """
    Delete a marketplace, or only one category of its fields.

    "Default" as category deletes the uncategorized fields.
    """
    try:
        get_marketplace_service().delete_fields(marketplace_id, category=category)
        return {"success": True}

    except Exception as e:
        return handle_error(e)


# ===================
# FIELDS
# ===================

@router.get("/{marketplace_id}/fields", response_model=MarketplaceFieldListResponse)
async def list_fields(
    marketplace_id: str,
    category: Optional[str] = Query(None, description="Category scope, 'Default' for uncategorized")
):
    """Fields of a marketplace in output order."""
    try:
        service = get_marketplace_service()
        service.get_by_id(marketplace_id)

        fields = service.list_fields(marketplace_id, category=category)
        return MarketplaceFieldListResponse(data=fields, total=len(fields))

    except Exception as e:
        return handle_error(e)


@router.put("/{marketplace_id}/fields", response_model=FieldBulkUpdateResponse)
async def update_fields(marketplace_id: str, data: MarketplaceFieldBulkUpdate):
    """
    Update required flag, description, display name or order of fields.

    Raises:
        500: One or more updates failed (the others are still applied)
    """
    try:
        updated = get_marketplace_service().update_fields(marketplace_id, data.fields)
        return FieldBulkUpdateResponse(success=True, updated=updated)

    except Exception as e:
        return handle_error(e)


@router.post(
    "/{marketplace_id}/template",
    response_model=TemplateExtractionResponse,
    status_code=201
)
async def upload_template(
    marketplace_id: str,
    file: UploadFile = File(..., description="Template file (.csv, .xlsx, .xlsm)"),
    category: Optional[str] = Form(None, description="Category scope to replace")
):
    """
    Upload a marketplace template and rebuild fields from its header.

    Raises:
        404: Marketplace not found
        422: Invalid type, too large, unreadable or no columns
    """
    try:
        content = await file.read()
        return get_marketplace_service().upload_template(
            marketplace_id,
            content,
            file.filename or "",
            category=category
        )

    except Exception as e:
        return handle_error(e)
