"""
SKU API route.

Rows across all sessions, for browsing the whole catalog.
"""

from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from config import settings
from models.base import total_pages
from models.session import SkuListResponse
from services.row_service import get_row_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
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


@router.get("", response_model=SkuListResponse)
async def list_skus(
    marketplace_id: Optional[str] = Query(None, description="Filter by marketplace"),
    category: Optional[str] = Query(None, description="Filter by session category"),
    session_id: Optional[str] = Query(None, description="Filter by session"),
    page: int = Query(1, ge=1, description="Page number")
):
    """Rows of every matching session, newest session first."""
    try:
        page_size = settings.rows_page_size
        rows, total, sessions = get_row_service().list_sku_rows(
            marketplace_id=marketplace_id,
            category=category,
            session_id=session_id,
            page=page,
            page_size=page_size
        )

        return SkuListResponse(
            data=rows,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
            sessions=sessions
        )

    except Exception as e:
        return handle_error(e)
