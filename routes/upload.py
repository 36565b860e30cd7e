"""
Upload API route.

Accepts a catalog file and creates an upload session from it.
"""

from typing import Optional

from fastapi import APIRouter, UploadFile, File, Form
from fastapi.responses import JSONResponse
import structlog

from models.session import UploadResponse
from services.session_service import get_session_service
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


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = File(..., description="Catalog file (.csv, .xlsx, .xlsm)"),
    marketplace_id: Optional[str] = Form(None, description="Target marketplace"),
    category: Optional[str] = Form(None, description="Field category scope")
):
    """
    Upload a catalog file.

    Type and size are checked before the file is parsed.

    Raises:
        404: Marketplace not found
        422: Invalid type, too large, unreadable or no columns
    """
    try:
        content = await file.read()
        session = get_session_service().create_from_upload(
            content,
            file.filename or "",
            marketplace_id=marketplace_id,
            category=category
        )
        return UploadResponse(session_id=session.id, session=session)

    except Exception as e:
        return handle_error(e)
