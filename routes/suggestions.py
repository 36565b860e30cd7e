"""
Mapping suggestion API route.

Suggests column mappings for a session without storing them.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from models.mapping import SuggestRequest, SuggestResponse
from services.mapping_service import get_mapping_service
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


@router.post("/suggest-mappings", response_model=SuggestResponse)
async def suggest_mappings(data: SuggestRequest):
    """
    Suggest a marketplace field for every column of a session.

    Matcher failures come back as unmapped columns, never as errors.

    Raises:
        404: Session or marketplace not found
    """
    try:
        suggestions = get_mapping_service().suggest(data.session_id, data.marketplace_id)
        return SuggestResponse(suggestions=suggestions)

    except Exception as e:
        return handle_error(e)
