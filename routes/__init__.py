"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.marketplaces import router as marketplaces_router
from routes.upload import router as upload_router
from routes.sessions import router as sessions_router
from routes.suggestions import router as suggestions_router
from routes.skus import router as skus_router

__all__ = [
    "marketplaces_router",
    "upload_router",
    "sessions_router",
    "suggestions_router",
    "skus_router",
]
