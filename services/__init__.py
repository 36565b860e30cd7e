"""
Business logic services.

Each service handles one domain area.
"""

from services.storage_service import StorageService, get_storage_service
from services.marketplace_service import MarketplaceService, get_marketplace_service
from services.mapping_suggestion_service import (
    MappingSuggestionService,
    ClaudeMatcher,
    LexicalMatcher,
    get_suggestion_service,
)
from services.row_service import RowService, get_row_service
from services.session_service import SessionService, get_session_service
from services.mapping_service import MappingService, get_mapping_service
from services.generator_service import (
    GeneratorService,
    get_generator_service,
    generate_output,
    project_rows,
)

__all__ = [
    "StorageService",
    "get_storage_service",
    "MarketplaceService",
    "get_marketplace_service",
    "MappingSuggestionService",
    "ClaudeMatcher",
    "LexicalMatcher",
    "get_suggestion_service",
    "RowService",
    "get_row_service",
    "SessionService",
    "get_session_service",
    "MappingService",
    "get_mapping_service",
    "GeneratorService",
    "get_generator_service",
    "generate_output",
    "project_rows",
]
