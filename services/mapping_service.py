"""
Field mapping service.

A session's mapping is replaced as a whole on every save: all existing
rows are deleted, then the new set is inserted. The two statements are
not atomic; a failed insert leaves the session with no mappings and the
caller must retry the save.
"""

from collections import Counter
from typing import Optional
import structlog

from config import get_supabase_client
from models.mapping import (
    MappingOrigin,
    MappingSuggestion,
    FieldMappingEntry,
    FieldMappingResponse,
)
from models.session import SessionStatus, SessionResponse
from services.marketplace_service import get_marketplace_service
from services.mapping_suggestion_service import get_suggestion_service
from services.session_service import get_session_service, check_transition
from exceptions import DuplicateSourceColumnError, DatabaseError

logger = structlog.get_logger(__name__)


class MappingService:
    """
    Mapping store for upload sessions.

    Handles manual saves and persisting suggestions on marketplace
    assignment.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "field_mappings"

    def get(self, session_id: str) -> list[FieldMappingResponse]:
        """Stored mappings of a session in save order."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("session_id", session_id)
                .order("position")
                .execute()
            )
        except Exception as e:
            logger.error("get_mappings_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [FieldMappingResponse(**row) for row in result.data]

    def save(
        self,
        session_id: str,
        entries: list[FieldMappingEntry]
    ) -> list[FieldMappingResponse]:
        """
        Replace a session's mapping with the given entries.

        Entries without a target field are dropped. Two columns mapped to
        the same field are stored as given; at output time the later one
        wins. Saving moves the session to mapped.

        Raises:
            SessionNotFoundError: Unknown session
            DuplicateSourceColumnError: Same user_column given twice
            InvalidStatusTransitionError: Session is generating
        """
        session = get_session_service().get_by_id(session_id)

        counts = Counter(e.user_column for e in entries)
        duplicates = [col for col, n in counts.items() if n > 1]
        if duplicates:
            raise DuplicateSourceColumnError(duplicates)

        check_transition(session.status, SessionStatus.MAPPED)

        known = {c.name for c in session.user_columns}
        unknown = [e.user_column for e in entries if e.user_column not in known]
        if unknown:
            logger.warning("mapping_unknown_columns", session_id=session_id, columns=unknown)

        mapped = [e for e in entries if e.marketplace_field_name]
        targets = Counter(e.marketplace_field_name for e in mapped)
        shared = [f for f, n in targets.items() if n > 1]
        if shared:
            logger.warning("mapping_shared_targets", session_id=session_id, fields=shared)

        field_ids = self._field_ids(session)
        rows = [
            {
                "session_id": session_id,
                "user_column": e.user_column,
                "marketplace_field_name": e.marketplace_field_name,
                "marketplace_field_id": e.marketplace_field_id or field_ids.get(e.marketplace_field_name),
                "origin": e.origin.value,
                "confidence": e.confidence if e.origin == MappingOrigin.SUGGESTED else None,
            }
            for e in mapped
        ]

        self._replace(session_id, rows)
        get_session_service().transition(session, SessionStatus.MAPPED)

        logger.info("mappings_saved", session_id=session_id, count=len(rows))
        return self.get(session_id)

    def assign_marketplace(
        self,
        session_id: str,
        marketplace_id: str,
        category: Optional[str] = None
    ) -> tuple[SessionResponse, list[MappingSuggestion]]:
        """
        Attach a marketplace to a session and store suggested mappings.

        Any previous mapping is replaced. Suggestion failures only mean
        fewer stored mappings; the assignment itself still succeeds.

        Raises:
            SessionNotFoundError / MarketplaceNotFoundError: Unknown ids
            InvalidStatusTransitionError: Session is generating
        """
        sessions = get_session_service()
        marketplaces = get_marketplace_service()

        session = sessions.get_by_id(session_id)
        marketplace = marketplaces.get_by_id(marketplace_id)
        check_transition(session.status, SessionStatus.MAPPED)

        fields = marketplaces.list_fields(marketplace_id, category=category)
        suggestions = get_suggestion_service().suggest(
            session.user_columns,
            fields,
            marketplace.display_name
        )

        field_ids = {f.field_name: f.id for f in fields}
        rows = [
            {
                "session_id": session_id,
                "user_column": s.user_column,
                "marketplace_field_name": s.marketplace_field,
                "marketplace_field_id": field_ids.get(s.marketplace_field),
                "origin": MappingOrigin.SUGGESTED.value,
                "confidence": s.confidence,
            }
            for s in suggestions if s.marketplace_field
        ]

        self._replace(session_id, rows)

        session = sessions.transition(
            session,
            SessionStatus.MAPPED,
            marketplace_id=marketplace_id,
            category=category.strip() if category and category.strip() else None
        )

        logger.info(
            "marketplace_assigned",
            session_id=session_id,
            marketplace_id=marketplace_id,
            suggested=len(rows)
        )
        return session, suggestions

    def suggest(self, session_id: str, marketplace_id: str) -> list[MappingSuggestion]:
        """Suggestions for a session without storing them."""
        session = get_session_service().get_by_id(session_id)
        marketplaces = get_marketplace_service()
        marketplace = marketplaces.get_by_id(marketplace_id)

        return get_suggestion_service().suggest(
            session.user_columns,
            marketplaces.list_fields(marketplace_id, category=session.category),
            marketplace.display_name
        )

    def _field_ids(self, session: SessionResponse) -> dict[str, str]:
        if not session.marketplace_id:
            return {}
        fields = get_marketplace_service().list_fields(session.marketplace_id, category=session.category)
        return {f.field_name: f.id for f in fields}

    def _replace(self, session_id: str, rows: list[dict]) -> None:
        try:
            self.db.table(self.table).delete().eq("session_id", session_id).execute()
        except Exception as e:
            logger.error("delete_mappings_failed", session_id=session_id, error=str(e))
            raise DatabaseError("delete", str(e))

        if not rows:
            return

        # One insert shares one created_at; position keeps save order
        rows = [{**row, "position": i} for i, row in enumerate(rows)]

        try:
            self.db.table(self.table).insert(rows).execute()
        except Exception as e:
            # Old mappings are already gone at this point
            logger.error(
                "insert_mappings_failed",
                session_id=session_id,
                count=len(rows),
                error=str(e)
            )
            raise DatabaseError("insert", str(e))


# Singleton instance for convenience
_mapping_service: Optional[MappingService] = None


def get_mapping_service() -> MappingService:
    """Get or create MappingService instance."""
    global _mapping_service
    if _mapping_service is None:
        _mapping_service = MappingService()
    return _mapping_service
