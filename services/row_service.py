"""
Session row service.

Rows are written once at upload time. Users then edit them through a
sparse overlay (edited_data) that is merged key-wise on every save; the
ingested data itself is never changed.
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.marketplace import is_default_category
from models.session import SessionRowResponse, SkuRowResponse, SessionSummary
from exceptions import SessionRowNotFoundError, DatabaseError

logger = structlog.get_logger(__name__)

# PostgREST caps a single select at 1000 rows
FETCH_PAGE_SIZE = 1000


class RowService:
    """
    Row storage and editing.

    Handles bulk insert at ingest, paginated reads and edit merging.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "session_rows"
        self.sessions_table = "upload_sessions"

    # ===================
    # WRITE OPERATIONS
    # ===================

    def bulk_create(
        self,
        session_id: str,
        rows: list[dict[str, str]],
        chunk_size: Optional[int] = None
    ) -> int:
        """
        Insert ingested rows in chunks.

        A failed chunk is logged and skipped: the session stays usable
        with whatever rows made it in. Every row carries its own
        row_index, so chunk order does not matter.

        Returns:
            Number of rows inserted
        """
        chunk_size = chunk_size or settings.row_insert_chunk_size
        inserted = 0
        failed_chunks = 0

        for start in range(0, len(rows), chunk_size):
            chunk = [
                {
                    "session_id": session_id,
                    "row_index": start + offset,
                    "data": row,
                }
                for offset, row in enumerate(rows[start:start + chunk_size])
            ]

            try:
                self.db.table(self.table).insert(chunk).execute()
                inserted += len(chunk)
            except Exception as e:
                failed_chunks += 1
                logger.error(
                    "row_chunk_insert_failed",
                    session_id=session_id,
                    chunk_start=start,
                    chunk_size=len(chunk),
                    error=str(e)
                )

        logger.info(
            "session_rows_created",
            session_id=session_id,
            inserted=inserted,
            total=len(rows),
            failed_chunks=failed_chunks
        )
        return inserted

    def apply_edits(
        self,
        session_id: str,
        row_id: str,
        edits: dict[str, str]
    ) -> SessionRowResponse:
        """
        Merge edits into a row's edited_data.

        New values overwrite earlier edits of the same column; columns
        not in this save keep their earlier edits. data is untouched.

        Raises:
            SessionRowNotFoundError: Row doesn't exist in this session
        """
        row = self.get_by_id(session_id, row_id)
        merged = {**(row.edited_data or {}), **edits}

        logger.info(
            "applying_row_edits",
            session_id=session_id,
            row_id=row_id,
            columns=list(edits.keys())
        )

        try:
            result = (
                self.db.table(self.table)
                .update({"edited_data": merged})
                .eq("id", row_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "apply_row_edits_failed",
                row_id=row_id,
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        if not result.data:
            raise SessionRowNotFoundError(row_id)

        return SessionRowResponse(**result.data[0])

    # ===================
    # READ OPERATIONS
    # ===================

    def get_by_id(self, session_id: str, row_id: str) -> SessionRowResponse:
        """
        Get one row of a session.

        Raises:
            SessionRowNotFoundError: Row doesn't exist in this session
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", row_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_row_failed", row_id=row_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SessionRowNotFoundError(row_id)

        return SessionRowResponse(**result.data[0])

    def list_for_session(
        self,
        session_id: str,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> tuple[list[SessionRowResponse], int]:
        """
        One page of a session's rows, ordered by row_index.

        Returns:
            Tuple of (rows, total count)
        """
        page_size = page_size or settings.rows_page_size
        offset = (page - 1) * page_size

        try:
            result = (
                self.db.table(self.table)
                .select("*", count="exact")
                .eq("session_id", session_id)
                .order("row_index")
                .range(offset, offset + page_size - 1)
                .execute()
            )
        except Exception as e:
            logger.error("list_rows_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        rows = [SessionRowResponse(**row) for row in result.data]
        return rows, result.count or 0

    def get_all_for_session(self, session_id: str) -> list[SessionRowResponse]:
        """Every row of a session in row_index order."""
        rows: list[SessionRowResponse] = []
        start = 0

        try:
            while True:
                result = (
                    self.db.table(self.table)
                    .select("*")
                    .eq("session_id", session_id)
                    .order("row_index")
                    .range(start, start + FETCH_PAGE_SIZE - 1)
                    .execute()
                )
                rows.extend(SessionRowResponse(**row) for row in result.data)
                if len(result.data) < FETCH_PAGE_SIZE:
                    break
                start += FETCH_PAGE_SIZE

        except Exception as e:
            logger.error("get_all_rows_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        logger.debug("session_rows_loaded", session_id=session_id, count=len(rows))
        return rows

    def count_for_session(self, session_id: str) -> int:
        try:
            result = (
                self.db.table(self.table)
                .select("id", count="exact")
                .eq("session_id", session_id)
                .execute()
            )
            return result.count or 0
        except Exception as e:
            logger.error("count_rows_failed", session_id=session_id, error=str(e))
            raise DatabaseError("count", str(e))

    # ===================
    # SKU VIEW
    # ===================

    def list_sku_rows(
        self,
        marketplace_id: Optional[str] = None,
        category: Optional[str] = None,
        session_id: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> tuple[list[SkuRowResponse], int, list[SessionSummary]]:
        """
        Rows across sessions, newest session first, then row_index.

        Returns:
            Tuple of (page of rows, total matching rows, matching sessions)
        """
        page_size = page_size or settings.rows_page_size
        offset = (page - 1) * page_size

        logger.info(
            "listing_sku_rows",
            marketplace_id=marketplace_id,
            category=category,
            session_id=session_id,
            page=page
        )

        try:
            query = (
                self.db.table(self.sessions_table)
                .select("id, original_filename, marketplace_id, category, created_at")
            )
            if marketplace_id:
                query = query.eq("marketplace_id", marketplace_id)
            if category and not is_default_category(category):
                query = query.eq("category", category.strip())
            sessions_result = query.order("created_at", desc=True).execute()

            display_names = {
                row["id"]: row.get("display_name")
                for row in self.db.table("marketplaces").select("id, display_name").execute().data
            }
        except Exception as e:
            logger.error("list_sku_sessions_failed", error=str(e))
            raise DatabaseError("select", str(e))

        sessions = [SessionSummary(**row) for row in sessions_result.data]
        if category and is_default_category(category):
            # "Default" covers null and the literal label
            sessions = [s for s in sessions if is_default_category(s.category)]
        scanned = [s for s in sessions if session_id is None or s.id == session_id]

        rows: list[SkuRowResponse] = []
        total = 0
        remaining = page_size

        for session in scanned:
            count = self.count_for_session(session.id)

            if remaining > 0 and offset < total + count:
                start = max(0, offset - total)
                take = min(count - start, remaining)
                try:
                    result = (
                        self.db.table(self.table)
                        .select("*")
                        .eq("session_id", session.id)
                        .order("row_index")
                        .range(start, start + take - 1)
                        .execute()
                    )
                except Exception as e:
                    logger.error("list_sku_rows_failed", session_id=session.id, error=str(e))
                    raise DatabaseError("select", str(e))

                for row in result.data:
                    rows.append(SkuRowResponse(
                        **row,
                        original_filename=session.original_filename,
                        marketplace_id=session.marketplace_id,
                        category=session.category,
                        marketplace_display_name=display_names.get(session.marketplace_id),
                    ))
                remaining -= len(result.data)

            total += count

        return rows, total, sessions


# Singleton instance for convenience
_row_service: Optional[RowService] = None


def get_row_service() -> RowService:
    """Get or create RowService instance."""
    global _row_service
    if _row_service is None:
        _row_service = RowService()
    return _row_service
