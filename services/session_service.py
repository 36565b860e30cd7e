"""
Upload session service.

Turns an uploaded file into a session (stored blob, parsed columns,
persisted rows), tracks its status and serves its generated files.
"""

from typing import Optional, Union
import structlog

from config import get_supabase_client, settings
from models.session import (
    SessionStatus,
    STATUS_TRANSITIONS,
    SessionResponse,
    GeneratedFileResponse,
    OutputFormat,
)
from parsers.tabular_parser import parse_file, validate_upload
from services.marketplace_service import get_marketplace_service
from services.row_service import get_row_service
from services.storage_service import get_storage_service, timestamped_path
from exceptions import (
    SessionNotFoundError,
    GeneratedFileNotFoundError,
    InvalidStatusTransitionError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)


def check_transition(current: SessionStatus, new: SessionStatus) -> None:
    """
    Raises:
        InvalidStatusTransitionError: If current -> new is not allowed
    """
    if new not in STATUS_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransitionError(current.value, new.value)


class SessionService:
    """
    Session business logic.

    Handles ingest, status changes and generated file records.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "upload_sessions"
        self.files_table = "generated_files"

    # ===================
    # INGEST
    # ===================

    def create_from_upload(
        self,
        content: bytes,
        filename: str,
        marketplace_id: Optional[str] = None,
        category: Optional[str] = None
    ) -> SessionResponse:
        """
        Ingest an uploaded file.

        The raw bytes are stored first, then the session record, then the
        rows in chunks. Row chunk failures don't fail the upload.

        Raises:
            InvalidFileTypeError / FileTooLargeError: Rejected up front
            FileParseError / NoColumnsError: Unreadable or empty file
            MarketplaceNotFoundError: Unknown marketplace_id
            StorageError: Raw file could not be stored
        """
        logger.info(
            "ingesting_upload",
            filename=filename,
            size_bytes=len(content),
            marketplace_id=marketplace_id
        )

        validate_upload(filename, len(content), settings.max_upload_size_bytes)
        parsed = parse_file(content, filename, max_rows=settings.max_rows_stored)

        if marketplace_id:
            get_marketplace_service().get_by_id(marketplace_id)

        file_path = get_storage_service().upload(
            settings.uploads_bucket,
            timestamped_path(filename),
            content
        )

        try:
            result = self.db.table(self.table).insert({
                "original_filename": filename,
                "file_path": file_path,
                "marketplace_id": marketplace_id or None,
                "category": category.strip() if category and category.strip() else None,
                "status": SessionStatus.UPLOADED.value,
                "row_count": parsed.row_count,
                "user_columns": parsed.columns_to_dict(),
            }).execute()
            session = SessionResponse(**result.data[0])

        except Exception as e:
            logger.error("create_session_failed", filename=filename, error=str(e))
            raise DatabaseError("insert", str(e))

        inserted = get_row_service().bulk_create(session.id, parsed.rows)

        logger.info(
            "upload_ingested",
            session_id=session.id,
            sheet=parsed.sheet_name,
            columns=len(parsed.columns),
            row_count=parsed.row_count,
            rows_stored=inserted,
            truncated=parsed.truncated
        )
        return session

    # ===================
    # SESSIONS
    # ===================

    def get_by_id(self, session_id: str) -> SessionResponse:
        """
        Get a session with its marketplace.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        logger.debug("getting_session", session_id=session_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*, marketplace:marketplaces(*)")
                .eq("id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SessionNotFoundError(session_id)

        return SessionResponse(**result.data[0])

    def update(self, session_id: str, data: dict) -> SessionResponse:
        """Write raw columns and return the fresh session."""
        try:
            result = (
                self.db.table(self.table)
                .update(data)
                .eq("id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise SessionNotFoundError(session_id)

        return self.get_by_id(session_id)

    def set_category(self, session_id: str, category: Optional[str]) -> SessionResponse:
        """
        Change the category that scopes generation.

        Stored stripped; blank clears it.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        category = category.strip() if category and category.strip() else None
        logger.info("session_category_set", session_id=session_id, category=category)
        return self.update(session_id, {"category": category})

    def transition(
        self,
        session: Union[str, SessionResponse],
        new_status: SessionStatus,
        **extra
    ) -> SessionResponse:
        """
        Move a session to a new status.

        Raises:
            SessionNotFoundError: If session doesn't exist
            InvalidStatusTransitionError: If the move isn't allowed
        """
        if isinstance(session, str):
            session = self.get_by_id(session)

        check_transition(session.status, new_status)

        logger.info(
            "session_status_changed",
            session_id=session.id,
            old_status=session.status.value,
            new_status=new_status.value
        )
        return self.update(session.id, {"status": new_status.value, **extra})

    # ===================
    # GENERATED FILES
    # ===================

    def record_generated_file(
        self,
        session_id: str,
        file_path: str,
        output_format: OutputFormat,
        row_count: int
    ) -> GeneratedFileResponse:
        try:
            result = self.db.table(self.files_table).insert({
                "session_id": session_id,
                "file_path": file_path,
                "output_format": output_format.value,
                "row_count": row_count,
            }).execute()
        except Exception as e:
            logger.error("record_generated_file_failed", session_id=session_id, error=str(e))
            raise DatabaseError("insert", str(e))

        return GeneratedFileResponse(**result.data[0])

    def list_files(self, session_id: str) -> list[GeneratedFileResponse]:
        """Generated files of a session, newest first."""
        self.get_by_id(session_id)

        try:
            result = (
                self.db.table(self.files_table)
                .select("*")
                .eq("session_id", session_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error("list_generated_files_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [GeneratedFileResponse(**row) for row in result.data]

    def get_file(self, session_id: str, file_id: str) -> GeneratedFileResponse:
        """
        Raises:
            GeneratedFileNotFoundError: No such file in this session
        """
        try:
            result = (
                self.db.table(self.files_table)
                .select("*")
                .eq("id", file_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_generated_file_failed", file_id=file_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise GeneratedFileNotFoundError(file_id)

        return GeneratedFileResponse(**result.data[0])

    def get_download_url(self, session_id: str, file_id: str) -> str:
        """Signed URL for a generated file."""
        generated = self.get_file(session_id, file_id)
        return get_storage_service().signed_url(
            settings.generated_bucket,
            generated.file_path
        )


# Singleton instance for convenience
_session_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    """Get or create SessionService instance."""
    global _session_service
    if _session_service is None:
        _session_service = SessionService()
    return _session_service
