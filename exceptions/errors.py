"""
Custom exception classes for the application.

Every error reported to a caller carries a stable code and a short
human-readable message. Internal details stay in the logs.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "SESSION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )
        # Raw driver message kept for logs only
        self.reason = message


# ===================
# MARKETPLACE ERRORS
# ===================

class MarketplaceNotFoundError(NotFoundError):
    """Marketplace not found."""

    def __init__(self, marketplace_id: str):
        super().__init__(
            resource="Marketplace",
            identifier=marketplace_id,
            code="MARKETPLACE_NOT_FOUND"
        )


class MarketplaceNameExistsError(ConflictError):
    """Marketplace name already exists."""

    def __init__(self, name: str):
        super().__init__(
            code="MARKETPLACE_NAME_EXISTS",
            message="Marketplace with this name already exists",
            details={"name": name}
        )


class FieldUpdateError(AppError):
    """One or more field updates in a batch failed."""

    def __init__(self, failed: list[dict]):
        super().__init__(
            code="FIELD_UPDATE_FAILED",
            message=f"{len(failed)} field update(s) failed",
            status_code=500,
            details={"failed": failed}
        )


# ===================
# FILE PARSING ERRORS
# ===================

class FileParseError(ValidationError):
    """Uploaded file could not be read as CSV or workbook."""

    def __init__(
        self,
        message: str = "Could not read file",
        details: Optional[dict] = None
    ):
        super().__init__(
            code="FILE_PARSE_ERROR",
            message=message,
            details=details
        )


class NoColumnsError(ValidationError):
    """Header row produced no usable columns."""

    def __init__(self, filename: Optional[str] = None):
        super().__init__(
            code="NO_COLUMNS",
            message="Could not extract columns from file",
            details={"filename": filename} if filename else None
        )


class InvalidFileTypeError(ValidationError):
    """File extension not accepted."""

    def __init__(self, filename: str, allowed: list[str]):
        super().__init__(
            code="INVALID_FILE_TYPE",
            message=f"Invalid file type. Allowed: {', '.join(allowed)}",
            details={"filename": filename, "allowed": allowed}
        )


class FileTooLargeError(ValidationError):
    """File exceeds the upload size limit."""

    def __init__(self, size_bytes: int, max_mb: int):
        super().__init__(
            code="FILE_TOO_LARGE",
            message=f"File too large (max {max_mb}MB)",
            details={"size_bytes": size_bytes, "max_mb": max_mb}
        )


# ===================
# SESSION ERRORS
# ===================

class SessionNotFoundError(NotFoundError):
    """Upload session not found."""

    def __init__(self, session_id: str):
        super().__init__(
            resource="Session",
            identifier=session_id,
            code="SESSION_NOT_FOUND"
        )


class SessionRowNotFoundError(NotFoundError):
    """Session row not found."""

    def __init__(self, row_id: str):
        super().__init__(
            resource="Row",
            identifier=row_id,
            code="SESSION_ROW_NOT_FOUND"
        )


class GeneratedFileNotFoundError(NotFoundError):
    """Generated file not found."""

    def __init__(self, file_id: str):
        super().__init__(
            resource="Generated file",
            identifier=file_id,
            code="GENERATED_FILE_NOT_FOUND"
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid session status transition."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
            }
        )


class MarketplaceNotAssignedError(ValidationError):
    """Session has no marketplace yet."""

    def __init__(self, session_id: str):
        super().__init__(
            code="MARKETPLACE_NOT_ASSIGNED",
            message="Session has no marketplace assigned",
            details={"session_id": session_id}
        )


# ===================
# MAPPING ERRORS
# ===================

class DuplicateSourceColumnError(ValidationError):
    """Same source column mapped more than once in one save."""

    def __init__(self, columns: list[str]):
        super().__init__(
            code="DUPLICATE_SOURCE_COLUMN",
            message="Each source column may appear only once",
            details={"columns": columns}
        )


# ===================
# GENERATION / STORAGE ERRORS
# ===================

class GenerationError(AppError):
    """Output file generation failed."""

    def __init__(self, session_id: str, message: str = "Failed to generate output file"):
        super().__init__(
            code="GENERATION_FAILED",
            message=message,
            status_code=500,
            details={"session_id": session_id}
        )


class StorageError(AppError):
    """Object storage operation failed."""

    def __init__(self, operation: str, bucket: str):
        super().__init__(
            code="STORAGE_ERROR",
            message=f"Storage {operation} failed",
            status_code=500,
            details={"operation": operation, "bucket": bucket}
        )
