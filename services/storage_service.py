"""
Object storage service for raw uploads, templates and generated files.

Thin wrapper over Supabase Storage buckets.
"""

import time
from typing import Optional
import structlog

from config import get_supabase_client, get_admin_client, settings
from exceptions import StorageError
from utils.text_utils import safe_filename

logger = structlog.get_logger(__name__)

CONTENT_TYPES = {
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xlsm": "application/vnd.ms-excel.sheet.macroEnabled.12",
}


def content_type_for(filename: str) -> str:
    """MIME type by extension, octet-stream when unknown."""
    for ext, content_type in CONTENT_TYPES.items():
        if filename.lower().endswith(ext):
            return content_type
    return "application/octet-stream"


def timestamped_path(filename: str, prefix: Optional[str] = None) -> str:
    """
    Storage path "<prefix>/<epoch ms>-<safe filename>".

    The timestamp keeps repeated uploads of the same name apart.
    """
    name = f"{int(time.time() * 1000)}-{safe_filename(filename)}"
    return f"{prefix}/{name}" if prefix else name


class StorageService:
    """
    Upload bytes and issue signed URLs.

    Raises StorageError on any bucket failure; callers decide whether
    that is fatal.
    """

    def __init__(self):
        # Service role client when configured, anon client otherwise
        self.db = get_admin_client() or get_supabase_client()

    def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False
    ) -> str:
        """
        Store bytes at bucket/path.

        Returns:
            The storage path
        """
        logger.debug(
            "uploading_to_storage",
            bucket=bucket,
            path=path,
            size_bytes=len(content)
        )

        try:
            self.db.storage.from_(bucket).upload(
                path,
                content,
                file_options={
                    "content-type": content_type or content_type_for(path),
                    "upsert": "true" if upsert else "false",
                }
            )
        except Exception as e:
            logger.error(
                "storage_upload_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise StorageError("upload", bucket)

        logger.info("uploaded_to_storage", bucket=bucket, path=path)
        return path

    def signed_url(
        self,
        bucket: str,
        path: str,
        expires_in: Optional[int] = None
    ) -> str:
        """
        Temporary download URL for bucket/path.

        Raises:
            StorageError: If no URL could be created
        """
        expires_in = expires_in or settings.signed_url_expiry_seconds

        try:
            result = self.db.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as e:
            logger.error(
                "signed_url_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise StorageError("signed_url", bucket)

        url = (result or {}).get("signedURL") or (result or {}).get("signedUrl")
        if not url:
            logger.error("signed_url_empty", bucket=bucket, path=path)
            raise StorageError("signed_url", bucket)

        return url


# Singleton instance for convenience
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """Get or create StorageService instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
