"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # Marketplaces
    MarketplaceNotFoundError,
    MarketplaceNameExistsError,
    FieldUpdateError,

    # File parsing
    FileParseError,
    NoColumnsError,
    InvalidFileTypeError,
    FileTooLargeError,

    # Sessions
    SessionNotFoundError,
    SessionRowNotFoundError,
    GeneratedFileNotFoundError,
    InvalidStatusTransitionError,
    MarketplaceNotAssignedError,

    # Mappings
    DuplicateSourceColumnError,

    # Generation / storage
    GenerationError,
    StorageError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # Marketplaces
    "MarketplaceNotFoundError",
    "MarketplaceNameExistsError",
    "FieldUpdateError",

    # File parsing
    "FileParseError",
    "NoColumnsError",
    "InvalidFileTypeError",
    "FileTooLargeError",

    # Sessions
    "SessionNotFoundError",
    "SessionRowNotFoundError",
    "GeneratedFileNotFoundError",
    "InvalidStatusTransitionError",
    "MarketplaceNotAssignedError",

    # Mappings
    "DuplicateSourceColumnError",

    # Generation / storage
    "GenerationError",
    "StorageError",
]
