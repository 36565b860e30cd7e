"""
File parsers module.
"""

from parsers.tabular_parser import (
    parse_file,
    parse_grid,
    validate_upload,
    ParsedFile,
    SourceColumn,
    ALLOWED_EXTENSIONS,
)

__all__ = [
    "parse_file",
    "parse_grid",
    "validate_upload",
    "ParsedFile",
    "SourceColumn",
    "ALLOWED_EXTENSIONS",
]
