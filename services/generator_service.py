"""
Output generator: projects session rows onto a marketplace's fields.

One output column per marketplace field in field order. Each cell is the
effective value (edit over original) of the source column mapped to that
field, or "" when nothing is mapped. Extra source columns are dropped.
"""

import time
from io import BytesIO
from typing import Optional, Sequence

import pandas as pd
from openpyxl import Workbook
import structlog

from config import settings
from models.marketplace import MarketplaceFieldResponse
from models.mapping import FieldMappingResponse
from models.session import (
    OutputFormat,
    SessionStatus,
    SessionRowResponse,
    GeneratedFileResponse,
)
from services.marketplace_service import get_marketplace_service, order_fields
from services.mapping_service import get_mapping_service
from services.row_service import get_row_service
from services.session_service import get_session_service
from services.storage_service import get_storage_service
from utils.text_utils import file_stem, safe_filename
from exceptions import (
    AppError,
    MarketplaceNotAssignedError,
    GenerationError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

XLSX_SHEET_NAME = "Sheet1"


# ===================
# PROJECTION
# ===================

def source_by_target(mappings: Sequence[FieldMappingResponse]) -> dict[str, str]:
    """
    Target field name -> source column.

    When two columns map to the same field the later mapping wins.
    """
    lookup: dict[str, str] = {}
    for mapping in mappings:
        if mapping.marketplace_field_name:
            lookup[mapping.marketplace_field_name] = mapping.user_column
    return lookup


def project_rows(
    rows: Sequence[SessionRowResponse],
    mappings: Sequence[FieldMappingResponse],
    fields: Sequence[MarketplaceFieldResponse]
) -> tuple[list[str], list[list[str]]]:
    """
    Build the output table.

    Returns:
        Tuple of (header, rows); rows keep row_index order
    """
    ordered = order_fields(list(fields))
    header = [f.field_name for f in ordered]
    lookup = source_by_target(mappings)

    table = []
    for row in sorted(rows, key=lambda r: r.row_index):
        values = row.effective_data
        table.append([
            values.get(lookup[name], "") if name in lookup else ""
            for name in header
        ])

    return header, table


# ===================
# SERIALIZERS
# ===================

def serialize_csv(header: list[str], rows: list[list[str]]) -> bytes:
    """UTF-8 CSV, minimal quoting, \\n line endings."""
    df = pd.DataFrame(rows, columns=header, dtype=object)
    return df.to_csv(index=False, lineterminator="\n").encode("utf-8")


def serialize_xlsx(header: list[str], rows: list[list[str]]) -> bytes:
    """Single-sheet workbook, header in row 1, every cell a string."""
    wb = Workbook()
    ws = wb.active
    ws.title = XLSX_SHEET_NAME

    for row_idx, row in enumerate([header, *rows], start=1):
        for col_idx, value in enumerate(row, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            # Text only; "=..." values must not become formulas
            cell.data_type = "s"

    output = BytesIO()
    wb.save(output)
    return output.getvalue()


def generate_output(
    rows: Sequence[SessionRowResponse],
    mappings: Sequence[FieldMappingResponse],
    fields: Sequence[MarketplaceFieldResponse],
    output_format: OutputFormat
) -> bytes:
    """Project and serialize in one step."""
    header, table = project_rows(rows, mappings, fields)
    if output_format == OutputFormat.XLSX:
        return serialize_xlsx(header, table)
    return serialize_csv(header, table)


def output_path(session_id: str, original_filename: str, marketplace_name: str, output_format: OutputFormat) -> str:
    """'<session>/<stem>_<marketplace>_<epoch ms>.<ext>'"""
    stem = safe_filename(file_stem(original_filename)) or "output"
    return f"{session_id}/{stem}_{safe_filename(marketplace_name)}_{int(time.time() * 1000)}.{output_format.value}"


# ===================
# SERVICE
# ===================

class GeneratorService:
    """
    Generate and store output files for a session.

    A failed run sets the session to error and leaves no file record.
    Earlier generated files are kept.
    """

    def generate(self, session_id: str, output_format: OutputFormat) -> GeneratedFileResponse:
        """
        Raises:
            SessionNotFoundError: Unknown session
            MarketplaceNotAssignedError: No marketplace on the session
            ValidationError: Marketplace has no fields in scope
            InvalidStatusTransitionError: Session is not ready to generate
            GenerationError: Building or storing the file failed
        """
        sessions = get_session_service()
        marketplaces = get_marketplace_service()

        session = sessions.get_by_id(session_id)
        if not session.marketplace_id:
            raise MarketplaceNotAssignedError(session_id)

        marketplace = marketplaces.get_by_id(session.marketplace_id)
        fields = marketplaces.list_fields(session.marketplace_id, category=session.category)
        if not fields:
            raise ValidationError(
                "Marketplace has no fields",
                code="NO_MARKETPLACE_FIELDS",
                details={"marketplace_id": session.marketplace_id}
            )

        session = sessions.transition(session, SessionStatus.GENERATING)

        logger.info(
            "generating_output",
            session_id=session_id,
            marketplace=marketplace.name,
            format=output_format.value,
            field_count=len(fields)
        )

        try:
            mappings = get_mapping_service().get(session_id)
            rows = get_row_service().get_all_for_session(session_id)
            content = generate_output(rows, mappings, fields, output_format)

            path = get_storage_service().upload(
                settings.generated_bucket,
                output_path(session_id, session.original_filename, marketplace.name, output_format),
                content,
                upsert=True
            )
            generated = sessions.record_generated_file(session_id, path, output_format, len(rows))

        except Exception as e:
            logger.error(
                "generation_failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__
            )
            try:
                sessions.transition(session, SessionStatus.ERROR)
            except Exception as transition_error:
                logger.error(
                    "generation_error_status_failed",
                    session_id=session_id,
                    error=str(transition_error)
                )
            message = e.message if isinstance(e, AppError) else "Failed to generate output file"
            raise GenerationError(session_id, message)

        sessions.transition(session, SessionStatus.DONE)

        logger.info(
            "output_generated",
            session_id=session_id,
            file_id=generated.id,
            path=path,
            row_count=len(rows),
            size_bytes=len(content)
        )
        return generated


# Singleton instance for convenience
_generator_service: Optional[GeneratorService] = None


def get_generator_service() -> GeneratorService:
    """Get or create GeneratorService instance."""
    global _generator_service
    if _generator_service is None:
        _generator_service = GeneratorService()
    return _generator_service
