"""
Tabular parser for catalog and template uploads.

Reads a CSV or an Excel workbook (.xlsx/.xlsm) into a header list plus
string-valued row records. For workbooks with several sheets the data
sheet is picked by header width, skipping instruction-style sheets.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from io import BytesIO
from typing import Optional
import structlog

import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from exceptions import (
    FileParseError,
    NoColumnsError,
    InvalidFileTypeError,
    FileTooLargeError,
)

logger = structlog.get_logger(__name__)

ALLOWED_EXTENSIONS = [".csv", ".xlsx", ".xlsm"]
WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm")

SAMPLE_ROW_COUNT = 3
MAX_ROWS_STORED = 5000

# Sheets whose (trimmed, lowercased) name matches are never the data sheet
INSTRUCTION_SHEET_NAMES = frozenset({
    "instructions",
    "readme",
    "notes",
    "guide",
    "overview",
    "help",
    "info",
    "about",
    "cover page",
    "contents",
    "index",
    "introduction",
})
INSTRUCTION_SHEET_PENALTY = 1000

# Number formats rendered by format_cell: "000000", "0.00", "#,##0.00"
NUMBER_FORMAT_PATTERN = re.compile(r"([#0,]*[0#])(\.0+)?")
DATE_TOKEN_PATTERN = re.compile(
    r"yyyy|yy|mmmm|mmm|mm|m|dddd|ddd|dd|d|hh|h|ss|s|am/pm",
    re.IGNORECASE
)


@dataclass
class SourceColumn:
    """A column of the uploaded file."""
    name: str
    sample_values: list[str] = field(default_factory=list)


@dataclass
class ParsedFile:
    """Result of parsing an uploaded file."""
    columns: list[SourceColumn] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    row_count: int = 0
    sheet_name: Optional[str] = None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def truncated(self) -> bool:
        """True if more data rows were found than stored."""
        return self.row_count > len(self.rows)

    def columns_to_dict(self) -> list[dict]:
        return [
            {"name": c.name, "sample_values": list(c.sample_values)}
            for c in self.columns
        ]


# ===================
# UPLOAD CHECKS
# ===================

def file_extension(filename: str) -> str:
    """Lowercased extension including the dot, or "" if none."""
    if not filename or "." not in filename:
        return ""
    return "." + filename.rsplit(".", 1)[-1].lower()


def is_workbook(filename: str) -> bool:
    return file_extension(filename) in WORKBOOK_EXTENSIONS


def validate_upload(filename: str, size_bytes: int, max_size_bytes: int) -> None:
    """
    Reject files by type and size before any parsing.

    Raises:
        InvalidFileTypeError: Extension not in ALLOWED_EXTENSIONS
        FileTooLargeError: size_bytes above max_size_bytes
    """
    if file_extension(filename) not in ALLOWED_EXTENSIONS:
        raise InvalidFileTypeError(filename, ALLOWED_EXTENSIONS)

    if size_bytes > max_size_bytes:
        raise FileTooLargeError(size_bytes, max_size_bytes // (1024 * 1024))


# ===================
# CELL COERCION
# ===================

def cell_to_str(value) -> str:
    """
    Coerce a raw cell value to a string.

    Empty/NaN → "", integral floats lose the ".0", midnight datetimes
    render as dates, booleans as TRUE/FALSE.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, datetime):
        if pd.isna(value):
            return ""
        if value.time() == time(0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _format_section(number_format: Optional[str]) -> str:
    """First section of an Excel number format, literals unquoted."""
    if not number_format:
        return ""
    section = number_format.split(";")[0]
    section = re.sub(r"\[[^\]]*\]", "", section)
    section = re.sub(r'"([^"]*)"', r"\1", section)
    section = re.sub(r"[_*].", "", section)
    return section.replace("\\", "").strip()


def _format_number(value: float, number_format: str) -> Optional[str]:
    """
    Render zero-padded, fixed-decimal, thousands and percent formats.

    Returns None for any other format.
    """
    fmt = _format_section(number_format)

    percent = fmt.endswith("%")
    if percent:
        fmt = fmt[:-1]
        value = value * 100

    match = NUMBER_FORMAT_PATTERN.fullmatch(fmt)
    if not match:
        return None

    integer_part, fraction = match.group(1), match.group(2) or ""
    decimals = max(len(fraction) - 1, 0)

    if "," in integer_part:
        text = f"{value:,.{decimals}f}"
    else:
        width = integer_part.count("0") + (decimals + 1 if decimals else 0) + (1 if value < 0 else 0)
        pad = f"0{width}" if width > 1 else ""
        text = f"{value:{pad}.{decimals}f}"

    return f"{text}%" if percent else text


def _format_datetime(value, number_format: str) -> Optional[str]:
    """Render a date/time value with its Excel date format, or None."""
    fmt = _format_section(number_format)
    tokens = list(DATE_TOKEN_PATTERN.finditer(fmt))
    if not tokens:
        return None

    if isinstance(value, time):
        value = datetime.combine(date(1899, 12, 31), value)
    elif not isinstance(value, datetime):
        value = datetime.combine(value, time(0))

    twelve_hour = any(t.group(0).lower() == "am/pm" for t in tokens)
    hour = (value.hour % 12 or 12) if twelve_hour else value.hour

    out = []
    last = 0
    for i, token in enumerate(tokens):
        out.append(fmt[last:token.start()])
        last = token.end()
        t = token.group(0).lower()
        prev = tokens[i - 1].group(0).lower() if i > 0 else ""
        nxt = tokens[i + 1].group(0).lower() if i + 1 < len(tokens) else ""
        # "m"/"mm" next to hours or seconds are minutes
        is_minute = t in ("m", "mm") and (prev.startswith("h") or nxt.startswith("s"))

        if t == "yyyy":
            out.append(f"{value.year:04d}")
        elif t == "yy":
            out.append(f"{value.year % 100:02d}")
        elif is_minute:
            out.append(f"{value.minute:02d}" if t == "mm" else str(value.minute))
        elif t == "mmmm":
            out.append(value.strftime("%B"))
        elif t == "mmm":
            out.append(value.strftime("%b"))
        elif t == "mm":
            out.append(f"{value.month:02d}")
        elif t == "m":
            out.append(str(value.month))
        elif t == "dddd":
            out.append(value.strftime("%A"))
        elif t == "ddd":
            out.append(value.strftime("%a"))
        elif t == "dd":
            out.append(f"{value.day:02d}")
        elif t == "d":
            out.append(str(value.day))
        elif t == "hh":
            out.append(f"{hour:02d}")
        elif t == "h":
            out.append(str(hour))
        elif t == "ss":
            out.append(f"{value.second:02d}")
        elif t == "s":
            out.append(str(value.second))
        else:
            out.append("AM" if value.hour < 12 else "PM")
    out.append(fmt[last:])

    return "".join(out)


def format_cell(value, number_format: Optional[str] = None) -> str:
    """
    Display string of a workbook cell.

    Applies the cell's number format for the common cases (zero-padded
    codes, fixed decimals, thousands separators, percents, dates); any
    other format falls back to cell_to_str().
    """
    if value is None or isinstance(value, (str, bool)):
        return cell_to_str(value)

    fmt = number_format or "General"
    if fmt in ("General", "@"):
        return cell_to_str(value)

    if isinstance(value, (datetime, date, time)):
        text = _format_datetime(value, fmt)
    elif isinstance(value, (int, float)) and not (isinstance(value, float) and math.isnan(value)):
        text = _format_number(value, fmt)
    else:
        text = None

    return cell_to_str(value) if text is None else text


def _is_blank(value: str) -> bool:
    return not value or not value.strip()


# ===================
# SHEET SELECTION
# ===================

def score_sheet(sheet_name: str, header_cells: list[str]) -> int:
    """
    Score a candidate data sheet.

    Non-empty cells in the first row, minus a large penalty when the
    sheet name looks like an instructions page.
    """
    score = sum(1 for cell in header_cells if not _is_blank(cell))
    if sheet_name.strip().lower() in INSTRUCTION_SHEET_NAMES:
        score -= INSTRUCTION_SHEET_PENALTY
    return score


def _row_strings(cells) -> list[str]:
    return [format_cell(c.value, c.number_format) for c in cells]


def select_sheet(workbook: Workbook) -> Worksheet:
    """
    Pick the data sheet of a workbook.

    Highest score wins; ties keep the first sheet encountered.
    """
    sheets = workbook.worksheets
    if len(sheets) == 1:
        return sheets[0]

    best = sheets[0]
    best_score: Optional[int] = None

    for ws in sheets:
        first_row = next(ws.iter_rows(max_row=1), ())
        score = score_sheet(ws.title, _row_strings(first_row))

        logger.debug("sheet_scored", sheet=ws.title, score=score)

        if best_score is None or score > best_score:
            best = ws
            best_score = score

    logger.info("sheet_selected", sheet=best.title, candidates=len(sheets))
    return best


# ===================
# GRID READING
# ===================

def _frame_to_grid(df: pd.DataFrame) -> list[list[str]]:
    return [
        [cell_to_str(v) for v in row]
        for row in df.itertuples(index=False, name=None)
    ]


def _read_workbook_grid(content: bytes) -> tuple[list[list[str]], str]:
    try:
        workbook = load_workbook(BytesIO(content), data_only=True)
    except Exception as e:
        logger.error("workbook_read_failed", error=str(e))
        raise FileParseError("Failed to read Excel file")

    try:
        ws = select_sheet(workbook)
        grid = [_row_strings(row) for row in ws.iter_rows()]
    except Exception as e:
        logger.error("sheet_read_failed", error=str(e))
        raise FileParseError("Failed to read Excel sheet")

    return grid, ws.title


def _read_csv_grid(content: bytes) -> list[list[str]]:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            df = pd.read_csv(
                BytesIO(content),
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding=encoding,
                engine="python",
                # Rows wider than the header keep only the header's width
                on_bad_lines=lambda line: line,
            )
            return _frame_to_grid(df)
        except pd.errors.EmptyDataError:
            return []
        except UnicodeDecodeError:
            logger.debug("csv_decode_retry", encoding=encoding)
            continue
        except Exception as e:
            logger.error("csv_read_failed", error=str(e))
            raise FileParseError("Failed to read CSV file")

    raise FileParseError("Failed to decode CSV file")


# ===================
# PARSING
# ===================

def _header_columns(header_cells: list[str]) -> list[tuple[int, str]]:
    """
    (grid index, column name) for every non-blank header cell.

    Blank headers drop their column. Repeated names get " (2)", " (3)"...
    so names stay unique.
    """
    columns: list[tuple[int, str]] = []
    used: set[str] = set()

    for idx, cell in enumerate(header_cells):
        name = cell.strip()
        if not name:
            continue
        if name in used:
            n = 2
            while f"{name} ({n})" in used:
                n += 1
            name = f"{name} ({n})"
        used.add(name)
        columns.append((idx, name))

    return columns


def _cell(row: list[str], idx: int) -> str:
    return row[idx] if idx < len(row) else ""


def parse_grid(
    grid: list[list[str]],
    max_rows: int = MAX_ROWS_STORED,
    sheet_name: Optional[str] = None,
) -> ParsedFile:
    """
    Turn a grid of display strings into columns and row records.

    Row 0 is the header. Fully blank data rows are discarded. Samples
    come from the first SAMPLE_ROW_COUNT data rows only. row_count is
    the true number of data rows even when stored rows are capped.
    """
    if not grid:
        return ParsedFile(sheet_name=sheet_name)

    header = _header_columns(grid[0])
    data_rows = [
        row for row in grid[1:]
        if any(not _is_blank(cell) for cell in row)
    ]

    columns = []
    sample_rows = data_rows[:SAMPLE_ROW_COUNT]
    for idx, name in header:
        samples = [
            _cell(row, idx) for row in sample_rows
            if not _is_blank(_cell(row, idx))
        ]
        columns.append(SourceColumn(name=name, sample_values=samples))

    rows = [
        {name: _cell(row, idx) for idx, name in header}
        for row in data_rows[:max_rows]
    ]

    return ParsedFile(
        columns=columns,
        rows=rows,
        row_count=len(data_rows),
        sheet_name=sheet_name,
    )


def parse_file(
    content: bytes,
    filename: str,
    max_rows: int = MAX_ROWS_STORED,
) -> ParsedFile:
    """
    Parse uploaded file bytes.

    Args:
        content: Raw file bytes
        filename: Original filename, used only to tell CSV from workbook
        max_rows: Cap on stored row records

    Returns:
        ParsedFile with columns, rows and the true row count

    Raises:
        FileParseError: Bytes could not be read
        NoColumnsError: Header row has no usable column names
    """
    logger.info("parsing_file", filename=filename, size_bytes=len(content))

    sheet_name = None
    if is_workbook(filename):
        grid, sheet_name = _read_workbook_grid(content)
    else:
        grid = _read_csv_grid(content)

    parsed = parse_grid(grid, max_rows=max_rows, sheet_name=sheet_name)

    if not parsed.columns:
        logger.warning("no_columns_found", filename=filename, sheet=sheet_name)
        raise NoColumnsError(filename)

    logger.info(
        "file_parsed",
        filename=filename,
        sheet=sheet_name,
        column_count=len(parsed.columns),
        row_count=parsed.row_count,
        rows_stored=len(parsed.rows),
        truncated=parsed.truncated,
    )

    return parsed
