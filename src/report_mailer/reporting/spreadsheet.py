"""Write a :class:`~report_mailer.model.Table` to an ``.xlsx`` workbook.

The workbook has a single sheet: a styled header row followed by one row
per record.  Styling is best-effort (options that do not fit the table are
logged and skipped) while the data itself is mandatory, so any failure to
write the file raises :class:`~report_mailer.errors.ExportError`.

Files are named ``<prefix>_<YYYYmmdd_HHMMSS>_<8 hex>.xlsx`` and created
exclusively, so an existing file is never overwritten.
"""

from __future__ import annotations

import datetime
import decimal
import logging
import math
import os
import pathlib
import re
import uuid
from typing import Any, Optional

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from report_mailer.config import RenderOptions
from report_mailer.errors import ExportError
from report_mailer.model import Table

logger = logging.getLogger(__name__)

MAX_SHEET_TITLE = 31
_INVALID_TITLE_RE = re.compile(r"[\[\]:*?/\\]")
_INVALID_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")
_HEX_COLOR_RE = re.compile(r"^(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")

ALIGN_HEADER = Alignment(horizontal="center", vertical="center", wrap_text=True)


def sheet_title(name: str) -> str:
    """Return *name* made safe for an Excel sheet title."""
    title = _INVALID_TITLE_RE.sub("_", name).strip("'").strip()
    return title[:MAX_SHEET_TITLE] or "Report"


def build_file_name(prefix: str, now: Optional[datetime.datetime] = None) -> str:
    """Return a unique workbook file name for this run."""
    now = now or datetime.datetime.now()
    safe_prefix = _INVALID_FILENAME_RE.sub("_", prefix).strip("._") or "report"
    return f"{safe_prefix}_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}.xlsx"


def render_spreadsheet(
    table: Table,
    options: RenderOptions,
    target_dir: str | os.PathLike,
) -> str:
    """Write *table* to a new workbook inside *target_dir*.

    Args:
        table: The query result.
        options: Sheet name, header style and column widths.
        target_dir: Directory for the new file; created if missing.

    Returns:
        Absolute path of the written workbook.

    Raises:
        ExportError: If the directory is not writable or saving fails.
    """
    directory = pathlib.Path(target_dir).expanduser()
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportError(
            f"Could not create attachment directory {directory}: {exc}"
        ) from exc
    if not directory.is_dir() or not os.access(directory, os.W_OK):
        raise ExportError(f"Attachment directory is not writable: {directory}")

    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title(options.sheet_name)

    _write_header(ws, table, options)
    _write_rows(ws, table, options)
    _apply_column_widths(ws, table, options)

    if options.freeze_header:
        ws.freeze_panes = "A2"
    if options.auto_filter and table.column_count:
        ws.auto_filter.ref = (
            f"A1:{get_column_letter(table.column_count)}{table.row_count + 1}"
        )

    path = directory / build_file_name(options.file_name_prefix or ws.title)
    try:
        # Mode "xb" refuses to replace an existing file.
        with open(path, "xb") as handle:
            wb.save(handle)
    except FileExistsError as exc:
        raise ExportError(f"Spreadsheet already exists: {path}") from exc
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise ExportError(f"Could not write spreadsheet {path}: {exc}") from exc
    finally:
        wb.close()

    logger.info(
        "Spreadsheet written to %s (%d rows, %d columns)",
        path, table.row_count, table.column_count,
    )
    return str(path.resolve())


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _write_header(ws: Worksheet, table: Table, options: RenderOptions) -> None:
    font_color = _color(options.header_font_color, "HeaderFontColor")
    fill_color = _color(options.header_background_color, "HeaderBackgroundColor")

    font = Font(bold=options.header_bold, color=font_color)
    fill = PatternFill("solid", fgColor=fill_color) if fill_color else None

    for col_idx, name in enumerate(table.columns, start=1):
        cell = ws.cell(row=1, column=col_idx, value=_text(name))
        cell.data_type = "s"
        cell.font = font
        cell.alignment = ALIGN_HEADER
        if fill is not None:
            cell.fill = fill


def _write_rows(ws: Worksheet, table: Table, options: RenderOptions) -> None:
    for row_idx, row in enumerate(table.rows, start=2):
        for col_idx, value in enumerate(row, start=1):
            _set_value(ws, row_idx, col_idx, value, options)


def _set_value(
    ws: Worksheet,
    row: int,
    column: int,
    value: Any,
    options: RenderOptions,
) -> None:
    """Store *value* with a type-appropriate cell format."""
    if value is None:
        return

    cell = ws.cell(row=row, column=column)
    if isinstance(value, bool):
        cell.value = value
    elif isinstance(value, (int, float, decimal.Decimal)) and _is_finite(value):
        cell.value = value
    elif isinstance(value, datetime.datetime):
        # xlsx has no time zones.
        cell.value = value.replace(tzinfo=None)
        cell.number_format = options.datetime_format
    elif isinstance(value, datetime.date):
        cell.value = value
        cell.number_format = options.date_format
    else:
        cell.value = _text(value)
        # Keep strings such as "=1+1" as literal text, not formulas.
        cell.data_type = "s"


def _apply_column_widths(ws: Worksheet, table: Table, options: RenderOptions) -> None:
    widths = [options.default_column_width] * table.column_count

    for key, width in options.column_widths.items():
        if isinstance(key, int):
            index = key - 1 if 1 <= key <= table.column_count else None
        else:
            index = table.column_index(key)
        if index is None:
            logger.warning(
                "Ignoring width for column %r: not present in the result "
                "(%d columns)", key, table.column_count,
            )
            continue
        widths[index] = width

    for col_idx, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width


def _color(value: Optional[str], key: str) -> Optional[str]:
    """Normalise a hex colour ("#RRGGBB" or "AARRGGBB"); invalid ones are dropped."""
    if not value:
        return None
    color = value.strip().lstrip("#")
    if not _HEX_COLOR_RE.match(color):
        logger.warning("Ignoring invalid %s %r", key, value)
        return None
    return color.upper()


def _is_finite(value: Any) -> bool:
    # xlsx cannot store inf or nan; those go out as text.
    if isinstance(value, decimal.Decimal):
        return value.is_finite()
    return math.isfinite(value)


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))
