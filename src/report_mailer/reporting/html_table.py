"""Render a :class:`~report_mailer.model.Table` as an HTML table fragment.

Uses the Jinja2 template at ``templates/table.html`` with autoescaping on,
so column names and cell values can never break the table markup.
"""

import datetime
import logging
import pathlib

from jinja2 import Environment, FileSystemLoader

from report_mailer.model import Table

logger = logging.getLogger(__name__)

# Locate the templates directory relative to this file.
_TEMPLATE_DIR = pathlib.Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=True,
    keep_trailing_newline=False,
)


def format_cell(value) -> str:
    """Coerce a cell value to display text (``None`` becomes ``""``)."""
    if value is None:
        return ""
    if isinstance(value, datetime.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def render_html(table: Table) -> str:
    """Serialize *table* into a single ``<table>`` fragment.

    One ``<th>`` per column and one ``<td>`` per cell.  Output is
    deterministic for a given table; an empty table renders the header
    row only.
    """
    template = _env.get_template("table.html")
    html = template.render(
        columns=table.columns,
        rows=[[format_cell(value) for value in row] for row in table.rows],
    )
    logger.info(
        "Rendered HTML table: %d columns, %d rows",
        table.column_count, table.row_count,
    )
    return html
