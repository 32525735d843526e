"""Database access for report-mailer.

Opens a SQLite connection from a connection string, runs the operator's
SQL command once, and materialises the first result set into a
:class:`~report_mailer.model.Table`.  The connection never outlives a
single call to :func:`execute_query`.
"""

import datetime
import logging
import pathlib
import sqlite3
import time
import urllib.parse

from report_mailer.errors import DataAccessError
from report_mailer.model import Table

logger = logging.getLogger(__name__)

# Number of SQLite VM instructions between timeout checks.
_PROGRESS_INTERVAL = 10_000


def _convert_date(raw: bytes):
    """DATE column converter; non-ISO text is returned unchanged."""
    text = raw.decode(errors="replace")
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        return text


def _convert_timestamp(raw: bytes):
    text = raw.decode(errors="replace")
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        return text


sqlite3.register_converter("DATE", _convert_date)
sqlite3.register_converter("DATETIME", _convert_timestamp)
sqlite3.register_converter("TIMESTAMP", _convert_timestamp)


def resolve_database(connection_string: str) -> tuple[str, bool]:
    """Translate a connection string into ``sqlite3.connect`` arguments.

    Accepted forms:
        - ``:memory:``
        - ``file:...`` URIs, passed through untouched
        - ``sqlite:///path/to.db`` URLs
        - ADO-style ``Data Source=path;...`` strings
        - a plain filesystem path

    File paths are opened with ``mode=rw`` so a missing database is reported
    instead of being created empty.

    Returns:
        A ``(database, uri)`` tuple for :func:`sqlite3.connect`.
    """
    text = connection_string.strip()

    if text == ":memory:" or text.startswith("file:"):
        return text, text.startswith("file:")

    if text.lower().startswith("sqlite:///"):
        text = text[len("sqlite:///"):]
    elif "=" in text:
        pairs = {}
        for part in text.split(";"):
            key, sep, value = part.partition("=")
            if sep:
                pairs[key.strip().lower()] = value.strip()
        text = pairs.get("data source") or pairs.get("datasource") or ""
        if not text:
            raise DataAccessError(
                "Connection string has no 'Data Source' entry"
            )
        if text == ":memory:":
            return text, False

    path = pathlib.Path(text).expanduser().resolve()
    return f"file:{urllib.parse.quote(path.as_posix())}?mode=rw", True


def get_connection(connection_string: str, timeout: float = 30.0) -> sqlite3.Connection:
    """Open a SQLite connection in autocommit mode.

    Args:
        connection_string: See :func:`resolve_database`.
        timeout: Seconds to wait on a locked database.

    Raises:
        DataAccessError: If the database cannot be opened.
    """
    database, uri = resolve_database(connection_string)
    try:
        conn = sqlite3.connect(
            database,
            timeout=timeout,
            uri=uri,
            detect_types=sqlite3.PARSE_DECLTYPES,
            isolation_level=None,
        )
    except sqlite3.Error as exc:
        raise DataAccessError(f"Could not open database: {exc}") from exc
    return conn


def split_statements(sql: str) -> list[str]:
    """Split a script into complete statements.

    Semicolons inside string literals or comments do not end a statement,
    since each candidate is checked with :func:`sqlite3.complete_statement`.
    A trailing fragment without a semicolon is kept as the last statement.
    """
    statements: list[str] = []
    buffer = ""
    for chunk in sql.split(";"):
        buffer += chunk + ";"
        if sqlite3.complete_statement(buffer):
            if buffer.strip(" \t\r\n;"):
                statements.append(buffer.strip())
            buffer = ""

    remainder = buffer[:-1]
    if remainder.strip(" \t\r\n;"):
        statements.append(remainder.strip())
    return statements


def execute_query(
    connection_string: str,
    sql: str,
    timeout: float = 30.0,
) -> Table:
    """Run *sql* and return its first result set as a :class:`Table`.

    Every statement in *sql* is executed in order; rows are read eagerly
    from the first statement that produces a result set.  A command that
    returns no rows at all yields a table with no columns.

    Args:
        connection_string: Database to query, see :func:`resolve_database`.
        sql: Trusted SQL text supplied by the operator.
        timeout: Upper bound in seconds for lock waits and execution.

    Raises:
        DataAccessError: On any connection or database-level failure; the
            message carries the database diagnostic.
    """
    statements = split_statements(sql)
    if not statements:
        raise DataAccessError("SQL command is empty")

    conn = get_connection(connection_string, timeout)
    try:
        deadline = time.monotonic() + timeout
        conn.set_progress_handler(
            lambda: int(time.monotonic() > deadline), _PROGRESS_INTERVAL
        )

        table = None
        for statement in statements:
            cursor = conn.execute(statement)
            if cursor.description is not None and table is None:
                columns = [column[0] for column in cursor.description]
                table = Table(columns=columns, rows=cursor.fetchall())
            else:
                cursor.fetchall()
            cursor.close()

    except sqlite3.Error as exc:
        logger.error("Query failed: %s", exc)
        raise DataAccessError(f"Query failed: {exc}") from exc
    finally:
        conn.close()

    if table is None:
        logger.warning("SQL command returned no result set")
        return Table(columns=())

    logger.info(
        "Query returned %d rows across %d columns",
        table.row_count, table.column_count,
    )
    return table
