"""Database sub-package for the report-mailer project.

Exports the query executor so other modules can import it directly from
``report_mailer.db``:

    from report_mailer.db import execute_query
"""

from report_mailer.db.manager import execute_query, get_connection

__all__ = ["execute_query", "get_connection"]
