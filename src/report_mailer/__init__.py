"""report-mailer: Run a SQL command and email the result as a table or spreadsheet."""

__version__ = "0.1.0"
