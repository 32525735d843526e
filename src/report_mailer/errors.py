"""Error taxonomy for the report-mailer pipeline.

Every stage raises a subclass of :class:`ReportMailerError`.  No stage
recovers from its own errors; they propagate to the CLI which prints the
``stage`` label together with the message and exits non-zero.
"""


class ReportMailerError(Exception):
    """Base class for every pipeline failure."""

    stage = "pipeline"


class ArgumentError(ReportMailerError):
    """Bad or missing command-line arguments."""

    stage = "arguments"


class ConfigurationError(ReportMailerError):
    """Configuration file missing, unparsable, or missing a required key."""

    stage = "configuration"


class DataAccessError(ReportMailerError):
    """Connection or query failure."""

    stage = "query"


class ExportError(ReportMailerError):
    """Spreadsheet render or write failure."""

    stage = "render"


class DispatchError(ReportMailerError):
    """Mail transport failure."""

    stage = "dispatch"
