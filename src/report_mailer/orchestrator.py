"""Sequence one report run: configuration, query, render, dispatch.

The run moves linearly through :class:`RunState` values and never goes
back.  Any :class:`~report_mailer.errors.ReportMailerError` puts the
dispatcher in ``ABORTED`` and propagates unchanged, so an email is only
handed to the transport once every earlier stage has succeeded.
"""

from __future__ import annotations

import enum
import logging
import os
import pathlib
from typing import Callable, Optional

from report_mailer.config import OutputMode, RunConfig, SmtpSettings, load_config
from report_mailer.db.manager import execute_query
from report_mailer.errors import ArgumentError, ReportMailerError
from report_mailer.model import Table
from report_mailer.reporting.html_table import render_html
from report_mailer.reporting.sender import EmailPayload, MailClient
from report_mailer.reporting.spreadsheet import render_spreadsheet

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    START = "start"
    CONFIG_LOADED = "config_loaded"
    DATA_RETRIEVED = "data_retrieved"
    RENDERED = "rendered"
    DISPATCHED = "dispatched"
    DONE = "done"
    ABORTED = "aborted"


TransportFactory = Callable[[SmtpSettings], MailClient]


def read_sql_argument(argument: str) -> str:
    """Return the SQL command named by *argument*.

    If *argument* is the path of an existing file, the file's contents are
    the command; otherwise *argument* itself is the command.

    Raises:
        ArgumentError: If the resulting command is blank.
    """
    if not argument or not argument.strip():
        raise ArgumentError("SQL argument is empty")

    sql = argument
    try:
        path = pathlib.Path(argument)
        is_file = path.is_file()
    except (OSError, ValueError):
        # Long literal commands can exceed path length limits.
        is_file = False

    if is_file:
        try:
            sql = path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ArgumentError(f"SQL file {path} is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise ArgumentError(f"Could not read SQL file {path}: {exc}") from exc
        logger.info("Read SQL command from %s", path)

    if not sql.strip():
        raise ArgumentError("SQL command is empty")
    return sql


class ReportDispatcher:
    """Run the query-render-send pipeline once.

    Args:
        transport_factory: Builds the mail transport from the run's SMTP
            settings.  Defaults to :class:`MailClient`.
    """

    def __init__(self, transport_factory: Optional[TransportFactory] = None) -> None:
        self.transport_factory = transport_factory or MailClient
        self.state = RunState.START
        self.config: Optional[RunConfig] = None
        self.table: Optional[Table] = None
        self.payload: Optional[EmailPayload] = None

    def run(self, config_path: str | os.PathLike, sql_argument: str) -> EmailPayload:
        """Execute the full pipeline and return the dispatched payload."""
        try:
            self.config = load_config(config_path)
            self._advance(RunState.CONFIG_LOADED)

            sql = read_sql_argument(sql_argument)
            self.table = execute_query(
                self.config.connection_string,
                sql,
                timeout=self.config.command_timeout,
            )
            self._advance(RunState.DATA_RETRIEVED)

            self.payload = self.render(self.config, self.table)
            self._advance(RunState.RENDERED)

            self.dispatch(self.config, self.payload)
            self._advance(RunState.DISPATCHED)

        except ReportMailerError as exc:
            logger.error("Run aborted during %s stage: %s", exc.stage, exc)
            self.state = RunState.ABORTED
            raise

        self._advance(RunState.DONE)
        return self.payload

    def render(self, config: RunConfig, table: Table) -> EmailPayload:
        """Build the payload, either attaching a workbook or inlining HTML."""
        email = config.email
        payload = EmailPayload(
            recipients=list(email.to),
            cc=list(email.cc),
            bcc=list(email.bcc),
            sender=email.sender,
            subject=email.subject,
            body=email.message_body,
        )

        if config.output_mode is OutputMode.ATTACHMENT:
            path = render_spreadsheet(
                table, config.render_options, config.attachment_location
            )
            payload.attachments.append(path)
        else:
            payload.body += render_html(table)

        return payload

    def dispatch(self, config: RunConfig, payload: EmailPayload) -> None:
        """Hand *payload* to the transport: configure, then send."""
        with self.transport_factory(config.smtp) as transport:
            transport.configure(payload)
            transport.send()

    def _advance(self, state: RunState) -> None:
        logger.info("Run state: %s -> %s", self.state.value, state.value)
        self.state = state
