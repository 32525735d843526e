"""Click CLI for report-mailer.

Usage::

    report-mailer CONFIG SQL

CONFIG is the JSON configuration file.  SQL is either the path of a file
holding the command or the command itself.
"""

from __future__ import annotations

import logging

import click
from dotenv import load_dotenv

from report_mailer import __version__
from report_mailer.errors import ReportMailerError

logger = logging.getLogger("report_mailer.cli")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


@click.command()
@click.argument("config", type=click.Path(dir_okay=False))
@click.argument("sql")
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity.",
)
@click.version_option(__version__, prog_name="report-mailer")
def main(config: str, sql: str, log_level: str) -> None:
    """Run SQL against the configured database and email the result."""
    from report_mailer.orchestrator import ReportDispatcher

    load_dotenv()
    logging.basicConfig(
        level=log_level.upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    dispatcher = ReportDispatcher()
    try:
        payload = dispatcher.run(config, sql)
    except ReportMailerError as exc:
        logger.debug("Run failed", exc_info=True)
        click.echo(click.style(f"Error ({exc.stage}): {exc}", fg="red"), err=True)
        raise SystemExit(1)

    mode = "attachment" if payload.attachments else "inline"
    click.echo(
        click.style(
            f"Report sent to {', '.join(payload.recipients)} ({mode}).",
            fg="green",
        )
    )
