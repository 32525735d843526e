"""Reporting sub-package for the report-mailer project.

Exports the renderers and the mail transport:

- ``render_html`` -- build an HTML table fragment from a query result.
- ``render_spreadsheet`` -- write the query result to an ``.xlsx`` file.
- ``MailClient`` / ``EmailPayload`` -- deliver the message via SMTP.

Usage::

    from report_mailer.reporting import render_html, MailClient, EmailPayload

    payload = EmailPayload(recipients=["ops@example.com"], body=render_html(table))
    with MailClient(settings) as client:
        client.configure(payload)
        client.send()
"""

from report_mailer.reporting.html_table import render_html
from report_mailer.reporting.sender import EmailPayload, MailClient
from report_mailer.reporting.spreadsheet import render_spreadsheet

__all__ = ["EmailPayload", "MailClient", "render_html", "render_spreadsheet"]
