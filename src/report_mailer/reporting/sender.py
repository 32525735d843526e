"""Send the assembled report email via SMTP.

Uses stdlib ``smtplib`` and ``email.mime``.  :class:`MailClient` follows a
configure-then-send contract: :meth:`MailClient.configure` turns an
:class:`EmailPayload` into a MIME message (HTML body plus attachments) and
:meth:`MailClient.send` delivers it once.  Every failure raises
:class:`~report_mailer.errors.DispatchError`; nothing is retried.

SMTP settings come from :class:`~report_mailer.config.SmtpSettings`
(config ``Smtp`` section or ``SMTP_HOST`` / ``SMTP_PORT`` / ``SMTP_EMAIL`` /
``SMTP_PASSWORD`` / ``SMTP_USE_SSL`` / ``SMTP_TIMEOUT``).
"""

from __future__ import annotations

import logging
import os
import smtplib
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid

from report_mailer.config import SmtpSettings
from report_mailer.errors import DispatchError

logger = logging.getLogger(__name__)


@dataclass
class EmailPayload:
    """A fully assembled message, owned by the dispatcher until sent."""

    recipients: list[str]
    subject: str = ""
    body: str = ""
    attachments: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    sender: str | None = None

    @property
    def all_recipients(self) -> list[str]:
        """Every envelope recipient, in order, without duplicates."""
        seen: dict[str, None] = {}
        for address in [*self.recipients, *self.cc, *self.bcc]:
            seen.setdefault(address, None)
        return list(seen)


class MailClient:
    """SMTP mail transport.

    Usage::

        with MailClient(smtp_settings) as client:
            client.configure(payload)
            client.send()
    """

    def __init__(self, settings: SmtpSettings | None = None) -> None:
        self.settings = settings or SmtpSettings()
        self._message: MIMEMultipart | None = None
        self._envelope: list[str] = []
        self._sender: str = ""

    def __enter__(self) -> "MailClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._message = None
        self._envelope = []

    def configure(self, payload: EmailPayload) -> None:
        """Build the MIME message for *payload*.

        Raises:
            DispatchError: If there are no recipients, no sender address,
                or an attachment cannot be read.
        """
        sender = payload.sender or self.settings.user
        if not sender:
            raise DispatchError(
                "No sender address: set Email.From in the configuration "
                "or the SMTP_EMAIL environment variable"
            )

        envelope = payload.all_recipients
        if not envelope:
            raise DispatchError("Email payload has no recipients")

        # Root container supports attachments; the body goes in an
        # alternative part so clients render the HTML.
        msg = MIMEMultipart("mixed")
        msg["Subject"] = payload.subject
        msg["From"] = sender
        msg["To"] = ", ".join(payload.recipients)
        if payload.cc:
            msg["Cc"] = ", ".join(payload.cc)
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=sender.partition("@")[2] or "localhost")

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(payload.body, "html", "utf-8"))
        msg.attach(body)

        for attachment_path in payload.attachments:
            msg.attach(_attachment_part(attachment_path))

        self._message = msg
        self._envelope = envelope
        self._sender = sender

        logger.info(
            "Configured message '%s' for %d recipient(s), %d attachment(s)",
            payload.subject, len(envelope), len(payload.attachments),
        )

    def send(self) -> None:
        """Deliver the configured message.

        Raises:
            DispatchError: If :meth:`configure` was not called or the SMTP
                exchange fails.
        """
        if self._message is None:
            raise DispatchError("send() called before configure()")

        host = self.settings.host
        port = self.settings.port
        timeout = self.settings.timeout

        try:
            if self.settings.use_ssl:
                server = smtplib.SMTP_SSL(host, port, timeout=timeout)
            else:
                server = smtplib.SMTP(host, port, timeout=timeout)

            with server:
                if not self.settings.use_ssl:
                    server.starttls()
                if self.settings.user and self.settings.password:
                    server.login(self.settings.user, self.settings.password)
                server.send_message(
                    self._message,
                    from_addr=self._sender,
                    to_addrs=self._envelope,
                )

        except smtplib.SMTPAuthenticationError as exc:
            raise DispatchError(
                "SMTP authentication failed. Check SMTP_EMAIL and "
                f"SMTP_PASSWORD: {exc}"
            ) from exc

        except smtplib.SMTPException as exc:
            raise DispatchError(f"SMTP error while sending email: {exc}") from exc

        except OSError as exc:
            raise DispatchError(
                f"Network error while connecting to {host}:{port}: {exc}"
            ) from exc

        logger.info("Email sent successfully to %s", ", ".join(self._envelope))


def _attachment_part(path: str) -> MIMEBase:
    """Read *path* into a base64 ``application/octet-stream`` part."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        raise DispatchError(f"Could not read attachment {path}: {exc}") from exc

    part = MIMEBase("application", "octet-stream")
    part.set_payload(data)
    encoders.encode_base64(part)
    part.add_header(
        "Content-Disposition", "attachment", filename=os.path.basename(path)
    )
    return part
