"""Load the JSON run configuration into typed, immutable records.

The configuration file is parsed into a plain dict first; each record is
then built by reading named keys with declared defaults.  Recognised
top-level keys:

- ``ConnectionStr`` (str, required) -- database connection string.
- ``SendAsAttachment`` (bool or "true"/"false") -- attachment mode switch.
  Absent or unparsable values mean inline mode.
- ``Email`` (object, required) -- ``To``, ``Cc``, ``Bcc``, ``From``,
  ``Subject``, ``MessageBody``.
- ``ExcelOptions`` (object) -- spreadsheet formatting, see
  :class:`RenderOptions`.
- ``AttachmentLocation`` (str) -- output directory, required in attachment
  mode.
- ``CommandTimeout`` (number) -- query timeout in seconds.
- ``Smtp`` (object) -- ``Host``, ``Port``, ``User``, ``Password``,
  ``UseSsl``, ``Timeout``; each falls back to an ``SMTP_*`` env var.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any

from report_mailer.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 465
DEFAULT_SMTP_TIMEOUT = 30.0

_ADDRESS_SPLIT_RE = re.compile(r"[;,]")


class OutputMode(enum.Enum):
    """How the query result travels: inline HTML or spreadsheet attachment."""

    INLINE = "inline"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class RenderOptions:
    """Spreadsheet formatting options (the ``ExcelOptions`` section)."""

    sheet_name: str = "Report"
    header_bold: bool = True
    header_background_color: str | None = "D9E1F2"
    header_font_color: str | None = None
    default_column_width: float = 15.0
    # Keys are 1-based column indexes (int) or column names (str).
    column_widths: dict[int | str, float] = field(default_factory=dict)
    freeze_header: bool = True
    auto_filter: bool = False
    date_format: str = "yyyy-mm-dd"
    datetime_format: str = "yyyy-mm-dd hh:mm:ss"
    file_name_prefix: str | None = None


@dataclass(frozen=True)
class EmailSettings:
    """Static message fields (the ``Email`` section)."""

    to: tuple[str, ...]
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    sender: str | None = None
    subject: str = ""
    message_body: str = ""


@dataclass(frozen=True)
class SmtpSettings:
    """SMTP connection settings for the mail transport."""

    host: str = DEFAULT_SMTP_HOST
    port: int = DEFAULT_SMTP_PORT
    user: str = ""
    password: str = ""
    use_ssl: bool = True
    timeout: float = DEFAULT_SMTP_TIMEOUT


@dataclass(frozen=True)
class RunConfig:
    """Everything a single run needs, loaded once at startup."""

    connection_string: str
    output_mode: OutputMode
    email: EmailSettings
    attachment_location: str | None = None
    render_options: RenderOptions = field(default_factory=RenderOptions)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_config(path: str | os.PathLike) -> RunConfig:
    """Read and validate the JSON configuration file at *path*.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON, or
            lacks a required key.
    """
    config_path = pathlib.Path(path)
    if not config_path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Configuration file {config_path} is not valid JSON: {exc}"
        ) from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(
            f"Configuration file {config_path} is not valid UTF-8: {exc}"
        ) from exc
    except OSError as exc:
        raise ConfigurationError(
            f"Could not read configuration file {config_path}: {exc}"
        ) from exc

    config = build_config(raw)
    logger.info(
        "Configuration loaded from %s (mode=%s)",
        config_path, config.output_mode.value,
    )
    return config


def build_config(raw: Any) -> RunConfig:
    """Construct a :class:`RunConfig` from an already-parsed JSON value."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration root must be a JSON object")

    connection_string = raw.get("ConnectionStr")
    if not isinstance(connection_string, str) or not connection_string.strip():
        raise ConfigurationError("Missing required key 'ConnectionStr'")

    output_mode = (
        OutputMode.ATTACHMENT
        if parse_bool(raw.get("SendAsAttachment"), "SendAsAttachment")
        else OutputMode.INLINE
    )

    attachment_location = raw.get("AttachmentLocation")
    if attachment_location is not None and not isinstance(attachment_location, str):
        raise ConfigurationError("'AttachmentLocation' must be a string")
    if output_mode is OutputMode.ATTACHMENT and not attachment_location:
        raise ConfigurationError(
            "'AttachmentLocation' is required when SendAsAttachment is true"
        )

    return RunConfig(
        connection_string=connection_string,
        output_mode=output_mode,
        email=_build_email(_section(raw, "Email", required=True)),
        attachment_location=attachment_location,
        render_options=_build_render_options(_section(raw, "ExcelOptions")),
        smtp=_build_smtp(_section(raw, "Smtp")),
        command_timeout=_number(
            raw.get("CommandTimeout"), "CommandTimeout", DEFAULT_COMMAND_TIMEOUT
        ),
    )


def parse_bool(value: Any, key: str = "", default: bool = False) -> bool:
    """Interpret a JSON bool or a "true"/"false" string.

    Anything else falls back to *default*; unparsable strings are logged.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "true":
            return True
        if text == "false":
            return False
    logger.warning(
        "Could not parse %r for %s as a boolean; using %s",
        value, key or "value", default,
    )
    return default


def parse_addresses(value: Any, key: str) -> tuple[str, ...]:
    """Normalise a list or a comma/semicolon separated string of addresses."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = _ADDRESS_SPLIT_RE.split(value)
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        items = value
    else:
        raise ConfigurationError(
            f"'{key}' must be a string or a list of strings"
        )
    return tuple(item.strip() for item in items if item.strip())


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------

def _build_email(section: dict) -> EmailSettings:
    to = parse_addresses(section.get("To"), "Email.To")
    if not to:
        raise ConfigurationError("'Email.To' must list at least one recipient")

    sender = section.get("From")
    if sender is not None and not isinstance(sender, str):
        raise ConfigurationError("'Email.From' must be a string")

    return EmailSettings(
        to=to,
        cc=parse_addresses(section.get("Cc"), "Email.Cc"),
        bcc=parse_addresses(section.get("Bcc"), "Email.Bcc"),
        sender=sender or None,
        subject=_string(section.get("Subject"), "Email.Subject", ""),
        message_body=_string(section.get("MessageBody"), "Email.MessageBody", ""),
    )


def _build_render_options(section: dict) -> RenderOptions:
    defaults = RenderOptions()

    widths: dict[int | str, float] = {}
    raw_widths = section.get("ColumnWidths") or {}
    if not isinstance(raw_widths, dict):
        raise ConfigurationError("'ExcelOptions.ColumnWidths' must be an object")
    for key, width in raw_widths.items():
        column_key: int | str = int(key) if key.strip().isdecimal() else key
        widths[column_key] = _number(width, f"ExcelOptions.ColumnWidths.{key}", None)

    return RenderOptions(
        sheet_name=_string(section.get("SheetName"), "ExcelOptions.SheetName",
                           defaults.sheet_name) or defaults.sheet_name,
        header_bold=parse_bool(section.get("HeaderBold"),
                               "ExcelOptions.HeaderBold", defaults.header_bold),
        header_background_color=_string(
            section.get("HeaderBackgroundColor"),
            "ExcelOptions.HeaderBackgroundColor",
            defaults.header_background_color,
        ),
        header_font_color=_string(section.get("HeaderFontColor"),
                                  "ExcelOptions.HeaderFontColor", None),
        default_column_width=_number(section.get("DefaultColumnWidth"),
                                     "ExcelOptions.DefaultColumnWidth",
                                     defaults.default_column_width),
        column_widths=widths,
        freeze_header=parse_bool(section.get("FreezeHeader"),
                                 "ExcelOptions.FreezeHeader",
                                 defaults.freeze_header),
        auto_filter=parse_bool(section.get("AutoFilter"),
                               "ExcelOptions.AutoFilter", defaults.auto_filter),
        date_format=_string(section.get("DateFormat"), "ExcelOptions.DateFormat",
                            defaults.date_format),
        datetime_format=_string(section.get("DateTimeFormat"),
                                "ExcelOptions.DateTimeFormat",
                                defaults.datetime_format),
        file_name_prefix=_string(section.get("FileNamePrefix"),
                                 "ExcelOptions.FileNamePrefix", None),
    )


def _build_smtp(section: dict) -> SmtpSettings:
    """Merge the ``Smtp`` section over ``SMTP_*`` environment variables."""
    host = section.get("Host") or os.environ.get("SMTP_HOST") or DEFAULT_SMTP_HOST
    port = section.get("Port", os.environ.get("SMTP_PORT"))
    user = section.get("User", os.environ.get("SMTP_EMAIL", ""))
    password = section.get("Password", os.environ.get("SMTP_PASSWORD", ""))
    use_ssl = section.get("UseSsl", os.environ.get("SMTP_USE_SSL"))
    timeout = section.get("Timeout", os.environ.get("SMTP_TIMEOUT"))

    return SmtpSettings(
        host=_string(host, "Smtp.Host", DEFAULT_SMTP_HOST),
        port=int(_number(port, "Smtp.Port", DEFAULT_SMTP_PORT)),
        user=_string(user, "Smtp.User", "") or "",
        password=_string(password, "Smtp.Password", "") or "",
        use_ssl=parse_bool(use_ssl, "Smtp.UseSsl", True),
        timeout=_number(timeout, "Smtp.Timeout", DEFAULT_SMTP_TIMEOUT),
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _section(raw: dict, key: str, required: bool = False) -> dict:
    section = raw.get(key)
    if section is None:
        if required:
            raise ConfigurationError(f"Missing required section '{key}'")
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{key}' must be a JSON object")
    return section


def _string(value: Any, key: str, default: str | None) -> str | None:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a string")
    return value


def _number(value: Any, key: str, default: float | None) -> float:
    """Accept JSON numbers and numeric strings (env vars arrive as text)."""
    if value is None or value == "":
        if default is None:
            raise ConfigurationError(f"'{key}' must be a number")
        return default
    if isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(f"'{key}' must be positive, got {value!r}")
    return number
