"""Shared pytest fixtures for the report-mailer test suite.

Provides:
    sales_db       -- on-disk SQLite database with a small ``orders`` table
    write_config   -- factory writing a JSON configuration file to tmp_path
    transports     -- list collecting RecordingTransport instances
    transport_factory -- factory to pass to ReportDispatcher
    fake_mail_client  -- patches the orchestrator to use RecordingTransport
"""

import json
import sqlite3

import pytest


# ---------------------------------------------------------------------------
# sales_db fixture
# ---------------------------------------------------------------------------

@pytest.fixture()
def sales_db(tmp_path):
    """Create ``sales.db`` with three orders and return its path."""
    db_path = tmp_path / "sales.db"
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE orders (
            id          INTEGER PRIMARY KEY,
            customer    TEXT NOT NULL,
            amount      REAL,
            order_date  DATE,
            created_at  TIMESTAMP,
            note        TEXT
        );
        INSERT INTO orders (customer, amount, order_date, created_at, note)
        VALUES
            ('Acme Corp',   1250.5, '2024-01-15', '2024-01-15 09:30:00', 'first'),
            ('Globex',       300.0, '2024-02-01', '2024-02-01 14:00:00', NULL),
            ('Initech <HQ>',  42.0, '2024-02-20', '2024-02-20 08:15:00', 'R&D');
        """
    )
    conn.commit()
    conn.close()
    return db_path


# ---------------------------------------------------------------------------
# write_config fixture
# ---------------------------------------------------------------------------

@pytest.fixture()
def write_config(tmp_path, sales_db):
    """Return a function that writes a config file and returns its path.

    Keyword arguments override top-level keys of a valid inline-mode
    configuration pointing at ``sales_db``.
    """

    def _write(**overrides):
        config = {
            "ConnectionStr": str(sales_db),
            "SendAsAttachment": "false",
            "Email": {
                "To": ["ops@example.com"],
                "From": "reports@example.com",
                "Subject": "Daily orders",
                "MessageBody": "<p>Orders report</p>",
            },
            "AttachmentLocation": str(tmp_path / "attachments"),
        }
        config.update(overrides)
        path = tmp_path / "appConfig.json"
        path.write_text(json.dumps(config), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# transport fixtures
# ---------------------------------------------------------------------------

class RecordingTransport:
    """Mail transport double that records configure/send calls."""

    def __init__(self, settings):
        self.settings = settings
        self.calls = []
        self.payload = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return None

    def configure(self, payload):
        self.calls.append("configure")
        self.payload = payload

    def send(self):
        self.calls.append("send")


@pytest.fixture()
def transports():
    return []


@pytest.fixture()
def transport_factory(transports):
    def _factory(settings):
        transport = RecordingTransport(settings)
        transports.append(transport)
        return transport

    return _factory


@pytest.fixture()
def fake_mail_client(monkeypatch, transports, transport_factory):
    """Swap MailClient for RecordingTransport inside the orchestrator."""
    monkeypatch.setattr("report_mailer.orchestrator.MailClient", transport_factory)
    return transports
