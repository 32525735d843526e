"""End-to-end tests for ReportDispatcher.

Each run uses a real SQLite file and a recording transport in place of
SMTP, so the payload handed to the transport can be inspected.
"""

from unittest.mock import MagicMock

import pytest
from openpyxl import load_workbook

from report_mailer.errors import (
    ArgumentError,
    ConfigurationError,
    DataAccessError,
    DispatchError,
    ExportError,
)
from report_mailer.orchestrator import ReportDispatcher, RunState, read_sql_argument

QUERY = "SELECT customer, amount FROM orders ORDER BY id"


# ---------------------------------------------------------------------------
# read_sql_argument
# ---------------------------------------------------------------------------

class TestReadSqlArgument:

    def test_literal(self):
        assert read_sql_argument("SELECT 1") == "SELECT 1"

    def test_file(self, tmp_path):
        script = tmp_path / "report.sql"
        script.write_text("SELECT 2;\n", encoding="utf-8")
        assert read_sql_argument(str(script)) == "SELECT 2;\n"

    def test_blank(self):
        with pytest.raises(ArgumentError):
            read_sql_argument("   ")

    def test_empty_file(self, tmp_path):
        script = tmp_path / "empty.sql"
        script.write_text("", encoding="utf-8")
        with pytest.raises(ArgumentError):
            read_sql_argument(str(script))

    def test_file_not_utf8(self, tmp_path):
        script = tmp_path / "latin1.sql"
        script.write_bytes(b"SELECT 'caf\xe9';\n")
        with pytest.raises(ArgumentError, match="not valid UTF-8"):
            read_sql_argument(str(script))


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestInlineMode:
    """Scenario A: SendAsAttachment=false inlines an HTML table."""

    def test_payload_body_has_table(self, write_config, transport_factory, transports):
        dispatcher = ReportDispatcher(transport_factory)
        payload = dispatcher.run(write_config(SendAsAttachment="false"), QUERY)

        assert dispatcher.state is RunState.DONE
        assert payload.attachments == []
        assert payload.body.startswith("<p>Orders report</p>")
        assert payload.body.count("<th>") == 2
        assert payload.body.count("<td>") == 6
        assert "Initech &lt;HQ&gt;" in payload.body

        assert len(transports) == 1
        assert transports[0].calls == ["configure", "send"]
        assert transports[0].payload is payload

    def test_static_fields_copied(self, write_config, transport_factory):
        payload = ReportDispatcher(transport_factory).run(write_config(), QUERY)
        assert payload.recipients == ["ops@example.com"]
        assert payload.sender == "reports@example.com"
        assert payload.subject == "Daily orders"

    def test_sql_from_file(self, write_config, transport_factory, tmp_path):
        script = tmp_path / "orders.sql"
        script.write_text(QUERY + ";\n", encoding="utf-8")
        payload = ReportDispatcher(transport_factory).run(write_config(), str(script))
        assert payload.body.count("<td>") == 6


class TestAttachmentMode:
    """Scenario B: SendAsAttachment=true attaches one spreadsheet."""

    def test_single_attachment_written(self, write_config, transport_factory, tmp_path):
        config_path = write_config(
            SendAsAttachment=True,
            ExcelOptions={"SheetName": "Orders"},
        )
        payload = ReportDispatcher(transport_factory).run(config_path, QUERY)

        attachment_dir = tmp_path / "attachments"
        files = list(attachment_dir.glob("*.xlsx"))
        assert len(files) == 1
        assert payload.attachments == [str(files[0].resolve())]
        assert payload.body == "<p>Orders report</p>"

        ws = load_workbook(files[0])["Orders"]
        assert [c.value for c in ws[1]] == ["customer", "amount"]
        assert ws.max_row == 4

    def test_export_failure_aborts(self, write_config, transport_factory, transports, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        dispatcher = ReportDispatcher(transport_factory)

        with pytest.raises(ExportError):
            dispatcher.run(
                write_config(SendAsAttachment=True, AttachmentLocation=str(blocker)),
                QUERY,
            )
        assert dispatcher.state is RunState.ABORTED
        assert transports == []


class TestMissingConfiguration:
    """Scenario C: a missing config file never touches the database."""

    def test_no_database_access(self, tmp_path, transport_factory, transports, monkeypatch):
        execute = MagicMock()
        monkeypatch.setattr("report_mailer.orchestrator.execute_query", execute)
        dispatcher = ReportDispatcher(transport_factory)

        with pytest.raises(ConfigurationError, match="not found"):
            dispatcher.run(tmp_path / "missing.json", QUERY)

        execute.assert_not_called()
        assert dispatcher.state is RunState.ABORTED
        assert transports == []

    def test_config_not_utf8(self, tmp_path, transport_factory, transports):
        config_path = tmp_path / "appConfig.json"
        config_path.write_bytes(b'{"ConnectionStr": "caf\xe9.db"}')
        dispatcher = ReportDispatcher(transport_factory)

        with pytest.raises(ConfigurationError, match="not valid UTF-8"):
            dispatcher.run(config_path, QUERY)

        assert dispatcher.state is RunState.ABORTED
        assert transports == []


class TestUnreadableSqlFile:

    def test_aborts_after_config(self, write_config, transport_factory, transports, tmp_path):
        script = tmp_path / "latin1.sql"
        script.write_bytes(b"SELECT 'caf\xe9';\n")
        dispatcher = ReportDispatcher(transport_factory)

        with pytest.raises(ArgumentError, match="not valid UTF-8"):
            dispatcher.run(write_config(), str(script))

        assert dispatcher.config is not None
        assert dispatcher.table is None
        assert dispatcher.state is RunState.ABORTED
        assert transports == []


class TestQueryFailure:
    """Scenario D: a syntax error stops the run before rendering."""

    def test_no_render_or_dispatch(self, write_config, transport_factory, transports, monkeypatch):
        render_html = MagicMock()
        render_spreadsheet = MagicMock()
        monkeypatch.setattr("report_mailer.orchestrator.render_html", render_html)
        monkeypatch.setattr("report_mailer.orchestrator.render_spreadsheet", render_spreadsheet)
        dispatcher = ReportDispatcher(transport_factory)

        with pytest.raises(DataAccessError, match="syntax error"):
            dispatcher.run(write_config(), "SELEC customer FROM orders")

        render_html.assert_not_called()
        render_spreadsheet.assert_not_called()
        assert transports == []
        assert dispatcher.state is RunState.ABORTED


class TestDispatchFailure:

    def test_transport_error_propagates(self, write_config, transport_factory, transports):
        def _failing_factory(settings):
            transport = transport_factory(settings)
            transport.send = MagicMock(side_effect=DispatchError("smtp down"))
            return transport

        dispatcher = ReportDispatcher(_failing_factory)
        with pytest.raises(DispatchError, match="smtp down"):
            dispatcher.run(write_config(), QUERY)

        assert dispatcher.state is RunState.ABORTED
        assert transports[0].calls == ["configure"]

    def test_smtp_settings_passed_to_transport(self, write_config, transport_factory, transports):
        config_path = write_config(Smtp={"Host": "mail.internal", "Port": 25, "UseSsl": False})
        ReportDispatcher(transport_factory).run(config_path, QUERY)

        settings = transports[0].settings
        assert settings.host == "mail.internal"
        assert settings.port == 25
        assert settings.use_ssl is False
