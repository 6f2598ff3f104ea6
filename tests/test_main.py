"""CLI smoke tests for statement_emails.main."""

import openpyxl
import pytest
import yaml

from statement_emails import main as cli
from statement_emails.models import Cadence
from statement_emails.settings_store import AppSettingsStore


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda cfg, verbose=False: None)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "statement_emails": {"enabled": False, "weekly_day_of_week": "Monday"},
        "storage": {"db_path": str(tmp_path / "cli.db")},
        "backend_api": {"base_url": "http://backend.invalid"},
    }), encoding="utf-8")
    return str(path)


class TestCli:

    def test_init_db(self, config_path, tmp_path, capsys):
        assert cli.main(["--config", config_path, "init-db"]) == 0
        assert "default settings added" in capsys.readouterr().out
        assert AppSettingsStore(tmp_path / "cli.db").get_value("CompanyName") == "Shop Inventory"

    def test_import_recipients_and_status(self, config_path, tmp_path, capsys):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Card Code", "Card Name", "Email"])
        ws.append(["C001", "Alpha", "ap@alpha.test"])
        ws.append(["C002", "Beta", ""])
        xlsx = tmp_path / "portal.xlsx"
        wb.save(xlsx)

        assert cli.main(["--config", config_path, "import-recipients", str(xlsx)]) == 0
        assert "Imported 2 portal users (1 statement recipients" in capsys.readouterr().out

        assert cli.main(["--config", config_path, "status"]) == 0
        out = capsys.readouterr().out
        assert "Portal users:      2" in out
        assert "Recipients:        1" in out
        assert "never" in out

    def test_preview(self, config_path, tmp_path, capsys):
        AppSettingsStore(tmp_path / "cli.db").save_setting(
            "StatementEmailsLastWeeklySentUtc", "2024-03-11T06:00:00Z"
        )
        assert cli.main(["--config", config_path, "preview", "--now", "2024-03-15T08:00:00Z"]) == 0
        out = capsys.readouterr().out
        assert "Schedule point:  2024-03-11T06:00:00Z  period 2024-03-04 - 2024-03-10" in out
        assert "Next point:      2024-03-18T06:00:00Z" in out
        assert "Schedule point:  2024-03-01T06:00:00Z  period 2024-02-01 - 2024-02-29" in out
        assert "Due now:         no" in out
        assert "Due now:         yes" in out

    def test_tick_when_disabled(self, config_path, capsys):
        assert cli.main(["--config", config_path, "tick", "--now", "2024-03-15T08:00:00Z"]) == 0
        assert "disabled" in capsys.readouterr().out

    def test_tick_bad_now(self, config_path, capsys):
        assert cli.main(["--config", config_path, "tick", "--now", "someday"]) == 1
        assert "Cannot parse" in capsys.readouterr().out

    def test_missing_config_file(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda cfg, verbose=False: None)
        assert cli.main(["--config", str(tmp_path / "missing.yaml"), "status"]) == 1
        assert "ERROR" in capsys.readouterr().out

    def test_missing_workbook(self, config_path, tmp_path):
        assert cli.main(["--config", config_path, "import-recipients", str(tmp_path / "nope.xlsx")]) == 1

    def test_tick_sends_with_injected_collaborators(self, config_path, tmp_path, monkeypatch, capsys):
        sent = []

        class Mailer:
            def send_statement_email(self, to_email, *args):
                sent.append(to_email)
                return True

        real_build = cli.build_scheduler

        def build(cfg, client):
            cfg.statement_emails.enabled = True
            scheduler = real_build(cfg, client)
            scheduler.generator.get_statement = lambda code, req: object()
            scheduler.mailer = Mailer()
            return scheduler

        monkeypatch.setattr(cli, "build_scheduler", build)
        wb = openpyxl.Workbook()
        wb.active.append(["Card Code", "Email"])
        wb.active.append(["C001", "ap@alpha.test"])
        xlsx = tmp_path / "portal.xlsx"
        wb.save(xlsx)
        cli.main(["--config", config_path, "import-recipients", str(xlsx)])

        assert cli.main(["--config", config_path, "tick", "--now", "2024-03-15T08:00:00Z"]) == 0
        assert sent == ["ap@alpha.test", "ap@alpha.test"]
        store = AppSettingsStore(tmp_path / "cli.db")
        assert store.get_last_sent(Cadence.MONTHLY).isoformat() == "2024-03-01T06:00:00+00:00"
        assert "Weekly: sent 1/1" in capsys.readouterr().out
