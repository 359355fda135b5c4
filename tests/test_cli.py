"""Tests for courrier CLI commands."""

import pytest
from click.testing import CliRunner

from courrier.cli import main
from courrier.config import CONFIG_ENV


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    return CliRunner()


@pytest.fixture
def config_path(tmp_path, account):
    path = tmp_path / "config.yaml"
    path.write_text(
        "email_storage_path: emails\n"
        "db_path: courrier.db\n"
        "servers:\n"
        "  - host: imap.example.com\n"
        "    accounts:\n"
        "      - email: a@x.com\n"
        "        password: secret\n"
    )
    return path


def invoke(runner, config_path, *args):
    return runner.invoke(main, ["-c", str(config_path), *args], env={"COLUMNS": "200"})


class TestHelp:
    def test_aliases_listed(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "fetch (f)" in result.output
        assert "status (st)" in result.output
        assert "mailboxes (m)" in result.output

    def test_alias_lookup(self):
        assert main.canonical("st") == "status"
        assert main.canonical("status") == "status"
        assert main.aliases_of("stats") == ["t"]
        assert main.aliases_of("nope") == []

    def test_alias_runs_same_command(self, runner, config_path):
        by_alias = invoke(runner, config_path, "st")
        by_name = invoke(runner, config_path, "status")
        assert by_alias.exit_code == by_name.exit_code == 0
        assert by_alias.output == by_name.output

    def test_unknown_command(self, runner):
        result = runner.invoke(main, ["nope"])
        assert result.exit_code == 2
        assert "No such command" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = invoke(runner, tmp_path / "missing.yaml", "status")
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestAccounts:
    def test_accounts(self, runner, config_path):
        result = invoke(runner, config_path, "accounts")
        assert result.exit_code == 0
        assert "imap.example.com:993" in result.output
        assert "a@x.com" in result.output
        assert "secret" not in result.output

    def test_mailboxes(self, runner, config_path, mail_server):
        mail_server.add_mailbox("INBOX")
        mail_server.add_mailbox("[Gmail]", flags="\\Noselect")
        result = invoke(runner, config_path, "m", "a@x.com")
        assert result.exit_code == 0
        assert "INBOX" in result.output
        assert "[Gmail] [not selectable]" in result.output

    def test_mailboxes_unknown_account(self, runner, config_path):
        result = invoke(runner, config_path, "mailboxes", "who@x.com")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_mailboxes_auth_failure(self, runner, config_path, mail_server):
        mail_server.valid_logins.clear()
        result = invoke(runner, config_path, "mailboxes", "a@x.com")
        assert result.exit_code == 1
        assert "Login failed for a@x.com" in result.output


class TestFetch:
    def test_fetch(self, runner, config_path, mail_server, tmp_path):
        messages = mail_server.add_mailbox("INBOX", [1, 2])
        result = invoke(runner, config_path, "fetch")
        assert result.exit_code == 0, result.output
        assert "Saved: 2" in result.output
        assert (tmp_path / "emails" / "a_x.com" / "INBOX" / "1.eml").read_bytes() == messages[1]

        result = invoke(runner, config_path, "f")
        assert result.exit_code == 0
        assert "Saved: 0" in result.output

    def test_fetch_failure_exit_code(self, runner, config_path, mail_server):
        mail_server.valid_logins.clear()
        result = invoke(runner, config_path, "fetch")
        assert result.exit_code == 1
        assert "Failed mailboxes: 1" in result.output

    def test_fetch_unknown_account(self, runner, config_path):
        result = invoke(runner, config_path, "fetch", "-a", "who@x.com")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_fetch_one_account(self, runner, config_path, mail_server):
        mail_server.add_mailbox("INBOX", [1])
        result = invoke(runner, config_path, "fetch", "-a", "a@x.com")
        assert result.exit_code == 0
        assert "Saved: 1" in result.output


class TestStatus:
    def test_status_before_any_run(self, runner, config_path):
        result = invoke(runner, config_path, "status")
        assert result.exit_code == 0
        assert "No fetch has run yet" in result.output

    def test_stats_empty(self, runner, config_path):
        result = invoke(runner, config_path, "t")
        assert result.exit_code == 0
        assert "No messages saved yet" in result.output

    def test_runs_empty(self, runner, config_path):
        result = invoke(runner, config_path, "runs")
        assert result.exit_code == 0
        assert "No fetch runs recorded" in result.output

    def test_after_fetch(self, runner, config_path, mail_server):
        mail_server.add_mailbox("INBOX", [1, 2, 3])
        assert invoke(runner, config_path, "fetch").exit_code == 0

        result = invoke(runner, config_path, "st")
        assert result.exit_code == 0
        assert "Idle" in result.output
        assert "Fetched:   3" in result.output

        result = invoke(runner, config_path, "stats")
        assert result.exit_code == 0
        assert "a@x.com" in result.output
        assert "Total: 3 messages" in result.output

        result = invoke(runner, config_path, "r", "-n", "5")
        assert result.exit_code == 0
        assert "completed" in result.output
