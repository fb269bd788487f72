"""Tests for the CLI: plugin subcommands and the status summary."""

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from exthost.__main__ import _click_main, main


@pytest.fixture
def cli(tmp_path, notify, monkeypatch):
    """Run `exthost plugin ...` against the sample content root and a tmp database."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.chdir(tmp_path)
    for name in ("PLUGIN_PATH", "EXTHOST_DB", "EXTHOST_ACTOR", "EXTHOST_GRANTS"):
        monkeypatch.delenv(name, raising=False)
    db = tmp_path / "cli.sqlite"

    def run(*args):
        argv = ["exthost", "plugin", "--content-root", str(notify.parent), "--db", str(db), *args]
        with patch.object(sys, "argv", argv), patch.object(Path, "home", return_value=home):
            main()

    return run


class TestPluginCli:
    def test_usage(self, cli, capsys):
        cli()
        assert "usage: exthost plugin" in capsys.readouterr().out

    def test_list(self, cli, capsys):
        cli("list")
        out = capsys.readouterr().out
        assert "notify" in out
        assert "discovered" in out

    def test_install_and_info(self, cli, capsys):
        cli("install", "notify")
        assert "installed notify v1.2.0" in capsys.readouterr().out
        cli("info", "notify")
        out = capsys.readouterr().out
        assert "Notify" in out
        assert "webhook_url: string (required)" in out

    def test_install_unknown_exits_nonzero(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            cli("install", "ghost")
        assert exc.value.code == 1
        assert "not_found (404)" in capsys.readouterr().out

    def test_settings_errors_listed(self, cli, capsys):
        cli("install", "notify")
        with pytest.raises(SystemExit):
            cli("settings", "notify", "{}")
        assert "webhook_url is required" in capsys.readouterr().out

    def test_settings_from_file_then_call(self, cli, tmp_path, capsys):
        payload = tmp_path / "settings.json"
        payload.write_text(json.dumps({"webhook_url": "https://example.com"}))
        cli("install", "notify")
        cli("settings", "notify", f"@{payload}")
        cli("activate", "notify")
        capsys.readouterr()
        cli("call", "notify", "send", "--method", "POST", "--input", '{"text": "hi"}')
        out = capsys.readouterr().out
        assert '"url": "https://example.com"' in out
        assert '"method": "POST"' in out

    def test_endpoints(self, cli, capsys):
        cli("install", "notify")
        cli("settings", "notify", '{"webhook_url": "u"}')
        cli("activate", "notify")
        capsys.readouterr()
        cli("endpoints", "notify")
        assert "send" in capsys.readouterr().out

    def test_uninstall_confirm_declined(self, cli, capsys):
        cli("install", "notify")
        with patch("exthost.__main__.pt_prompt", return_value="n"):
            cli("uninstall", "notify")
        assert "cancelled" in capsys.readouterr().out
        cli("list")
        assert "installed" in capsys.readouterr().out

    def test_uninstall_yes(self, cli, capsys):
        cli("install", "notify")
        cli("uninstall", "notify", "--yes")
        assert "uninstalled notify" in capsys.readouterr().out

    def test_validate(self, cli, notify, capsys):
        cli("validate", str(notify))
        assert "extension is valid" in capsys.readouterr().out

    def test_audit(self, cli, capsys):
        cli("install", "notify")
        capsys.readouterr()
        cli("audit", "--limit", "5")
        assert "plugin.install" in capsys.readouterr().out


class TestStatus:
    def test_summary(self, tmp_path, notify, monkeypatch):
        home = tmp_path / "home"
        home.mkdir()
        monkeypatch.chdir(tmp_path)
        with patch.object(Path, "home", return_value=home):
            result = CliRunner().invoke(
                _click_main,
                ["--content-root", str(notify.parent), "--db", str(tmp_path / "s.sqlite")],
            )
        assert result.exit_code == 0
        assert "1 extension(s)" in result.output
        assert "1 discovered" in result.output
