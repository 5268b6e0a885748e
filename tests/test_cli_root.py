"""Tests for root-level commands: status, completion and version."""

from __future__ import annotations

from api.dwlf_client import CLIENT_VERSION, KeyValidation
from conftest import routes

import dwlf_cli


def test_version_option(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["--version"])
    assert result.exit_code == 0
    assert CLIENT_VERSION in result.output


def test_status_healthy(runner, install_client) -> None:
    install_client(routes({}))

    result = runner.invoke(dwlf_cli.cli, ["status"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "reachable" in result.output
    assert "valid" in result.output


def test_status_without_key_is_unhealthy(runner, install_client) -> None:
    stub = install_client(routes({}), api_key=None)

    result = runner.invoke(dwlf_cli.cli, ["status"])

    assert result.exit_code == 1
    assert "not configured" in result.output
    assert stub.settings.api_key is None


def test_status_reports_invalid_key(runner, install_client) -> None:
    stub = install_client(routes({}))
    stub.validation = KeyValidation(valid=False, error="Invalid API key (invalid credentials)")

    result = runner.invoke(dwlf_cli.cli, ["status"])

    assert result.exit_code == 1
    assert "Invalid API key" in result.output


def test_status_unreachable(runner, install_client) -> None:
    stub = install_client(routes({}))
    stub.reachable = False

    result = runner.invoke(dwlf_cli.cli, ["status"])

    assert result.exit_code == 1
    assert "unreachable" in result.output


def test_completion_script(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["completion", "zsh"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "_DWLF_COMPLETE=zsh_complete" in result.output


def test_completion_rejects_unknown_shell(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["completion", "powershell"])
    assert result.exit_code == 2


def test_debug_flag_enables_debug_console_logging(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["--debug", "config", "list-keys"], catch_exceptions=False)
    assert result.exit_code == 0
