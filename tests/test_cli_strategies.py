"""Tests for the strategies command group."""

from __future__ import annotations

import json

import pytest

from api.dwlf_client import ApiError, ErrorKind
from cli.strategies import strategy_record
from conftest import routes

import dwlf_cli


def test_strategy_record_converts_win_rate_fraction() -> None:
    record = strategy_record({
        "strategyId": "s-1",
        "name": "Trend Rider",
        "isPublic": True,
        "performance": {"totalSignals": 12, "activeSignals": 3, "winRate": 0.55, "totalPnL": -40},
    })
    assert record["id"] == "s-1"
    assert record["visibility"] == "public"
    assert record["win_rate"] == pytest.approx(55.0)
    assert record["total_pnl"] == -40.0
    assert strategy_record({})["name"] == "Unnamed"


def test_activate_reports_each_symbol_and_fails_on_partial_failure(runner, install_client) -> None:
    def _handler(method, path, params, body):
        assert (method, path) == ("POST", "/strategies/s-1/activate")
        if body["symbol"] == "ETH-USD":
            raise ApiError(ErrorKind.CLIENT_ERROR, "Symbol not supported", 400)
        return {"success": True}

    stub = install_client(_handler)

    result = runner.invoke(dwlf_cli.cli, ["strategies", "activate", "s-1", "btc", "eth/usd"])

    assert result.exit_code == 1
    assert "BTC-USD: activated" in result.output
    assert "ETH-USD: Symbol not supported" in result.output
    assert "1/2 symbol(s) activated." in result.output
    assert [call[3] for call in stub.calls] == [{"symbol": "BTC-USD"}, {"symbol": "ETH-USD"}]


def test_deactivate_all_succeed(runner, install_client) -> None:
    install_client(routes({("POST", "/strategies/s-1/deactivate"): {"success": True}}))

    result = runner.invoke(dwlf_cli.cli, ["strat", "deactivate", "s-1", "AAPL"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "1/1 symbol(s) deactivated." in result.output


def test_list_alias_and_json(runner, install_client) -> None:
    payload = {"strategies": [{"strategyId": "s-1", "name": "Trend Rider"}]}
    stub = install_client(routes({("GET", "/strategies"): payload}))

    result = runner.invoke(dwlf_cli.cli, ["strat", "ls", "--mine-only", "--format", "json"], catch_exceptions=False)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == payload
    assert stub.calls[0][2]["mine"] == "true"


def test_list_rejects_conflicting_filters(runner, install_client) -> None:
    install_client(routes({}))
    result = runner.invoke(dwlf_cli.cli, ["strategies", "list", "--public-only", "--mine-only"])
    assert result.exit_code == 1


def test_show_panel(runner, install_client) -> None:
    install_client(routes({("GET", "/strategies/s-1"): {"strategy": {
        "strategyId": "s-1",
        "name": "Trend Rider",
        "description": "Rides trends",
        "activatedSymbols": ["BTC-USD"],
        "performance": {"totalSignals": 4, "activeSignals": 1, "winRate": 0.5, "totalPnL": 120},
    }}}))

    result = runner.invoke(dwlf_cli.cli, ["strategies", "info", "s-1"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Trend Rider" in result.output
    assert "Active on: BTC-USD" in result.output


def test_status_compact(runner, install_client) -> None:
    install_client(routes({("GET", "/strategies/s-1/activations"): {"activations": [
        {"symbol": "BTC-USD", "isActive": True, "activatedAt": "2024-02-01T00:00:00Z"},
    ]}}))

    result = runner.invoke(dwlf_cli.cli, ["strategies", "status", "s-1", "--format", "compact"],
                           catch_exceptions=False)

    assert result.stdout.splitlines() == ["BTC-USD\tyes\t2024-02-01\t-"]
