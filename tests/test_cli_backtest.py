"""Tests for backtest submission, polling and result rendering."""

from __future__ import annotations

import json
from datetime import date
from typing import List

import pytest

from api.dwlf_client import ApiError, ErrorKind
from cli import backtest as backtest_module
from cli.backtest import BacktestTimeout, backtest_record, format_trade_duration, metrics_summary, wait_for_completion
from conftest import StubClient, routes

import dwlf_cli

RESULTS = {
    "requestId": "bt-1",
    "strategyId": "s-1",
    "symbols": ["BTC-USD"],
    "startDate": "2024-01-01",
    "endDate": "2024-06-01",
    "status": "completed",
    "metrics": {"totalTrades": 25, "winningTrades": 15, "losingTrades": 10, "winRate": 0.6, "totalReturn": 12.5,
                "sharpeRatio": 1.4, "maxDrawdown": 8.2, "profitFactor": 1.9},
    "trades": [
        {"symbol": "BTC-USD", "side": "LONG", "entryPrice": 100 + i, "exitPrice": 101 + i, "duration": 30,
         "pnlPercent": 1.0, "exitReason": "target"}
        for i in range(25)
    ],
}


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_format_trade_duration() -> None:
    assert format_trade_duration(5.4) == "5h"
    assert format_trade_duration(23.6) == "24h"
    assert format_trade_duration(30) == "1d"
    assert format_trade_duration(84) == "4d"
    assert format_trade_duration(None) == "-"


def test_backtest_record_truncates_symbol_list() -> None:
    record = backtest_record({"requestId": "bt-1", "symbols": ["A", "B", "C"], "status": "RUNNING",
                              "startDate": "2024-01-01", "endDate": "2024-02-01"})
    assert record["symbols"] == "A, B..."
    assert record["status"] == "running"
    assert record["period"] == "2024-01-01 to 2024-02-01"


def test_metrics_summary_formats_win_rate() -> None:
    summary = metrics_summary(RESULTS["metrics"])
    assert summary["Win Rate"] == "60.0%"
    assert summary["Sharpe Ratio"] == "1.40"


def test_wait_for_completion_polls_until_terminal_status() -> None:
    statuses = iter(["pending", "running", "completed"])
    client = StubClient(lambda method, path, params, body: {"requestId": "bt-1", "status": next(statuses)})
    clock = _FakeClock()
    elapsed: List[float] = []

    final = wait_for_completion(client, "bt-1", clock=clock, sleep=clock.sleep, on_poll=elapsed.append)

    assert final["status"] == "completed"
    assert clock.sleeps == [2.0, 2.0]
    assert elapsed == [0.0, 2.0]
    assert client.paths() == ["/backtests/bt-1"] * 3


def test_wait_for_completion_times_out() -> None:
    client = StubClient(lambda method, path, params, body: {"status": "running"})
    clock = _FakeClock()

    with pytest.raises(BacktestTimeout) as excinfo:
        wait_for_completion(client, "bt-1", clock=clock, sleep=clock.sleep)

    assert str(excinfo.value) == "Backtest timed out after 5 minutes"
    assert len(client.calls) == 150


def test_run_async_submits_and_returns(runner, install_client) -> None:
    stub = install_client(routes({("POST", "/backtests"): {"requestId": "bt-1", "status": "pending"}}))

    result = runner.invoke(
        dwlf_cli.cli,
        ["backtest", "run", "s-1", "btc", "aapl", "--end", "2024-06-01", "--async"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert "Backtest submitted: bt-1" in result.output
    assert "dwlf backtest status" in result.output
    assert stub.calls == [("POST", "/backtests", None, {
        "strategyId": "s-1",
        "symbols": ["BTC-USD", "AAPL"],
        "startDate": "2024-01-01",
        "endDate": "2024-06-01",
    })]


def test_run_defaults_end_date_to_today(runner, install_client) -> None:
    stub = install_client(routes({("POST", "/backtests"): {"requestId": "bt-1"}}))

    runner.invoke(dwlf_cli.cli, ["bt", "run", "s-1", "BTC", "--async"], catch_exceptions=False)

    assert stub.calls[0][3]["endDate"] == date.today().isoformat()


def _polling_handler(final_status: str):
    polls = iter(["running", final_status])

    def _handler(method, path, params, body):
        if (method, path) == ("POST", "/backtests"):
            return {"requestId": "bt-1"}
        if path == "/backtests/bt-1":
            return {"requestId": "bt-1", "status": next(polls), "error": "Not enough data"}
        if path == "/backtests/bt-1/results":
            return RESULTS
        raise ApiError(ErrorKind.NOT_FOUND, "Resource not found", 404)

    return _handler


def test_run_waits_for_results(runner, install_client, monkeypatch) -> None:
    monkeypatch.setattr(backtest_module, "POLL_INTERVAL", 0.0)
    stub = install_client(_polling_handler("completed"))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "run", "s-1", "BTC", "--show-trades"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Backtest completed" in result.output
    assert "Total Trades" in result.output
    assert "60.0%" in result.output
    assert "... and 5 more trades" in result.output
    assert stub.paths("GET") == ["/backtests/bt-1", "/backtests/bt-1", "/backtests/bt-1/results"]


def test_run_reports_failed_backtest(runner, install_client, monkeypatch) -> None:
    monkeypatch.setattr(backtest_module, "POLL_INTERVAL", 0.0)
    stub = install_client(_polling_handler("failed"))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "run", "s-1", "BTC"])

    assert result.exit_code == 1
    assert "Backtest failed: Not enough data" in result.output
    assert "/backtests/bt-1/results" not in stub.paths()


def test_run_submission_error(runner, install_client) -> None:
    install_client(routes({("POST", "/backtests"): ApiError(ErrorKind.CLIENT_ERROR, "Unknown strategy", 400)}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "run", "nope", "BTC"])

    assert result.exit_code == 1
    assert "Failed to run backtest: Unknown strategy" in result.output


def test_list_compact_with_status_filter(runner, install_client) -> None:
    stub = install_client(routes({("GET", "/backtests"): {"backtests": [
        {"requestId": "bt-1", "strategyId": "s-1", "symbols": ["BTC-USD"], "status": "completed",
         "startDate": "2024-01-01", "endDate": "2024-06-01", "createdAt": "2024-06-02T10:00:00Z"},
    ]}}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "ls", "--status", "COMPLETED", "--format", "compact"],
                           catch_exceptions=False)

    assert result.stdout.splitlines() == ["bt-1\ts-1\tBTC-USD\t2024-01-01 to 2024-06-01\tCOMPLETED\t2024-06-02"]
    assert stub.calls[0][2] == {"limit": 20, "status": "completed"}


def test_status_panel(runner, install_client) -> None:
    install_client(routes({("GET", "/backtests/bt-1"): {
        "requestId": "bt-1", "strategyId": "s-1", "symbols": ["BTC-USD"], "status": "completed",
        "createdAt": "2024-06-02T10:00:00Z", "completedAt": "2024-06-02T10:05:00Z",
    }}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "status", "bt-1"], catch_exceptions=False)

    assert "COMPLETED" in result.output
    assert "dwlf backtest results" in result.output


def test_results_json(runner, install_client) -> None:
    install_client(routes({("GET", "/backtests/bt-1/results"): RESULTS}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "results", "bt-1", "--format", "json"], catch_exceptions=False)

    assert json.loads(result.stdout)["metrics"]["totalTrades"] == 25


def test_results_csv_trades(runner, install_client) -> None:
    install_client(routes({("GET", "/backtests/bt-1/results"): RESULTS}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "results", "bt-1", "--trades", "--format", "csv"],
                           catch_exceptions=False)

    lines = result.stdout.splitlines()
    assert lines[0] == "Symbol,Side,Entry,Exit,Duration,P&L %,Exit Reason"
    assert len(lines) == 26


def test_delete_requires_confirmation(runner, install_client) -> None:
    stub = install_client(routes({("DELETE", "/backtests/bt-1"): None}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "rm", "bt-1"], input="n\n", catch_exceptions=False)

    assert "Cancelled." in result.output
    assert stub.calls == []

    result = runner.invoke(dwlf_cli.cli, ["backtest", "delete", "bt-1", "--force"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Backtest deleted successfully" in result.output
    assert stub.paths("DELETE") == ["/backtests/bt-1"]


def test_summary_compact(runner, install_client) -> None:
    install_client(routes({("GET", "/backtests/summary"): {
        "totalBacktests": 4, "completedBacktests": 2, "runningBacktests": 1, "failedBacktests": 1,
        "recentBacktests": [],
    }}))

    result = runner.invoke(dwlf_cli.cli, ["backtest", "summary", "--format", "compact"], catch_exceptions=False)

    assert result.stdout.splitlines() == ["Total Backtests\t4", "Completed\t2", "Running\t1", "Failed\t1"]
