"""
CLI command registration helpers for DWLF CLI.

Each submodule exposes a ``register`` function that attaches a group of
related commands to the root Click group defined in ``dwlf_cli.py``.
"""

__all__ = ["account", "backtest", "charts", "common", "market", "portfolio", "signals", "strategies"]
