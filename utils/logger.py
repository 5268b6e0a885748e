"""
Logging configuration for DWLF CLI.

Console output goes to stderr so ``--format json`` and ``--format csv``
stay machine readable on stdout.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional


class EncodingSafeStreamHandler(logging.StreamHandler):
    """Stream handler that tolerates consoles without full Unicode support."""

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        stream = self.stream
        if stream is None:
            return

        msg = self.format(record)

        try:
            stream.write(msg + self.terminator)
        except UnicodeEncodeError:
            encoding = getattr(stream, "encoding", None) or "utf-8"
            safe_message = msg.encode(encoding, errors="replace").decode(encoding, errors="replace")
            try:
                stream.write(safe_message + self.terminator)
            except Exception:
                self.handleError(record)
                return
        except Exception:
            self.handleError(record)
            return

        self.flush()


def setup_logging(log_level: str = "WARNING",
                  log_dir: Optional[Path] = None,
                  log_file: str = "dwlf_cli.log",
                  max_bytes: int = 5 * 1024 * 1024,  # 5MB
                  backup_count: int = 3) -> None:
    """Setup logging configuration and ensure safe Unicode output."""

    normalized_level = log_level.upper() if isinstance(log_level, str) else "WARNING"
    if normalized_level not in logging._nameToLevel:
        normalized_level = "WARNING"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # File handler with rotation; skipped when the directory is not writable
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8"
            )
        except OSError as exc:
            sys.stderr.write(f"Could not open log file in {log_dir}: {exc}\n")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    console_handler: logging.Handler = EncodingSafeStreamHandler(sys.stderr)
    console_handler.setLevel(logging._nameToLevel[normalized_level])
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
