"""Logging helpers for blockpilot."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional

ROOT_LOGGER = "blockpilot"


class SensitiveDataFilter(logging.Filter):
    """Strip tokens, passwords and inline asset payloads from log lines."""

    _PATTERNS: Iterable[tuple[re.Pattern[str], str]] = (
        (re.compile(r"(authorization=)([^\s]+)", re.I), r"\1***"),
        (re.compile(r"(api[_-]?key=)([^&\s]+)", re.I), r"\1***"),
        (re.compile(r"(access[_-]?token=)([^&\s]+)", re.I), r"\1***"),
        (re.compile(r"(password=)([^&\s]+)", re.I), r"\1***"),
        (re.compile(r"Bearer\s+[A-Za-z0-9._-]+"), "Bearer ***"),
        (re.compile(r"(data:[\w/+.-]+;base64,)[A-Za-z0-9+/=]{32,}"), r"\1..."),
    )

    def __init__(self) -> None:
        super().__init__(name="SensitiveDataFilter")

    @staticmethod
    def _sanitize_value(value: object) -> object:
        if isinstance(value, str):
            sanitized = value
            for pattern, repl in SensitiveDataFilter._PATTERNS:
                sanitized = pattern.sub(repl, sanitized)
            return sanitized
        if isinstance(value, (list, tuple)):
            return type(value)(SensitiveDataFilter._sanitize_value(v) for v in value)
        if isinstance(value, dict):
            return {k: SensitiveDataFilter._sanitize_value(v) for k, v in value.items()}
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._sanitize_value(record.msg)
        if record.args:
            record.args = self._sanitize_value(record.args)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = {
            "timestamp": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        if record.__dict__.get("extra"):
            data["extra"] = record.__dict__["extra"]
        return json.dumps(data, ensure_ascii=False)


def configure_logging(
    log_file_path: Path,
    *,
    level: str | int | None = None,
    console: bool = True,
) -> logging.Logger:
    """Attach a rotating JSON file handler (and optionally a console handler) to the package logger."""

    resolved_level = logging.getLevelName(str(level or "INFO").upper())
    if isinstance(resolved_level, str):  # unknown name returns string
        resolved_level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved_level)

    handler = get_rotating_log_handler(logger, log_file_path)
    if handler is None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file_path,
            maxBytes=20 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        logger.addHandler(handler)

    handler.setLevel(resolved_level)
    if not any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
        handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())

    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.setLevel(resolved_level)
        stream.addFilter(SensitiveDataFilter())
        stream.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(stream)
    return logger


def get_rotating_log_handler(logger: logging.Logger, log_file_path: Path) -> Optional[RotatingFileHandler]:
    """Return the rotating handler already writing to ``log_file_path``, if any."""
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            base_filename = getattr(handler, "baseFilename", "")
            if Path(base_filename).resolve() == log_file_path.resolve():
                return handler
    return None


def tail_log_file(path: Path, max_lines: int = 200) -> List[str]:
    """Read the last `max_lines` from the given log file."""
    if max_lines <= 0 or not path.exists() or not path.is_file():
        return []
    max_lines = min(max_lines, 2000)
    chunk_size = 8192
    buffer = b""
    with path.open("rb") as fh:
        fh.seek(0, 2)
        file_size = fh.tell()
        remaining = file_size
        newlines = 0
        while remaining > 0 and newlines <= max_lines:
            read_size = min(chunk_size, remaining)
            remaining -= read_size
            fh.seek(remaining)
            chunk = fh.read(read_size)
            buffer = chunk + buffer
            newlines = buffer.count(b"\n")
        text = buffer.decode("utf-8", errors="replace")
        lines = text.splitlines()
        return lines[-max_lines:]
