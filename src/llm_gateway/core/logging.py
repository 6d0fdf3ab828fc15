"""
Gateway Logging — colorized for dev, structured JSON for production.

- ColorFormatter (GATEWAY_LOG_FORMAT=text): one line per record, tagged
  with the exchange and session when the record carries them
- StructuredFormatter (GATEWAY_LOG_FORMAT=json): one JSON object per line
- ExchangeTimer: per-exchange stage latency (resolve -> first chunk -> done)

Exchange fields are passed as logger.info(..., extra={...}):
    exchange_id, session_id, provider, model, state, duration_ms
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}
_DIM = "\033[2m"
_RESET = "\033[0m"

# Fields the orchestrator and providers attach via ``extra``
EXCHANGE_FIELDS = (
    "exchange_id",
    "session_id",
    "provider",
    "model",
    "state",
    "duration_ms",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter: ``12:00:01 [logger] LEVEL: msg (exchange=.. session=..)``."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level, name = record.levelname, record.name
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(level, '')}{level}{_RESET}"
            name = f"{_DIM}{name}{_RESET}"

        line = f"{self.formatTime(record, self.datefmt)} [{name}] {level}: {record.getMessage()}"
        tags = " ".join(
            f"{key.split('_')[0]}={getattr(record, key)}"
            for key in ("exchange_id", "session_id")
            if getattr(record, key, None)
        )
        if tags:
            line += f" ({tags})"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for log aggregation; exchange fields go top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in EXCHANGE_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ExchangeTimer:
    """Tracks stage timing for a single exchange.

    Usage:
        timer = ExchangeTimer()
        timer.mark("resolved")
        timer.mark("first_chunk")
        timer.mark("done")
        timer.summary()  # -> "resolved: 0.0s | first_chunk: 0.4s | done: 2.1s | Total: 2.5s"
        timer.total_ms() # -> 2512
    """

    def __init__(self):
        self._marks: list[tuple[str, float]] = []
        self._start = time.monotonic()

    def mark(self, stage: str) -> None:
        """Record a timestamp for a stage completion."""
        self._marks.append((stage, time.monotonic()))

    def has(self, stage: str) -> bool:
        return any(name == stage for name, _ in self._marks)

    def since_start_ms(self, stage: str) -> float | None:
        """Milliseconds between timer creation and the first mark for ``stage``."""
        for name, ts in self._marks:
            if name == stage:
                return (ts - self._start) * 1000
        return None

    def total_ms(self) -> int:
        """Total elapsed milliseconds from start."""
        return int((time.monotonic() - self._start) * 1000)

    def summary(self) -> str:
        """Human-readable timing summary."""
        parts = []
        for i, (name, ts) in enumerate(self._marks):
            prev_ts = self._marks[i - 1][1] if i > 0 else self._start
            parts.append(f"{name}: {ts - prev_ts:.1f}s")
        parts.append(f"Total: {time.monotonic() - self._start:.1f}s")
        return " | ".join(parts)


def mask_api_key(api_key: str) -> str:
    """Log-safe form of an API key: ``sk-...`` plus the last six characters."""
    if len(api_key) > 10:
        return f"sk-...{api_key[-6:]}"
    return "sk-..."


def setup_logging() -> None:
    """Install one stdout handler on the root logger.

    Env vars: GATEWAY_LOG_LEVEL (default INFO), GATEWAY_LOG_FORMAT
    (text / json) and GATEWAY_LOG_COLOR (true / false / auto).
    """
    level = getattr(logging, os.getenv("GATEWAY_LOG_LEVEL", "INFO").upper(), logging.INFO)

    if os.getenv("GATEWAY_LOG_FORMAT", "text").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        color = os.getenv("GATEWAY_LOG_COLOR", "auto").lower()
        use_color = sys.stdout.isatty() if color == "auto" else color == "true"
        formatter = ColorFormatter(use_color=use_color)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Upstream client chatter; the gateway logs its own request lines
    for name in ("httpx", "httpcore", "openai", "aiosqlite", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
