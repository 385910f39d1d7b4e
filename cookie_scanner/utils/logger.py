"""
Console logger for scan phases, with timers and per-scan context.

Lines look like ``[12:00:01.234] ℹ [Orchestrator] (1a2b3c4d) Message key=value``.
The parenthesised tag is the first eight characters of the transaction
id bound with :func:`begin_scan_context`.

Every scan runs in its own ``asyncio`` task, which copies the current
context on creation.  Timers, the recent-lines buffer and the optional
per-scan log file are therefore held in ``contextvars`` and never leak
between concurrent scans.

Values logged under keys that can carry secrets (cookie values, API
keys, tokens) are replaced with ``***``.
"""

from __future__ import annotations

import contextvars
import dataclasses
import io
import os
import pathlib
import re
import sys
import time
from datetime import UTC, datetime

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")

MAX_BUFFERED_LINES = 2000

_MAX_VALUE_CHARS = 300

_REDACTED_KEYS = frozenset(["value", "cookievalue", "apikey", "authorization", "token", "password", "secret"])

_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_GRAY = "\033[90m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_BLUE = "\033[34m"
_MAGENTA = "\033[35m"
_CYAN = "\033[36m"


@dataclasses.dataclass(frozen=True)
class _Level:
    colour: str
    symbol: str


_LEVELS: dict[str, _Level] = {
    "info": _Level(_CYAN, "ℹ"),
    "success": _Level(_GREEN, "✓"),
    "warn": _Level(_YELLOW, "⚠"),
    "error": _Level(_RED, "✗"),
    "debug": _Level(_GRAY, "•"),
    "timing": _Level(_MAGENTA, "⏱"),
}


@dataclasses.dataclass(frozen=True)
class _Timer:
    started: float
    started_at: str


# ============================================================================
# Per-scan state
# ============================================================================

_timers_var: contextvars.ContextVar[dict[str, _Timer] | None] = contextvars.ContextVar("_timers_var", default=None)
_buffer_var: contextvars.ContextVar[list[str] | None] = contextvars.ContextVar("_buffer_var", default=None)
_file_var: contextvars.ContextVar[io.TextIOWrapper | None] = contextvars.ContextVar("_file_var", default=None)
_scan_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("_scan_id_var", default=None)


def _timers() -> dict[str, _Timer]:
    timers = _timers_var.get()
    if timers is None:
        timers = {}
        _timers_var.set(timers)
    return timers


def _buffer() -> list[str]:
    lines = _buffer_var.get()
    if lines is None:
        lines = []
        _buffer_var.set(lines)
    return lines


def begin_scan_context(transaction_id: str) -> None:
    """Bind *transaction_id* to the current context with fresh timers and buffer.

    Call from inside the scan task so only that task sees the new state.
    """
    _timers_var.set({})
    _buffer_var.set([])
    _scan_id_var.set(transaction_id)


def current_scan_id() -> str | None:
    return _scan_id_var.get()


def get_log_buffer() -> list[str]:
    """Return a copy of the recent plain-text lines for the current context."""
    return list(_buffer())


# ============================================================================
# Per-scan log files (WRITE_TO_FILE=true)
# ============================================================================

_write_to_file = os.environ.get("WRITE_TO_FILE", "").lower() == "true"
_debug_enabled = os.environ.get("LOG_LEVEL", "debug").lower() == "debug"


def start_log_file(transaction_id: str, url: str) -> None:
    """Open ``.logs/scan_<id>_<timestamp>.log`` for the current scan."""
    if not _write_to_file:
        return
    end_log_file()

    now = datetime.now(UTC)
    directory = pathlib.Path.cwd() / ".logs"
    path = directory / f"scan_{transaction_id[:8]}_{now:%Y-%m-%d_%H-%M-%S}.log"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        stream = open(path, "a", encoding="utf-8")  # noqa: SIM115
    except OSError as exc:
        print(f"{_RED}✗ [Logger] Cannot open scan log file {path}: {exc}{_RESET}", file=sys.stderr)
        return

    banner = "=" * 80
    stream.write(f"\n{banner}\n  Scan {transaction_id}\n  URL: {url}\n  Started: {now.isoformat()}\n{banner}\n")
    _file_var.set(stream)
    print(f"{_CYAN}ℹ [Logger] Scan log: {path}{_RESET}", file=sys.stderr)


def end_log_file() -> None:
    stream = _file_var.get()
    if stream is None:
        return
    _file_var.set(None)
    try:
        stream.close()
    except OSError:
        print(f"{_YELLOW}⚠ [Logger] Scan log file did not close cleanly{_RESET}", file=sys.stderr)


def _emit(line: str) -> None:
    print(line, file=sys.stderr)
    plain = _ANSI_RE.sub("", line)

    stream = _file_var.get()
    if stream is not None:
        stream.write(plain + "\n")
        stream.flush()

    lines = _buffer()
    lines.append(plain)
    overflow = len(lines) - MAX_BUFFERED_LINES
    if overflow > 0:
        del lines[:overflow]


# ============================================================================
# Formatting
# ============================================================================


def _clock() -> str:
    now = datetime.now(UTC)
    return f"{now:%H:%M:%S}.{now.microsecond // 1000:03d}"


def format_duration(ms: float) -> str:
    """Render milliseconds as ``850ms``, ``1.50s`` or ``2m 5.0s``."""
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.2f}s"
    minutes, remainder = divmod(ms, 60_000)
    return f"{int(minutes)}m {remainder / 1000:.1f}s"


def _render(key: str, value: object) -> str:
    if key.lower() in _REDACTED_KEYS and value is not None:
        return f"{_DIM}***{_RESET}"
    match value:
        case None:
            return f"{_DIM}None{_RESET}"
        case bool():
            return f"{_GREEN if value else _RED}{value}{_RESET}"
        case int() | float():
            return f"{_YELLOW}{value}{_RESET}"
        case str():
            text = value if len(value) <= _MAX_VALUE_CHARS else value[: _MAX_VALUE_CHARS - 3] + "..."
            return f'{_GREEN}"{text}"{_RESET}'
        case list() | tuple() | set() | frozenset():
            return f"{_CYAN}[{len(value)} items]{_RESET}"
        case dict():
            return f"{_CYAN}{{{len(value)} keys}}{_RESET}"
        case _:
            return str(value)


# ============================================================================
# Logger
# ============================================================================


class Logger:
    """Context-prefixed logger; see the module docstring for the line format."""

    def __init__(self, context: str = "Server") -> None:
        self._context = context

    def _log(self, level: str, message: str, data: dict[str, object] | None = None) -> None:
        if level == "debug" and not _debug_enabled:
            return
        style = _LEVELS.get(level, _LEVELS["info"])
        scan_id = _scan_id_var.get()
        parts = [
            f"{_GRAY}[{_clock()}]{_RESET}",
            f"{style.colour}{style.symbol}{_RESET}",
            f"{_BOLD}[{self._context}]{_RESET}",
        ]
        if scan_id:
            parts.append(f"{_DIM}({scan_id[:8]}){_RESET}")
        parts.append(message)
        if data:
            parts.extend(f"{_DIM}{key}={_RESET}{_render(key, value)}" for key, value in data.items())
        _emit(" ".join(parts))

    def info(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("info", message, data)

    def success(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("success", message, data)

    def warn(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("warn", message, data)

    def error(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("error", message, data)

    def debug(self, message: str, data: dict[str, object] | None = None) -> None:
        """Emitted only when ``LOG_LEVEL`` is ``debug`` (the default)."""
        self._log("debug", message, data)

    def start_timer(self, label: str) -> None:
        _timers()[f"{self._context}:{label}"] = _Timer(time.perf_counter(), _clock())
        self._log("timing", f"Starting: {label}")

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop the timer *label*, log its duration and return it in ms.

        Returns ``0.0`` (with a warning) for a timer that was never started.
        """
        timer = _timers().pop(f"{self._context}:{label}", None)
        if timer is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0
        elapsed_ms = (time.perf_counter() - timer.started) * 1000
        self._log(
            "timing",
            f"{message or f'Completed: {label}'} {_DIM}took{_RESET} {_MAGENTA}{format_duration(elapsed_ms)}{_RESET}"
            f" {_DIM}(started {timer.started_at}){_RESET}",
        )
        return elapsed_ms

    def section(self, title: str) -> None:
        rule = f"{_BLUE}{'─' * 60}{_RESET}"
        for line in ("", rule, f"{_BLUE}{_BOLD}  {title}{_RESET}", rule, ""):
            _emit(line)

    def subsection(self, title: str) -> None:
        _emit(f"\n{_CYAN}  ▸ {title}{_RESET}")


def create_logger(context: str) -> Logger:
    """Create a logger whose lines are prefixed with ``[context]``."""
    return Logger(context)
