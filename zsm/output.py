"""Console reporting with optional ANSI colors and syslog forwarding."""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys

logger = logging.getLogger("zsm")
# Console does the printing; the logger only feeds optional handlers such as syslog
logger.addHandler(logging.NullHandler())

SYSLOG_SOCKETS = ("/dev/log", "/var/run/syslog")

_ANSI = {
    "ok": "\033[32m",
    "warn": "\033[33m",
    "error": "\033[31m",
    "cmd": "\033[34m",
    "reset": "\033[0m",
}


def color_enabled(requested: bool = True) -> bool:
    """Colors are on unless disabled or NO_COLOR is set (https://no-color.org)."""
    return requested and os.environ.get("NO_COLOR") is None


def enable_syslog(tool: str) -> logging.Handler | None:
    """Attach a SysLogHandler tagged with `tool`; None if no local socket exists."""
    address = next((p for p in SYSLOG_SOCKETS if os.path.exists(p)), None)
    if address is None:
        return None
    handler = logging.handlers.SysLogHandler(
        address=address, facility=logging.handlers.SysLogHandler.LOG_USER
    )
    handler.setFormatter(logging.Formatter(f"{tool}: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return handler


class Console:
    """Prints user-facing messages.

    Info goes to stdout, warnings and errors to stderr. Everything is also
    sent to the `zsm` logger so syslog sees the same story as the terminal.
    """

    def __init__(self, color: bool = True, verbose: bool = False):
        self.verbose = verbose
        if color:
            self.colors = dict(_ANSI)
        else:
            self.colors = {k: "" for k in _ANSI}

    def _paint(self, key: str, message: str) -> str:
        return f"{self.colors[key]}{message}{self.colors['reset']}"

    def info(self, message: str) -> None:
        logger.info(message)
        print(message)

    def ok(self, message: str) -> None:
        logger.info(message)
        print(self._paint("ok", message))

    def warn(self, message: str) -> None:
        logger.warning(message)
        print(self._paint("warn", f"Warning: {message}"), file=sys.stderr)

    def error(self, message: str) -> None:
        logger.error(message)
        print(self._paint("error", f"Error: {message}"), file=sys.stderr)

    def command(self, tag: str, cmd: str, force: bool = False) -> None:
        """Show a command about to run (verbose mode, or forced for dry runs)."""
        if self.verbose or force:
            print(f"  [{tag}] {self._paint('cmd', cmd)}")

    def rule(self) -> None:
        print(f"\n{'=' * 60}")


def bytes_to_human(size: int) -> str:
    """Format a byte count with binary units, two decimals past the first unit."""
    suffixes = ["Bytes", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB", "YiB"]
    value = float(size or 0)
    index = 0
    while value > 1024 and index < len(suffixes) - 1:
        value /= 1024
        index += 1
    if index == 0:
        return f"{int(value)} {suffixes[0]}"
    return f"{value:.2f} {suffixes[index]}"
