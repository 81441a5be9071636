"""Loading indicator for long-running cloud operations.

Each ``Loading`` runs its own background thread rendering a rich spinner
until it is cancelled. ``cancel()`` with no reason marks success (green
check), ``cancel(FAILED)`` marks failure (red cross). In CI or when the
output is not a terminal the message is printed once instead of animated.

Example:
    spinner = Loading("Creating VPC")
    try:
        create_vpc()
    except Exception:
        spinner.cancel(FAILED)
        raise
    spinner.cancel()

    # Or as a context manager, failing on any exception
    with Loading("Deleting VPC resources"):
        delete_vpc()
"""

from __future__ import annotations

import os
import sys
import threading
from typing import Final, NoReturn, Self

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.text import Text

FAILED: Final = "failed"
CHECKMARK: Final = "✓"
CROSS: Final = "✗"
SPINNER_NAME: Final = "dots"

_console = Console(stderr=True)
_active: set[Loading] = set()
_active_lock = threading.Lock()


def is_interactive(console: Console | None = None) -> bool:
    """False in CI (``CI=true``) or when output is not attached to a terminal."""
    if os.environ.get("CI", "").lower() == "true":
        return False
    return (console or _console).is_terminal


def active_count() -> int:
    with _active_lock:
        return len(_active)


class Loading:
    """A spinner bound to one operation, stopped by ``cancel``."""

    def __init__(self, message: str, *, console: Console | None = None) -> None:
        self.message = message
        self._console = console or _console
        self._interactive = is_interactive(self._console)
        self._stop = threading.Event()
        self._reason: str | None = None
        self._done = False
        self._thread = threading.Thread(target=self._run, name=f"loading:{message}", daemon=True)

        with _active_lock:
            _active.add(self)
        self._thread.start()

    def _run(self) -> None:
        if self._interactive:
            spinner = Spinner(SPINNER_NAME, text=Text(self.message))
            with Live(spinner, console=self._console, refresh_per_second=12, transient=True):
                self._stop.wait()
        else:
            self._console.print(f"{self.message}...")
            self._stop.wait()

        if self._reason == FAILED:
            self._console.print(Text(f"{CROSS} {self.message}", style="bold red"))
        else:
            self._console.print(Text(f"{CHECKMARK} {self.message}", style="bold green"))

    def cancel(self, reason: str | None = None) -> None:
        """Stop the indicator and wait for it to render its final line."""
        with _active_lock:
            if self._done:
                return
            self._done = True
            _active.discard(self)
        self._reason = reason
        self._stop.set()
        self._thread.join()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.cancel(FAILED if exc_type is not None else None)


def cancel_all(reason: str | None = FAILED) -> None:
    """Cancel every active indicator and wait for all of them to finish."""
    with _active_lock:
        pending = list(_active)
    for item in pending:
        item.cancel(reason)


def exit_all(code: int = 1) -> NoReturn:
    """Forced exit: fail every active indicator, then terminate the process."""
    cancel_all(FAILED)
    sys.exit(code)
