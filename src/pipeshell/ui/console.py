"""Console output formatting utilities for pipeshell."""

from __future__ import annotations

import os
import sys
import threading
from typing import Iterable, Optional

from pipeshell.config import get_settings


class Console:
    """Centralized console output formatting."""

    # shared by every Console so interleaved notify() lines from
    # concurrent pipelines never mix
    _output_lock = threading.Lock()

    def __init__(
        self,
        debug: Optional[bool] = None,
        verbose: Optional[bool] = None,
        stream=None,
    ):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces.
                   Defaults to the global settings.
            verbose: If True, notify() prints unless told otherwise.
            stream: Where diagnostics go (defaults to sys.stderr at call time)
        """
        settings = get_settings()
        self.debug = settings.debug if debug is None else debug
        if verbose is None:
            verbose = settings.verbose
        self.verbose = verbose or self.debug
        self.show_thread_id = settings.show_thread_id
        self.show_pid = settings.show_pid
        self._stream = stream

    @property
    def stream(self):
        return self._stream if self._stream is not None else sys.stderr

    def _prefix(self) -> str:
        if not self.show_thread_id:
            return "pipeshell: "
        th = f"Th-{threading.current_thread().name}"
        if self.show_pid:
            return f"pipeshell(#{os.getpid()}:{th}): "
        return f"pipeshell({th}): "

    def notify(self, *messages: str, verbose: Optional[bool] = None) -> None:
        """
        Print a diagnostic line (continuation lines are indented).

        Diagnostics only; nothing in pipeshell reads them back.
        """
        if verbose is None:
            verbose = self.verbose
        if not verbose or not messages:
            return
        with Console._output_lock:
            prefix = self._prefix()
            lines = [prefix + messages[0]]
            lines.extend(" " * len(prefix) + m for m in messages[1:])
            print("\n".join(lines), file=self.stream, flush=True)

    def print_pipeline_started(self, stages: Iterable[str], cwd: str) -> None:
        """Print pipeline start information."""
        stages = list(stages)
        print("\nPIPELINE STARTED", file=self.stream)
        print(f"Directory: {cwd}", file=self.stream)
        print(f"Stages: {len(stages)}", file=self.stream)
        for i, s in enumerate(stages):
            print(f"  [{i}] {s}", file=self.stream)
        print(file=self.stream)

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40, file=self.stream)
        print("RESULTS", file=self.stream)
        print("=" * 40, file=self.stream)
        for stage, status in results.items():
            print(f"  {stage}: {status}", file=self.stream)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console


def notify(*messages: str, verbose: Optional[bool] = None) -> None:
    """Shortcut for get_console().notify(...)."""
    get_console().notify(*messages, verbose=verbose)
