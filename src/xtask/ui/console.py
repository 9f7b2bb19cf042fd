"""Console output formatting utilities for xtask."""

from __future__ import annotations

import sys
from typing import Iterable, Optional, TYPE_CHECKING

from ..secrets import SecretMasker

if TYPE_CHECKING:
    from ..model import TaskResult
    from ..schema import TaskDefinition


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, masker: Optional[SecretMasker] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            masker: Secret masker applied to everything printed
        """
        self.debug = debug
        self.masker = masker or SecretMasker()

    def _out(self, text: str) -> None:
        print(self.masker.mask(text))

    def _err(self, text: str) -> None:
        print(self.masker.mask(text), file=sys.stderr)

    def print_run_started(self, file: str, context: str, targets: Iterable[str]) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"File: {file}")
        self._out(f"Context: {context}")
        self._out(f"Targets: {', '.join(targets)}")

    def print_task_start(self, name: str) -> None:
        """Print task start message."""
        self._out(f"\nTASK: {name}")

    def print_task_skipped(self, name: str, reason: str) -> None:
        self._out(f"\nTASK: {name}")
        self._out(f"STATUS: skipped ({reason})")

    def print_results(self, results: Iterable["TaskResult"]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for result in results:
            line = f"  {result.task_id}: {result.status.value.upper()}"
            if result.duration is not None:
                line += f" ({result.duration:.1f}s)"
            self._out(line)

    def print_task_list(self, tasks: Iterable["TaskDefinition"]) -> None:
        """Print task ids padded to the longest id, followed by descriptions."""
        tasks = list(tasks)
        if not tasks:
            self._out("no tasks defined")
            return
        width = max(len(t.id) for t in tasks)
        for t in tasks:
            desc = t.desc or t.name or ""
            self._out(f"{t.id.ljust(width)}  {desc}".rstrip())

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
        self._err(f"\nERROR: {title}")
        self._err(message)
        if details:
            for detail in details:
                self._err(f"  {detail}")
        if suggestion:
            self._err(f"\n{suggestion}")

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._err("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        else:
            self._err(f"Error: {exc}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)


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
