"""Console output for setup-biome, written as CI workflow commands."""

from __future__ import annotations

import os
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, echo debug lines and show stack traces
        """
        self.debug_enabled = debug

    def _command(self, command: str, message: str, **props: str) -> None:
        prop_str = ",".join(f"{k}={_escape_property(v)}" for k, v in props.items())
        head = f"{command} {prop_str}" if prop_str else command
        print(f"::{head}::{_escape_data(message)}", flush=True)

    def info(self, message: str) -> None:
        """Print informational message."""
        print(message, flush=True)

    def debug(self, message: str) -> None:
        self._command("debug", message)
        if self.debug_enabled:
            print(f"[DEBUG] {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        self._command("error", message)

    def start_group(self, title: str) -> None:
        print(f"::group::{title}", flush=True)

    def end_group(self) -> None:
        print("::endgroup::", flush=True)

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        self.start_group(title)
        try:
            yield
        finally:
            self.end_group()

    def export_variable(self, name: str, value: str) -> None:
        """
        Export a variable to this process and to every later step of the job.

        Later steps pick up records appended to the file named by GITHUB_ENV.
        Without it, fall back to the legacy set-env command.
        """
        os.environ[name] = value

        env_file = os.environ.get("GITHUB_ENV")
        if not env_file:
            self._command("set-env", value, name=name)
            return

        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        if delimiter in name or delimiter in value:
            raise ValueError(f"Unexpected delimiter collision while exporting {name}")
        with open(env_file, "a", encoding="utf-8") as f:
            f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")

    def set_failed(self, message: str) -> None:
        """Mark the step failed; the caller decides the exit status."""
        self.error(message)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug_enabled:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)


# Global console instance (initialized by CLI)
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
