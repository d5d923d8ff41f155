# shell.py
# Small, focused wrapper around the external commands this tool drives
# (wget, tar, sudo, bio, find ...). Routines never call subprocess directly.

from __future__ import annotations

import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .ui.console import get_console


@dataclass
class CommandFailure(Exception):
    cmd: str
    exit_code: int
    detail: str = ""

    def __str__(self) -> str:
        msg = f"command failed (exit={self.exit_code}): {self.cmd}"
        if self.detail:
            msg = f"{msg}\n{self.detail}"
        return msg


def sudo(*args: str, preserve_env: bool = False) -> list[str]:
    """Build an elevated argv. sudo resets the environment unless told not to."""
    cmd = ["sudo"]
    if preserve_env:
        cmd.append("--preserve-env")
    cmd.extend(str(a) for a in args)
    return cmd


def _cmdline(args: Sequence[str]) -> str:
    return shlex.join(str(a) for a in args)


class Shell:
    """Runs commands on the CI runner, streaming their output into the job log."""

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(
        self,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str | Path] = None,
    ) -> None:
        """
        Run a command and wait for it.

        Output is not captured so it shows up in the job log as it happens.

        Raises:
            CommandFailure: non-zero exit, or the executable could not be found
        """
        cmd = _cmdline(args)
        get_console().info(f"[command]{cmd}")
        try:
            proc = subprocess.run(
                [str(a) for a in args],
                env=dict(env) if env is not None else None,
                cwd=str(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as e:
            raise CommandFailure(cmd=cmd, exit_code=127, detail=str(e)) from e

        if proc.returncode != 0:
            raise CommandFailure(cmd=cmd, exit_code=proc.returncode)

    def succeeds(self, args: Sequence[str], *, env: Optional[Mapping[str, str]] = None) -> bool:
        """Run a command quietly and report whether it exited 0."""
        try:
            proc = subprocess.run(
                [str(a) for a in args],
                env=dict(env) if env is not None else None,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            return False
        return proc.returncode == 0

    def output(
        self,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str | Path] = None,
    ) -> str:
        """
        Run a command and return its stdout as a clean string.

        No retry and no timeout; a non-zero exit surfaces as CommandFailure.
        """
        cmd = _cmdline(args)
        get_console().info(f"[command]{cmd}")
        try:
            proc = subprocess.run(
                [str(a) for a in args],
                env=dict(env) if env is not None else None,
                cwd=str(cwd) if cwd is not None else None,
                text=True,
                stdout=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandFailure(cmd=cmd, exit_code=127, detail=str(e)) from e

        if proc.returncode != 0:
            raise CommandFailure(cmd=cmd, exit_code=proc.returncode, detail=(proc.stdout or "")[-4000:])

        # Strip trailing newlines so callers can do clean string comparisons
        return (proc.stdout or "").strip()
