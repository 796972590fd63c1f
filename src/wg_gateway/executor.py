"""Narrow wrapper around external commands.

All package manager, ``wg``, ``git``, ``make``, ``sysctl`` and ``systemctl``
calls go through an :class:`Executor` so components can be exercised in unit
tests with a scripted fake instead of real processes.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

LOG = logging.getLogger(__name__)

# Conventional shell statuses for "timed out" and "command not found".
TIMEOUT_RETURNCODE = 124
NOT_FOUND_RETURNCODE = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished command."""

    argv: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Short human readable failure summary for error messages."""

        detail = self.stderr.strip() or self.stdout.strip() or "no output"
        return f"'{' '.join(self.argv)}' exited with {self.returncode}: {detail}"


class ProcessHandle(Protocol):
    """Subset of :class:`subprocess.Popen` the orchestrator relies on."""

    pid: int

    def poll(self) -> Optional[int]:
        ...


class Executor(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        ...

    def spawn(self, argv: Sequence[str]) -> ProcessHandle:
        ...


class SubprocessExecutor:
    """Run commands on the local host with :mod:`subprocess`.

    Parameters
    ----------
    timeout:
        Upper bound in seconds for any single command.  A command that runs
        longer is killed and reported with :data:`TIMEOUT_RETURNCODE`.
    """

    def __init__(self, timeout: float = 900.0) -> None:
        self._timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        LOG.debug("Executing: %s", " ".join(argv))
        merged_env = None
        if env:
            merged_env = {**os.environ, **env}
        try:
            proc = subprocess.run(
                list(argv),
                input=input,
                cwd=cwd,
                env=merged_env,
                check=False,
                text=True,
                capture_output=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv, NOT_FOUND_RETURNCODE, stderr=str(exc))
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv,
                TIMEOUT_RETURNCODE,
                stderr=f"timed out after {self._timeout:g}s",
            )
        return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)

    def spawn(self, argv: Sequence[str]) -> subprocess.Popen:
        """Start ``argv`` detached from our session and return immediately."""

        LOG.debug("Spawning: %s", " ".join(argv))
        return subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
