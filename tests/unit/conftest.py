import base64
import hashlib
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from wg_gateway.executor import CommandResult


def fake_pubkey(private_key: str) -> str:
    """Deterministic stand-in for ``wg pubkey``."""

    raw = base64.b64decode(private_key.strip())
    return base64.b64encode(hashlib.sha256(raw).digest()).decode()


class FakeProcess:
    def __init__(self, pid: int = 4242, status: Optional[int] = None) -> None:
        self.pid = pid
        self.status = status

    def poll(self) -> Optional[int]:
        return self.status


class FakeExecutor:
    """Scripted executor recording every command it is asked to run."""

    def __init__(self, installed: Sequence[str] = ()) -> None:
        self.calls: List[Tuple[str, ...]] = []
        self.inputs: List[Optional[str]] = []
        self.cwds: List[Optional[str]] = []
        self.spawned: List[Tuple[str, ...]] = []
        self.installed = set(installed)
        self.process = FakeProcess()
        self.spawn_error: Optional[OSError] = None
        self._failures: Dict[Tuple[str, ...], CommandResult] = {}
        self._outputs: Dict[Tuple[str, ...], str] = {}
        self._keys = 0

    def fail(self, *prefix: str, returncode: int = 1, stderr: str = "boom") -> None:
        self._failures[prefix] = CommandResult(prefix, returncode, "", stderr)

    def output(self, *prefix: str, stdout: str) -> None:
        self._outputs[prefix] = stdout

    def _match(self, argv: Tuple[str, ...], table: dict):
        for prefix, value in table.items():
            if argv[: len(prefix)] == prefix:
                return value
        return None

    def run(self, argv, *, input=None, cwd=None, env=None) -> CommandResult:
        argv = tuple(argv)
        self.calls.append(argv)
        self.inputs.append(input)
        self.cwds.append(cwd)

        failure = self._match(argv, self._failures)
        if failure is not None:
            return CommandResult(argv, failure.returncode, "", failure.stderr)
        scripted = self._match(argv, self._outputs)
        if scripted is not None:
            return CommandResult(argv, 0, scripted)

        if argv[:2] == ("wg", "genkey"):
            self._keys += 1
            key = base64.b64encode(bytes([self._keys]) * 32).decode()
            return CommandResult(argv, 0, key + "\n")
        if argv[:2] == ("wg", "pubkey"):
            return CommandResult(argv, 0, fake_pubkey(input) + "\n")
        if argv[0] == "which":
            return CommandResult(argv, 0 if argv[1] in self.installed else 1)
        return CommandResult(argv, 0)

    def spawn(self, argv) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.append(tuple(argv))
        return self.process

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()
