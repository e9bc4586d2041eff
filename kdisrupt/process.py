"""Execution of external processes, with fakes for testing."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from typing import Callable, Optional

__all__ = [
    "ProcessError",
    "Executor",
    "DefaultExecutor",
    "FakeExecutor",
    "CallbackExecutor",
]


class ProcessError(Exception):
    """A process could not be started or exited unsuccessfully."""

    def __init__(
        self,
        message: str,
        cmd: str,
        returncode: Optional[int] = None,
        output: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.output = output


class Executor(ABC):
    """Runs processes and returns their combined stdout and stderr."""

    @abstractmethod
    def exec(self, cmd: str, *args: str) -> bytes:
        """Run ``cmd`` with ``args`` to completion and return its combined output."""


class DefaultExecutor(Executor):
    """Executor that runs real processes."""

    def exec(self, cmd: str, *args: str) -> bytes:
        try:
            completed = subprocess.run(
                [cmd, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            raise ProcessError(f"cannot run {cmd}: {exc}", cmd) from exc

        if completed.returncode != 0:
            raise ProcessError(
                f"{cmd} exited with status {completed.returncode}",
                cmd,
                completed.returncode,
                completed.stdout,
            )
        return completed.stdout


class FakeExecutor(Executor):
    """Executor that records commands and returns a predefined result.

    Every invocation returns the same ``output`` or raises the same ``error``.
    """

    def __init__(self, output: bytes = b"", error: Optional[BaseException] = None) -> None:
        self._output = output
        self._error = error
        self._commands: list[str] = []

    def _record(self, cmd: str, args: tuple[str, ...]) -> None:
        self._commands.append(cmd + " " + " ".join(args))

    def exec(self, cmd: str, *args: str) -> bytes:
        self._record(cmd, args)
        if self._error is not None:
            raise self._error
        return self._output

    def invoked(self) -> bool:
        """Whether ``exec`` was called at least once."""
        return bool(self._commands)

    def cmd(self) -> str:
        """The command line of the last invocation, or an empty string."""
        return self._commands[-1] if self._commands else ""

    def cmd_history(self) -> list[str]:
        """The command lines of all invocations, oldest first."""
        return list(self._commands)

    def invocations(self) -> int:
        """The number of invocations of ``exec``."""
        return len(self._commands)

    def reset(self) -> None:
        """Forget all recorded invocations."""
        self._commands.clear()


class CallbackExecutor(FakeExecutor):
    """Fake executor that records commands and forwards them to a callback."""

    def __init__(self, callback: Callable[..., bytes]) -> None:
        super().__init__()
        self._callback = callback

    def exec(self, cmd: str, *args: str) -> bytes:
        self._record(cmd, args)
        return self._callback(cmd, *args)