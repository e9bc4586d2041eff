"""Fakes of pod command execution, helpers and HTTP clients for tests."""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Optional

import requests

from .helpers import Helpers

__all__ = ["Command", "FakePodCommandExecutor", "FakeHelpers", "FakeHTTPClient"]


@dataclass(frozen=True)
class Command:
    """A command executed in a pod."""

    pod: str
    container: str
    command: list[str] = field(default_factory=list)
    stdin: bytes = b""


class FakePodCommandExecutor:
    """Records commands run in pods and returns a predefined result."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._history: list[Command] = []
        self._stdout = b""
        self._stderr = b""
        self._error: Optional[BaseException] = None

    def exec(
        self,
        pod: str,
        container: str,
        command: list[str],
        stdin: Optional[bytes] = None,
    ) -> tuple[bytes, bytes]:
        """Record the command and return the predefined stdout and stderr."""
        with self._lock:
            self._history.append(Command(pod, container, list(command), stdin or b""))
        if self._error is not None:
            raise self._error
        return self._stdout, self._stderr

    def set_result(
        self, stdout: bytes, stderr: bytes, error: Optional[BaseException] = None
    ) -> None:
        """Set the result of every following invocation."""
        self._stdout = stdout
        self._stderr = stderr
        self._error = error

    def history(self) -> list[Command]:
        """Return the commands executed so far, oldest first."""
        with self._lock:
            return list(self._history)


class FakeHelpers(Helpers):
    """Helpers that fake the execution of commands in pods."""

    def __init__(
        self,
        client: Any,
        namespace: str = "default",
        executor: Optional[FakePodCommandExecutor] = None,
    ) -> None:
        super().__init__(client, namespace)
        self.executor = executor if executor is not None else FakePodCommandExecutor()

    def exec(
        self,
        pod: str,
        container: str,
        command: list[str],
        stdin: Optional[bytes] = None,
    ) -> tuple[bytes, bytes]:
        return self.executor.exec(pod, container, command, stdin)


class FakeHTTPClient:
    """HTTP client that records the last request and returns a fixed response."""

    def __init__(self, status: int = 200, body: bytes = b"") -> None:
        response = requests.Response()
        response.status_code = status
        try:
            response.reason = HTTPStatus(status).phrase
        except ValueError:
            response.reason = ""
        response.raw = io.BytesIO(body)
        response.headers["Content-Length"] = str(len(body))
        self.response: requests.Response = response
        self.request: Optional[requests.Request] = None
        self.error: Optional[BaseException] = None

    def do(self, request: requests.Request) -> requests.Response:
        """Record ``request`` and return the fixed response or raise the error."""
        self.request = request
        if self.error is not None:
            raise self.error
        return self.response