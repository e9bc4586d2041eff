"""Helpers for common tasks on namespaces, pods and services.

The helpers work on top of a Kubernetes client object that provides:

- ``host``: the base URL of the API server
- ``http_client()``: a ``requests.Session`` authenticated to the API server
- ``create_namespace(manifest)``: creates a namespace, returns its manifest
- ``get_pod(namespace, name)``: returns a Pod manifest
- ``patch_pod_ephemeral_containers(namespace, name, patch)``: applies a
  strategic merge patch to the pod's ``ephemeralcontainers`` subresource
- ``watch_pods(namespace, name, timeout)``: yields ``WatchEvent`` objects for
  the named pod until ``timeout`` seconds pass
- ``get_endpoints(namespace, name)``: returns an Endpoints manifest, or None
  if it does not exist
- ``exec_in_pod(namespace, pod, container, command, stdin)``: runs a command
  in a container and returns ``(stdout, stderr)``

Manifests are plain dictionaries in the Kubernetes JSON layout.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Protocol
from urllib.parse import urlsplit

import requests

from .retry import retry

__all__ = ["HelperError", "WatchEvent", "ServiceProxy", "Helpers"]

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
ERROR = "ERROR"

_PodChecker = Callable[[dict], bool]


class HelperError(Exception):
    """A helper operation on the cluster failed."""


@dataclass(frozen=True)
class WatchEvent:
    """An event received while watching resources."""

    type: str
    object: Any


class _ServiceClient(Protocol):
    def do(self, request: requests.Request) -> requests.Response: ...


class _SessionClient:
    """Adapts a ``requests.Session`` to the ``do(request)`` interface."""

    def __init__(self, session: requests.Session) -> None:
        self._session = session

    def do(self, request: requests.Request) -> requests.Response:
        return self._session.send(self._session.prepare_request(request))


class ServiceProxy:
    """Sends HTTP requests to a service through the API server's proxy.

    Only the method, the URL path, the headers and the body of a request
    are taken into account.
    """

    def __init__(
        self,
        client: _ServiceClient,
        host: str,
        namespace: str,
        service: str,
        port: int,
    ) -> None:
        self.client = client
        self.namespace = namespace
        self.service = service
        self.port = port
        self.base_url = f"{host}/api/v1/namespaces/{namespace}/services/{service}:{port}/proxy"

    def do(self, request: requests.Request) -> requests.Response:
        """Forward ``request`` to the service and return the response."""
        path = urlsplit(request.url or "").path
        service_request = requests.Request(
            method=request.method,
            url=self.base_url + path,
            headers=request.headers,
            data=request.data,
        )
        return self.client.do(service_request)


def _check_ephemeral_container_state(pod: dict) -> bool:
    statuses = pod.get("status", {}).get("ephemeralContainerStatuses") or []
    return any((cs.get("state") or {}).get("running") is not None for cs in statuses)


def _check_pod_running(pod: dict) -> bool:
    phase = pod.get("status", {}).get("phase")
    if phase == "Failed":
        raise HelperError("pod has failed")
    return phase == "Running"


class Helpers:
    """Helper operations bound to one namespace."""

    # seconds between checks while waiting for a service
    poll_interval: float = 1.0

    def __init__(self, client: Any, namespace: str = "default") -> None:
        self.client = client
        self.namespace = namespace

    def create_random_namespace(self, prefix: str) -> str:
        """Create a namespace named from ``prefix`` and return its name."""
        manifest = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"generateName": prefix},
        }
        created = self.client.create_namespace(manifest)
        return created["metadata"]["name"]

    def _wait_for_condition(self, name: str, timeout: float, checker: _PodChecker) -> bool:
        deadline = time.monotonic() + timeout
        events: Iterable[WatchEvent] = self.client.watch_pods(self.namespace, name, timeout)
        try:
            for event in events:
                if time.monotonic() >= deadline:
                    return False
                if event.type == ERROR:
                    raise HelperError(f"error watching for pod: {event.object}")
                if event.type == MODIFIED:
                    if not isinstance(event.object, dict):
                        raise HelperError("received unknown object while watching for pods")
                    if checker(event.object):
                        return True
            return False
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def wait_pod_running(self, name: str, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the pod to be running.

        Returns whether it is running; raises ``HelperError`` if it failed.
        """
        return self._wait_for_condition(name, timeout, _check_pod_running)

    def exec(
        self,
        pod: str,
        container: str,
        command: list[str],
        stdin: Optional[bytes] = None,
    ) -> tuple[bytes, bytes]:
        """Run ``command`` in a container and return its stdout and stderr."""
        return self.client.exec_in_pod(
            self.namespace, pod, container, list(command), stdin or b""
        )

    def attach_ephemeral_container(self, pod_name: str, container: dict, timeout: float) -> None:
        """Add an ephemeral container to a running pod.

        With a non-zero ``timeout``, waits that many seconds for the container
        to run and raises ``HelperError`` if it does not.
        """
        pod = self.client.get_pod(self.namespace, pod_name)
        patch = {"spec": {"ephemeralContainers": [dict(container)]}}
        self.client.patch_pod_ephemeral_containers(
            self.namespace, pod["metadata"]["name"], patch
        )

        if timeout == 0:
            return
        if not self._wait_for_condition(pod_name, timeout, _check_ephemeral_container_state):
            raise HelperError(f"ephemeral container has not started after {float(timeout):f}s")

    def wait_service_ready(self, service: str, timeout: float) -> None:
        """Wait until the service has at least one ready endpoint.

        Raises ``TimeoutError`` if it has none within ``timeout`` seconds.
        """

        def ready() -> bool:
            try:
                endpoints = self.client.get_endpoints(self.namespace, service)
            except Exception as exc:
                raise HelperError(f"failed to access service: {exc}") from exc
            if endpoints is None:
                return False
            return any(subset.get("addresses") for subset in endpoints.get("subsets") or [])

        retry(timeout, self.poll_interval, ready)

    def get_service_proxy(self, service: str, port: int) -> ServiceProxy:
        """Return a client for sending HTTP requests to the service."""
        return ServiceProxy(
            _SessionClient(self.client.http_client()),
            self.client.host,
            self.namespace,
            service,
            port,
        )