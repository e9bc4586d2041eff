"""Checks of conditions in a cluster."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from .helpers import HelperError

__all__ = ["ServiceCheck", "check_service"]


@dataclass
class ServiceCheck:
    """A request to a service and the status code it should return."""

    service: str
    namespace: str = "default"
    port: int = 80
    method: str = "GET"
    body: bytes = b""
    path: str = ""
    expected_code: int = 200
    # seconds to wait before accessing the service
    delay: float = 0


def check_service(k8s: Any, check: ServiceCheck) -> None:
    """Send the check's request to the service and verify the status code.

    Raises ``HelperError`` if the service cannot be reached or answers with
    another status code.
    """
    time.sleep(check.delay)

    namespace = check.namespace or "default"
    port = check.port or 80
    method = check.method or "GET"

    proxy = k8s.namespaced_helpers(namespace).get_service_proxy(check.service, port)
    request = requests.Request(method, check.path, data=check.body)
    try:
        response = proxy.do(request)
    except requests.RequestException as exc:
        raise HelperError(f"failed to access service at {check.service}: {exc}") from exc
    try:
        if response.status_code != check.expected_code:
            raise HelperError(
                f"expected status code {check.expected_code} "
                f"but {response.status_code} received"
            )
    finally:
        response.close()