"""Builders of Pod and Service manifests for tests."""

from __future__ import annotations

import copy
from typing import Any, Optional

__all__ = ["PodBuilder", "ServiceBuilder", "default_service_ports"]

_DEFAULT_NAMESPACE = "default"


class PodBuilder:
    """Builds Pod manifests with default containers and namespace."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._namespace = _DEFAULT_NAMESPACE
        self._labels: Optional[dict[str, str]] = None
        self._phase = ""
        self._containers: list[dict[str, Any]] = [
            {
                "name": "busybox",
                "image": "busybox",
                "command": ["sh", "-c", "sleep 300"],
            }
        ]

    def with_namespace(self, namespace: str) -> "PodBuilder":
        self._namespace = namespace
        return self

    def with_labels(self, labels: dict[str, str]) -> "PodBuilder":
        self._labels = dict(labels)
        return self

    def with_status(self, phase: str) -> "PodBuilder":
        self._phase = phase
        return self

    def build(self) -> dict[str, Any]:
        """Return a new Pod manifest with the configured attributes."""
        metadata: dict[str, Any] = {"name": self._name, "namespace": self._namespace}
        if self._labels is not None:
            metadata["labels"] = dict(self._labels)
        status: dict[str, Any] = {"phase": self._phase} if self._phase else {}
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": metadata,
            "spec": {"containers": copy.deepcopy(self._containers)},
            "status": status,
        }


def default_service_ports() -> list[dict[str, Any]]:
    """Return the default ports of a Service: port 80 to target port 80."""
    return [{"port": 80, "targetPort": 80}]


class ServiceBuilder:
    """Builds Service manifests with default ports and namespace."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._namespace = _DEFAULT_NAMESPACE
        self._ports = default_service_ports()
        self._selector: dict[str, str] = {}

    def with_namespace(self, namespace: str) -> "ServiceBuilder":
        self._namespace = namespace
        return self

    def with_ports(self, ports: list[dict[str, Any]]) -> "ServiceBuilder":
        self._ports = copy.deepcopy(ports)
        return self

    def with_selector(self, labels: dict[str, str]) -> "ServiceBuilder":
        self._selector = dict(labels)
        return self

    def build(self) -> dict[str, Any]:
        """Return a new Service manifest with the configured attributes."""
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": self._name, "namespace": self._namespace},
            "spec": {
                "selector": dict(self._selector),
                "ports": copy.deepcopy(self._ports),
            },
        }