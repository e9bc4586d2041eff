"""Fixtures for end-to-end tests."""

from __future__ import annotations

import time
from typing import Any

from .cluster import Cluster, ClusterConfig, ClusterError, NodePort, Options
from .helpers import HelperError

__all__ = [
    "build_httpbin_pod",
    "build_httpbin_service",
    "build_busybox_pod",
    "build_paused_pod",
    "build_nginx_pod",
    "build_nginx_service",
    "expose_service",
    "run_pod",
    "deploy_app",
    "build_cluster",
]

_AGENT_IMAGE = "ghcr.io/grafana/xk6-disruptor-agent:latest"


def _pod(name: str, image: str, labels: dict | None = None, command: list | None = None) -> dict:
    container: dict[str, Any] = {"name": name, "image": image, "imagePullPolicy": "IfNotPresent"}
    if command:
        container["command"] = list(command)
    metadata: dict[str, Any] = {"name": name}
    if labels:
        metadata["labels"] = dict(labels)
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": metadata,
        "spec": {"containers": [container]},
    }


def _node_port_service(name: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "labels": {"app": name}},
        "spec": {
            "type": "NodePort",
            "selector": {"app": name},
            "ports": [{"name": "http", "port": 80}],
        },
    }


def build_httpbin_pod() -> dict:
    """Return a Pod that runs httpbin."""
    return _pod("httpbin", "kennethreitz/httpbin", {"app": "httpbin"})


def build_httpbin_service() -> dict:
    """Return a NodePort Service that exposes httpbin pods."""
    return _node_port_service("httpbin")


def build_busybox_pod() -> dict:
    """Return a Pod that runs busybox and completes after 5 minutes."""
    return _pod("busybox", "busybox", {"app": "busybox"}, ["sleep", "300"])


def build_paused_pod() -> dict:
    """Return a no-op Pod that runs the pause image."""
    return _pod("paused", "k8s.gcr.io/pause")


def build_nginx_pod() -> dict:
    """Return a Pod that runs nginx."""
    return _pod("nginx", "nginx", {"app": "nginx"})


def build_nginx_service() -> dict:
    """Return a NodePort Service that exposes nginx pods."""
    return _node_port_service("nginx")


def expose_service(k8s: Any, ns: str, svc: dict, timeout: float) -> None:
    """Create a service and wait up to ``timeout`` seconds for it to be ready."""
    name = svc["metadata"]["name"]
    try:
        k8s.create_service(ns, svc)
    except Exception as exc:
        raise HelperError(f"failed to create service {name}: {exc}") from exc
    try:
        k8s.namespaced_helpers(ns).wait_service_ready(name, timeout)
    except Exception as exc:
        raise HelperError(f"error waiting for service {name}: {exc}") from exc


def run_pod(k8s: Any, ns: str, pod: dict, timeout: float) -> None:
    """Create a pod and wait up to ``timeout`` seconds for it to run."""
    name = pod["metadata"]["name"]
    try:
        k8s.create_pod(ns, pod)
    except Exception as exc:
        raise HelperError(f"error creating pod {name}: {exc}") from exc
    try:
        running = k8s.namespaced_helpers(ns).wait_pod_running(name, timeout)
    except Exception as exc:
        raise HelperError(f"error waiting for pod {name}: {exc}") from exc
    if not running:
        raise HelperError(f"pod {name} not ready after {float(timeout):f}: ")


def deploy_app(k8s: Any, ns: str, pod: dict, svc: dict, timeout: float) -> None:
    """Run a pod and expose it as a service, all within ``timeout`` seconds."""
    start = time.monotonic()
    try:
        run_pod(k8s, ns, pod, timeout)
    except HelperError as exc:
        raise HelperError(
            f"failed to create pod {pod['metadata']['name']} in namespace {ns}: {exc}"
        ) from exc
    expose_service(k8s, ns, svc, timeout - (time.monotonic() - start))


def build_cluster(name: str) -> Cluster:
    """Create a cluster exposing node ports 32080-32089 with the agent preloaded."""
    node_ports = [NodePort(node_port=port, host_port=port) for port in range(32080, 32090)]
    try:
        config = ClusterConfig(
            name, Options(node_ports=node_ports, images=[_AGENT_IMAGE], wait=60)
        )
    except ClusterError as exc:
        raise ClusterError(f"failed to create cluster config: {exc}") from exc
    return config.create()