"""Test clusters created with kind.

Clusters can be customised with worker nodes, node ports exposed on the
host, preloaded images and a Kubernetes version, or with a raw kind
configuration that overrides the generated one.
"""

from __future__ import annotations

import contextlib
import os
import socket
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Optional

from .process import DefaultExecutor, Executor, ProcessError

__all__ = [
    "ClusterError",
    "NodePort",
    "Options",
    "ClusterConfig",
    "Cluster",
    "default_config",
]

_BASE_KIND_CONFIG = """
kind: Cluster
apiVersion: kind.x-k8s.io/v1alpha4
nodes:
- role: control-plane"""

_KIND_PORT_MAPPING = """
  - containerPort: {node_port}
    hostPort: {host_port}
    listenAddress: "0.0.0.0"
    protocol: tcp"""


class ClusterError(Exception):
    """A cluster could not be configured, created or deleted."""


@dataclass(frozen=True)
class NodePort:
    """Mapping of a node port in the cluster to a port on the host."""

    node_port: int
    host_port: int


@dataclass
class Options:
    """Options for customising a cluster."""

    # Raw kind configuration; overrides node_ports and workers.
    config: str = ""
    # Images to preload on every node; they must be available locally.
    images: list[str] = field(default_factory=list)
    # Seconds to wait for the cluster to be ready; 0 means no wait.
    wait: float = 0
    node_ports: list[NodePort] = field(default_factory=list)
    workers: int = 0
    # Kubernetes version, e.g. "v1.24.0"; empty for kind's default.
    version: str = ""


class ClusterConfig:
    """Configuration for creating a named cluster."""

    def __init__(self, name: str, options: Optional[Options] = None) -> None:
        if not name:
            raise ClusterError("cluster name is mandatory")
        options = options if options is not None else Options()
        if any(not np.host_port or not np.node_port for np in options.node_ports):
            raise ClusterError("node port and host port are required in a NodePort")
        self.name = name
        self.options = options

    def render(self) -> str:
        """Return the kind configuration for this cluster."""
        if self.options.config:
            return self.options.config

        parts = [_BASE_KIND_CONFIG]
        if self.options.node_ports:
            parts.append("\n  extraPortMappings:")
            parts.extend(
                _KIND_PORT_MAPPING.format(node_port=np.node_port, host_port=np.host_port)
                for np in self.options.node_ports
            )
        parts.extend("\n- role: worker" for _ in range(self.options.workers))
        return "".join(parts)

    def create(self, executor: Optional[Executor] = None) -> "Cluster":
        """Create the cluster and return a handle to it."""
        executor = executor if executor is not None else DefaultExecutor()

        # check host ports first to avoid obscure errors from kind
        for np in self.options.node_ports:
            _check_host_port(np.host_port)
        ports = list(self.options.node_ports)

        fd, config_path = tempfile.mkstemp(prefix="kind-config", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(self.render())

            args = ["create", "cluster", "--name", self.name, "--config", config_path]

            if self.options.version:
                node_image = f"kindest/node:{self.options.version}"
                try:
                    _pull_images(executor, [node_image])
                except ClusterError as exc:
                    raise ClusterError(
                        f"could not pull kind node image for version "
                        f"{self.options.version}: {exc}"
                    ) from exc
                args += ["--image", node_image]

            if self.options.wait > 0:
                args += ["--wait", f"{self.options.wait:g}s"]

            _run(executor, "kind", *args)
        finally:
            with contextlib.suppress(OSError):
                os.remove(config_path)

        if self.options.images:
            _load_images(executor, self.name, self.options.images)

        kubeconfig = os.path.join(tempfile.gettempdir(), self.name)
        _run(executor, "kind", "export", "kubeconfig", "--name", self.name, "--kubeconfig", kubeconfig)

        return Cluster(self, kubeconfig, executor, ports)


def default_config() -> ClusterConfig:
    """Return a configuration with default options named "test-cluster"."""
    return ClusterConfig("test-cluster", Options())


class Cluster:
    """An active test cluster."""

    def __init__(
        self,
        config: ClusterConfig,
        kubeconfig: str,
        executor: Executor,
        ports: list[NodePort],
    ) -> None:
        self.name = config.name
        self.config = config
        self._kubeconfig = kubeconfig
        self._executor = executor
        self._lock = threading.Lock()
        self._allocated: set[NodePort] = set()
        self._available: list[NodePort] = list(ports)

    def delete(self) -> None:
        """Delete the cluster."""
        _run(
            self._executor,
            "kind", "delete", "cluster", "--name", self.name, "--kubeconfig", self._kubeconfig,
        )

    def kubeconfig(self) -> str:
        """Return the path to the cluster's kubeconfig."""
        return self._kubeconfig

    def allocate_port(self) -> Optional[NodePort]:
        """Reserve an exposed node port, or return None if none is free."""
        with self._lock:
            if not self._available:
                return None
            port = self._available.pop(0)
            self._allocated.add(port)
            return port

    def release_port(self, port: NodePort) -> None:
        """Return a port obtained from ``allocate_port`` to the pool."""
        with self._lock:
            if port in self._allocated:
                self._allocated.discard(port)
                self._available.append(port)


def _run(executor: Executor, cmd: str, *args: str) -> bytes:
    try:
        return executor.exec(cmd, *args)
    except ProcessError as exc:
        output = exc.output.decode(errors="replace") if exc.output else str(exc)
        raise ClusterError(f"{cmd} {args[0] if args else ''} failed: {output}") from exc


def _check_host_port(port: int) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("", port))
            sock.listen()
        except OSError as exc:
            raise ClusterError(f"host port is not available {port}") from exc


def _pull_images(executor: Executor, images: list[str]) -> None:
    for image in images:
        try:
            executor.exec("docker", "pull", image)
        except ProcessError as exc:
            output = exc.output.decode(errors="replace") if exc.output else str(exc)
            raise ClusterError(f"error pulling image {image}: {output}") from exc


def _load_images(executor: Executor, name: str, images: list[str]) -> None:
    fd, archive = tempfile.mkstemp(prefix="image", suffix=".tar")
    os.close(fd)
    try:
        try:
            executor.exec("docker", "save", "-o", archive, *images)
        except ProcessError as exc:
            output = exc.output.decode(errors="replace") if exc.output else str(exc)
            raise ClusterError(f"error saving images: {output}") from exc
        _run(executor, "kind", "load", "image-archive", archive, "--name", name)
    finally:
        with contextlib.suppress(OSError):
            os.remove(archive)