"""Access to a Kubernetes cluster, and an in-memory fake of it for tests."""

from __future__ import annotations

import base64
import copy
import json
import math
import os
import queue
import random
import ssl
import string
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterator, Optional
from urllib.parse import urlencode

import requests
import websocket
import yaml
from requests.adapters import BaseAdapter

from .fakes import FakeHelpers, FakePodCommandExecutor
from .helpers import MODIFIED, Helpers, WatchEvent

__all__ = [
    "KubernetesError",
    "Config",
    "Kubernetes",
    "FakeKubernetes",
    "check_version",
    "new_from_kubeconfig",
    "new_from_config",
]

_MIN_VERSION = "v1.23"


class KubernetesError(Exception):
    """A request to the cluster failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.stdout = stdout
        self.stderr = stderr


@dataclass
class Config:
    """Configuration for creating a Kubernetes client."""

    # Path to the kubeconfig; empty for $KUBECONFIG or ~/.kube/config.
    kubeconfig: str = ""


def check_version(major: str, minor: str) -> None:
    """Raise ``KubernetesError`` if the server version is below v1.23."""
    version = f"v{major}.{minor}"
    if version < _MIN_VERSION:
        raise KubernetesError(
            f"unsupported Kubernetes version. Expected >= {_MIN_VERSION} but actual is {version}"
        )


class Kubernetes:
    """Client of a Kubernetes API server."""

    def __init__(self, host: str, session: Optional[requests.Session] = None) -> None:
        self.host = host.rstrip("/")
        self._session = session if session is not None else requests.Session()

    # --- helpers -------------------------------------------------------

    def helpers(self) -> Helpers:
        """Return helpers for the default namespace."""
        return Helpers(self, "default")

    def namespaced_helpers(self, namespace: str) -> Helpers:
        """Return helpers for ``namespace``."""
        return Helpers(self, namespace)

    def http_client(self) -> requests.Session:
        """Return the session authenticated to the API server."""
        return self._session

    # --- API -----------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(method, self.host + path, **kwargs)
        except requests.RequestException as exc:
            raise KubernetesError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise KubernetesError(
                f"{method} {path} failed: {response.status_code} {response.text}",
                response.status_code,
            )
        return response

    def server_version(self) -> dict:
        """Return the server's version information."""
        return self._request("GET", "/version").json()

    def create_namespace(self, manifest: dict) -> dict:
        return self._request("POST", "/api/v1/namespaces", json=manifest).json()

    def delete_namespace(self, name: str) -> None:
        self._request("DELETE", f"/api/v1/namespaces/{name}")

    def create_pod(self, namespace: str, pod: dict) -> dict:
        return self._request("POST", f"/api/v1/namespaces/{namespace}/pods", json=pod).json()

    def get_pod(self, namespace: str, name: str) -> dict:
        return self._request("GET", f"/api/v1/namespaces/{namespace}/pods/{name}").json()

    def patch_pod_ephemeral_containers(self, namespace: str, name: str, patch: dict) -> dict:
        return self._request(
            "PATCH",
            f"/api/v1/namespaces/{namespace}/pods/{name}/ephemeralcontainers",
            data=json.dumps(patch),
            headers={"Content-Type": "application/strategic-merge-patch+json"},
        ).json()

    def watch_pods(self, namespace: str, name: str, timeout: float) -> Iterator[WatchEvent]:
        """Yield watch events for the named pod until ``timeout`` seconds pass."""
        params = {
            "watch": "true",
            "fieldSelector": f"metadata.name={name}",
            "timeoutSeconds": max(1, math.ceil(timeout)),
        }
        response = self._request(
            "GET",
            f"/api/v1/namespaces/{namespace}/pods",
            params=params,
            stream=True,
            timeout=(10, max(timeout, 0.1)),
        )
        try:
            for line in response.iter_lines():
                if line:
                    data = json.loads(line)
                    yield WatchEvent(data.get("type", ""), data.get("object"))
        except requests.RequestException:
            return
        finally:
            response.close()

    def get_endpoints(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self._request("GET", f"/api/v1/namespaces/{namespace}/endpoints/{name}").json()
        except KubernetesError as exc:
            if exc.status_code == 404:
                return None
            raise

    def create_service(self, namespace: str, service: dict) -> dict:
        return self._request(
            "POST", f"/api/v1/namespaces/{namespace}/services", json=service
        ).json()

    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: list[str],
        stdin: bytes = b"",
    ) -> tuple[bytes, bytes]:
        """Run a command in a container and return its stdout and stderr."""
        query = [("container", container)]
        query += [("command", part) for part in command]
        query += [("stdin", "true"), ("stdout", "true"), ("stderr", "true")]
        url = (
            self.host.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
            + f"/api/v1/namespaces/{namespace}/pods/{pod}/exec?"
            + urlencode(query)
        )
        headers = [
            f"{key}: {value}"
            for key, value in self._session.headers.items()
            if key.lower() == "authorization"
        ]
        try:
            ws = websocket.create_connection(
                url,
                header=headers,
                subprotocols=["v4.channel.k8s.io"],
                sslopt=self._sslopt(),
            )
        except (websocket.WebSocketException, OSError) as exc:
            raise KubernetesError(f"cannot execute command in pod {pod}: {exc}") from exc

        stdout, stderr, status = bytearray(), bytearray(), None
        try:
            if stdin:
                ws.send_binary(b"\x00" + stdin)
            while True:
                try:
                    message = ws.recv()
                except websocket.WebSocketConnectionClosedException:
                    break
                if not message:
                    break
                if isinstance(message, str):
                    message = message.encode()
                channel, payload = message[0], message[1:]
                if channel == 1:
                    stdout += payload
                elif channel == 2:
                    stderr += payload
                elif channel == 3:
                    status = json.loads(payload) if payload else None
        finally:
            ws.close()

        if status is not None and status.get("status") != "Success":
            raise KubernetesError(
                status.get("message", "command failed"),
                stdout=bytes(stdout),
                stderr=bytes(stderr),
            )
        return bytes(stdout), bytes(stderr)

    def _sslopt(self) -> dict:
        options: dict[str, Any] = {}
        verify = self._session.verify
        if verify is False:
            options["cert_reqs"] = ssl.CERT_NONE
        elif isinstance(verify, str):
            options["ca_certs"] = verify
        cert = self._session.cert
        if isinstance(cert, tuple):
            options["certfile"], options["keyfile"] = cert
        elif isinstance(cert, str):
            options["certfile"] = cert
        return options


def _data_file(data: str, suffix: str) -> str:
    handle = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
    with handle:
        handle.write(base64.b64decode(data))
    return handle.name


def _named(entries: list, name: str, kind: str) -> dict:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(kind) or {}
    raise KubernetesError(f"{kind} {name!r} not found in kubeconfig")


def _load_kubeconfig(path: str) -> Kubernetes:
    if not path:
        path = os.environ.get("KUBECONFIG", "").split(os.pathsep)[0] or os.path.expanduser(
            "~/.kube/config"
        )
    try:
        with open(path, encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise KubernetesError(f"cannot read kubeconfig {path}: {exc}") from exc

    context = _named(document.get("contexts"), document.get("current-context", ""), "context")
    cluster = _named(document.get("clusters"), context.get("cluster", ""), "cluster")
    user = _named(document.get("users"), context.get("user", ""), "user") if context.get(
        "user"
    ) else {}

    server = cluster.get("server")
    if not server:
        raise KubernetesError("kubeconfig has no server")

    session = requests.Session()
    if cluster.get("insecure-skip-tls-verify"):
        session.verify = False
    elif cluster.get("certificate-authority-data"):
        session.verify = _data_file(cluster["certificate-authority-data"], ".crt")
    elif cluster.get("certificate-authority"):
        session.verify = cluster["certificate-authority"]

    cert = user.get("client-certificate") or (
        _data_file(user["client-certificate-data"], ".crt")
        if user.get("client-certificate-data")
        else None
    )
    key = user.get("client-key") or (
        _data_file(user["client-key-data"], ".key") if user.get("client-key-data") else None
    )
    if cert and key:
        session.cert = (cert, key)
    if user.get("token"):
        session.headers["Authorization"] = f"Bearer {user['token']}"
    elif user.get("username"):
        session.auth = (user["username"], user.get("password", ""))
    return Kubernetes(server, session)


def new_from_config(config: Config) -> Kubernetes:
    """Return a client for the cluster described by ``config``.

    Raises ``KubernetesError`` if the server runs a version below v1.23.
    """
    client = _load_kubeconfig(config.kubeconfig)
    version = client.server_version()
    check_version(str(version.get("major", "")), str(version.get("minor", "")))
    return client


def new_from_kubeconfig(kubeconfig: str) -> Kubernetes:
    """Return a client configured from the kubeconfig at ``kubeconfig``."""
    return new_from_config(Config(kubeconfig=kubeconfig))


class _FixedResponseAdapter(BaseAdapter):
    """Transport that records requests and answers with a fixed response."""

    def __init__(self) -> None:
        super().__init__()
        self.status = 200
        self.body = b""
        self.requests: list[requests.PreparedRequest] = []

    def send(self, request, **kwargs):  # type: ignore[override]
        import io

        self.requests.append(request)
        response = requests.Response()
        response.status_code = self.status
        response.raw = io.BytesIO(self.body)
        response.url = request.url
        response.request = request
        return response

    def close(self) -> None:
        pass


class FakeKubernetes:
    """In-memory cluster for tests."""

    host = "http://fake-apiserver"

    def __init__(self, objects: Optional[list[dict]] = None) -> None:
        self._lock = threading.Lock()
        self._namespaces: dict[str, dict] = {}
        self._pods: dict[tuple[str, str], dict] = {}
        self._services: dict[tuple[str, str], dict] = {}
        self._endpoints: dict[tuple[str, str], dict] = {}
        self._watchers: list[tuple[str, str, queue.Queue]] = []
        self._executor = FakePodCommandExecutor()
        self._adapter = _FixedResponseAdapter()
        self._session = requests.Session()
        self._session.mount("http://", self._adapter)
        self._session.mount("https://", self._adapter)
        for obj in objects or []:
            self._store(obj)

    def _store(self, obj: dict) -> None:
        kind = obj.get("kind")
        meta = obj.get("metadata", {})
        key = (meta.get("namespace", "default"), meta.get("name", ""))
        if kind == "Pod":
            self._pods[key] = copy.deepcopy(obj)
        elif kind == "Service":
            self._services[key] = copy.deepcopy(obj)
        elif kind in ("Endpoints", "EndPoints"):
            self._endpoints[key] = copy.deepcopy(obj)
        elif kind == "Namespace":
            self._namespaces[meta["name"]] = copy.deepcopy(obj)
        else:
            raise KubernetesError(f"unsupported object kind {kind!r}")

    def helpers(self) -> FakeHelpers:
        return FakeHelpers(self, "default", self._executor)

    def namespaced_helpers(self, namespace: str) -> FakeHelpers:
        return FakeHelpers(self, namespace, self._executor)

    def fake_executor(self) -> FakePodCommandExecutor:
        """Return the executor that records commands run in pods."""
        return self._executor

    def http_client(self) -> requests.Session:
        return self._session

    def set_http_response(self, status: int, body: bytes = b"") -> None:
        """Set the response to every HTTP request sent through ``http_client``."""
        self._adapter.status = status
        self._adapter.body = body

    @property
    def http_requests(self) -> list[requests.PreparedRequest]:
        """The HTTP requests sent through ``http_client``."""
        return list(self._adapter.requests)

    def server_version(self) -> dict:
        return {"major": "1", "minor": "24"}

    def create_namespace(self, manifest: dict) -> dict:
        created = copy.deepcopy(manifest)
        meta = created.setdefault("metadata", {})
        with self._lock:
            if not meta.get("name"):
                suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
                meta["name"] = meta.get("generateName", "") + suffix
            if meta["name"] in self._namespaces:
                raise KubernetesError(f"namespace {meta['name']} already exists", 409)
            self._namespaces[meta["name"]] = created
        return copy.deepcopy(created)

    def delete_namespace(self, name: str) -> None:
        with self._lock:
            if self._namespaces.pop(name, None) is None:
                raise KubernetesError(f"namespace {name} not found", 404)

    def create_pod(self, namespace: str, pod: dict) -> dict:
        created = copy.deepcopy(pod)
        created.setdefault("metadata", {})["namespace"] = namespace
        key = (namespace, created["metadata"]["name"])
        with self._lock:
            if key in self._pods:
                raise KubernetesError(f"pod {key[1]} already exists", 409)
            self._pods[key] = created
        return copy.deepcopy(created)

    def get_pod(self, namespace: str, name: str) -> dict:
        with self._lock:
            pod = self._pods.get((namespace, name))
        if pod is None:
            raise KubernetesError(f"pod {name} not found", 404)
        return copy.deepcopy(pod)

    def modify_pod(self, pod: dict) -> None:
        """Store ``pod`` and send a MODIFIED event to its watchers."""
        meta = pod["metadata"]
        namespace, name = meta.get("namespace", "default"), meta["name"]
        with self._lock:
            self._pods[(namespace, name)] = copy.deepcopy(pod)
            targets = [q for ns, n, q in self._watchers if ns == namespace and n == name]
        for target in targets:
            target.put(WatchEvent(MODIFIED, copy.deepcopy(pod)))

    def patch_pod_ephemeral_containers(self, namespace: str, name: str, patch: dict) -> dict:
        with self._lock:
            pod = self._pods.get((namespace, name))
            if pod is None:
                raise KubernetesError(f"pod {name} not found", 404)
            added = patch.get("spec", {}).get("ephemeralContainers", [])
            pod.setdefault("spec", {}).setdefault("ephemeralContainers", []).extend(
                copy.deepcopy(added)
            )
            return copy.deepcopy(pod)

    def watch_pods(self, namespace: str, name: str, timeout: float) -> Iterator[WatchEvent]:
        events: queue.Queue = queue.Queue()
        entry = (namespace, name, events)
        with self._lock:
            self._watchers.append(entry)
        deadline = time.monotonic() + timeout
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                try:
                    yield events.get(timeout=remaining)
                except queue.Empty:
                    return
        finally:
            with self._lock:
                self._watchers.remove(entry)

    def get_endpoints(self, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            endpoints = self._endpoints.get((namespace, name))
        return copy.deepcopy(endpoints) if endpoints is not None else None

    def set_endpoints(self, namespace: str, endpoints: dict) -> None:
        """Create or replace an Endpoints object."""
        with self._lock:
            self._endpoints[(namespace, endpoints["metadata"]["name"])] = copy.deepcopy(endpoints)

    def create_service(self, namespace: str, service: dict) -> dict:
        created = copy.deepcopy(service)
        created.setdefault("metadata", {})["namespace"] = namespace
        key = (namespace, created["metadata"]["name"])
        with self._lock:
            if key in self._services:
                raise KubernetesError(f"service {key[1]} already exists", 409)
            self._services[key] = created
        return copy.deepcopy(created)

    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: list[str],
        stdin: bytes = b"",
    ) -> tuple[bytes, bytes]:
        return self._executor.exec(pod, container, command, stdin)