import copy
import queue
import threading
import time

import pytest
import requests

from kdisrupt.builders import PodBuilder
from kdisrupt.fakes import FakeHTTPClient
from kdisrupt.helpers import HelperError, Helpers, ServiceProxy, WatchEvent

TEST_NAMESPACE = "ns-test"


class _FakeClient:
    host = "http://localhost:8001"

    def __init__(self, pods=None, endpoints=None):
        self.pods = {(p["metadata"]["namespace"], p["metadata"]["name"]): p for p in pods or []}
        self.endpoints = {}
        for ep in endpoints or []:
            self.endpoints[(ep["metadata"]["namespace"], ep["metadata"]["name"])] = ep
        self.events = queue.Queue()
        self.patches = []
        self.namespaces = []
        self.execs = []
        self.endpoint_error = None

    def create_namespace(self, manifest):
        self.namespaces.append(manifest)
        created = copy.deepcopy(manifest)
        created["metadata"]["name"] = manifest["metadata"]["generateName"] + "x7k2p"
        return created

    def get_pod(self, namespace, name):
        return copy.deepcopy(self.pods[(namespace, name)])

    def patch_pod_ephemeral_containers(self, namespace, name, patch):
        self.patches.append((namespace, name, patch))

    def watch_pods(self, namespace, name, timeout):
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                event = self.events.get(timeout=remaining)
            except queue.Empty:
                return
            yield event

    def get_endpoints(self, namespace, name):
        if self.endpoint_error is not None:
            raise self.endpoint_error
        return self.endpoints.get((namespace, name))

    def update_endpoints(self, ep):
        self.endpoints[(ep["metadata"]["namespace"], ep["metadata"]["name"])] = ep

    def exec_in_pod(self, namespace, pod, container, command, stdin):
        self.execs.append((namespace, pod, container, command, stdin))
        return b"hello world", b""

    def http_client(self):
        return requests.Session()


def _modify_later(client, delay, pod):
    timer = threading.Timer(delay, lambda: client.events.put(WatchEvent("MODIFIED", copy.deepcopy(pod))))
    timer.start()
    return timer


@pytest.mark.parametrize(
    "status, delay, expect_error, expected, timeout",
    [
        ("Running", 0.1, False, True, 0.5),
        ("Running", 1.0, False, False, 0.5),
        ("Failed", 0.1, True, False, 0.5),
    ],
    ids=["wait pod running", "timeout waiting pod running", "wait failed pod"],
)
def test_wait_pod_running(status, delay, expect_error, expected, timeout):
    client = _FakeClient()
    helpers = Helpers(client, TEST_NAMESPACE)
    pod = PodBuilder("pod-running").with_namespace(TEST_NAMESPACE).with_status(status).build()
    timer = _modify_later(client, delay, pod)
    try:
        if expect_error:
            with pytest.raises(HelperError, match="pod has failed"):
                helpers.wait_pod_running("pod-running", timeout)
        else:
            assert helpers.wait_pod_running("pod-running", timeout) is expected
    finally:
        timer.cancel()


def test_wait_pod_error_event():
    client = _FakeClient()
    client.events.put(WatchEvent("ERROR", "boom"))
    with pytest.raises(HelperError, match="error watching for pod"):
        Helpers(client, TEST_NAMESPACE).wait_pod_running("p", 0.5)


def test_wait_pod_unknown_object():
    client = _FakeClient()
    client.events.put(WatchEvent("MODIFIED", "not a pod"))
    with pytest.raises(HelperError, match="unknown object"):
        Helpers(client, TEST_NAMESPACE).wait_pod_running("p", 0.5)


@pytest.mark.parametrize(
    "delay, expect_error, state, timeout",
    [
        (0.1, False, {"waiting": {}}, 0),
        (0.3, False, {"running": {}}, 0.5),
        (0.3, True, {"waiting": {}}, 0.5),
    ],
    ids=[
        "Create ephemeral container not waiting",
        "Create ephemeral container waiting",
        "Fail waiting for container",
    ],
)
def test_attach_ephemeral_container(delay, expect_error, state, timeout):
    pod = PodBuilder("test-pod").with_namespace(TEST_NAMESPACE).build()
    client = _FakeClient(pods=[pod])
    helpers = Helpers(client, TEST_NAMESPACE)

    updated = copy.deepcopy(pod)
    updated["status"]["ephemeralContainerStatuses"] = [{"name": "ephemeral", "state": state}]
    timer = _modify_later(client, delay, updated)
    container = {"name": "ephemeral", "image": "busybox"}
    try:
        if expect_error:
            with pytest.raises(HelperError, match="has not started"):
                helpers.attach_ephemeral_container("test-pod", container, timeout)
        else:
            assert helpers.attach_ephemeral_container("test-pod", container, timeout) is None
    finally:
        timer.cancel()

    assert client.patches == [
        (TEST_NAMESPACE, "test-pod", {"spec": {"ephemeralContainers": [container]}})
    ]


def _endpoints(name, subsets):
    return {
        "apiVersion": "v1",
        "kind": "EndPoints",
        "metadata": {"name": name, "namespace": "default"},
        "subsets": subsets,
    }


def _without_addresses():
    return _endpoints("service", [])


def _with_addresses():
    return _endpoints("service", [{"addresses": [{"ip": "1.1.1.1"}]}])


def _other_with_addresses():
    return _endpoints("otherservice", [{"addresses": [{"ip": "1.1.1.1"}]}])


def _not_ready_addresses():
    return _endpoints("service", [{"notReadyAddresses": [{"ip": "1.1.1.1"}]}])


@pytest.mark.parametrize(
    "endpoints, updated, delay, expect_error, timeout",
    [
        (None, None, 0, True, 0.5),
        (_with_addresses(), None, 0, False, 0.5),
        (_without_addresses(), _with_addresses(), 0.2, False, 0.5),
        (_without_addresses(), _not_ready_addresses(), 0.2, True, 0.5),
        (_without_addresses(), _with_addresses(), 1.0, True, 0.5),
        (_other_with_addresses(), None, 1.0, True, 0.5),
    ],
    ids=[
        "endpoint not created",
        "endpoint ready",
        "wait for endpoint to be ready",
        "not ready addresses",
        "timeout waiting for addresses",
        "other endpoint ready",
    ],
)
def test_wait_service_ready(endpoints, updated, delay, expect_error, timeout):
    client = _FakeClient(endpoints=[endpoints] if endpoints else [])
    helpers = Helpers(client, "default")
    helpers.poll_interval = 0.05

    timer = None
    if updated is not None:
        timer = threading.Timer(delay, client.update_endpoints, args=(updated,))
        timer.start()
    try:
        if expect_error:
            with pytest.raises(TimeoutError):
                helpers.wait_service_ready("service", timeout)
        else:
            assert helpers.wait_service_ready("service", timeout) is None
    finally:
        if timer is not None:
            timer.cancel()


def test_wait_service_ready_access_error():
    client = _FakeClient()
    client.endpoint_error = RuntimeError("forbidden")
    with pytest.raises(HelperError, match="failed to access service: forbidden"):
        Helpers(client, "default").wait_service_ready("service", 0.5)


def test_service_client_simple_get():
    fake = FakeHTTPClient(200, b"")
    proxy = ServiceProxy(fake, "http://localhost:8001", "default", "my-service", 80)
    request = requests.Request(method="GET", url="/path/to/request", data=b"")

    response = proxy.do(request)

    assert response.status_code == 200
    assert fake.request.url == (
        "http://localhost:8001/api/v1/namespaces/default/services/my-service:80/proxy/path/to/request"
    )
    assert fake.request.method == "GET"


def test_service_client_forwards_headers_and_body():
    fake = FakeHTTPClient(200, b"")
    proxy = ServiceProxy(fake, "http://localhost:8001", "default", "my-service", 80)
    request = requests.Request(
        method="POST", url="/post", headers={"X-Test": "yes"}, data=b"payload"
    )
    proxy.do(request)
    assert fake.request.headers == {"X-Test": "yes"}
    assert fake.request.data == b"payload"


def test_get_service_proxy_base_url():
    helpers = Helpers(_FakeClient(), "default")
    proxy = helpers.get_service_proxy("my-service", 80)
    assert proxy.base_url == "http://localhost:8001/api/v1/namespaces/default/services/my-service:80/proxy"
    assert (proxy.service, proxy.port, proxy.namespace) == ("my-service", 80, "default")


def test_create_random_namespace_uses_prefix():
    client = _FakeClient()
    name = Helpers(client).create_random_namespace("test")
    assert name.startswith("test")
    assert client.namespaces[0]["metadata"] == {"generateName": "test"}


def test_exec_delegates_to_client():
    client = _FakeClient()
    stdout, stderr = Helpers(client, TEST_NAMESPACE).exec(
        "busybox", "busybox", ["echo", "-n", "hello", "world"], None
    )
    assert stdout == b"hello world"
    assert stderr == b""
    assert client.execs == [
        (TEST_NAMESPACE, "busybox", "busybox", ["echo", "-n", "hello", "world"], b"")
    ]