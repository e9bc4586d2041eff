from kdisrupt.builders import PodBuilder, ServiceBuilder, default_service_ports


def test_pod_defaults():
    pod = PodBuilder("my-pod").build()
    assert pod["apiVersion"] == "v1"
    assert pod["kind"] == "Pod"
    assert pod["metadata"]["name"] == "my-pod"
    assert pod["metadata"]["namespace"] == "default"
    assert "labels" not in pod["metadata"]
    assert pod["status"] == {}
    container = pod["spec"]["containers"][0]
    assert container["name"] == "busybox"
    assert container["image"] == "busybox"
    assert container["command"] == ["sh", "-c", "sleep 300"]


def test_pod_with_attributes():
    labels = {"app": "test"}
    pod = (
        PodBuilder("my-pod")
        .with_namespace("ns-test")
        .with_labels(labels)
        .with_status("Running")
        .build()
    )
    assert pod["metadata"]["namespace"] == "ns-test"
    assert pod["metadata"]["labels"] == labels
    assert pod["status"]["phase"] == "Running"


def test_pod_builds_are_independent():
    builder = PodBuilder("p")
    first = builder.build()
    first["spec"]["containers"][0]["name"] = "changed"
    second = builder.build()
    assert second["spec"]["containers"][0]["name"] == "busybox"


def test_service_defaults():
    svc = ServiceBuilder("my-svc").build()
    assert svc["kind"] == "Service"
    assert svc["apiVersion"] == "v1"
    assert svc["metadata"] == {"name": "my-svc", "namespace": "default"}
    assert svc["spec"]["selector"] == {}
    assert svc["spec"]["ports"] == default_service_ports()


def test_default_service_ports():
    ports = default_service_ports()
    assert len(ports) == 1
    assert ports[0]["port"] == 80
    assert ports[0]["targetPort"] == 80


def test_service_with_attributes():
    ports = [{"port": 8080, "targetPort": 80}]
    selector = {"app": "test"}
    svc = (
        ServiceBuilder("my-svc")
        .with_namespace("ns-test")
        .with_ports(ports)
        .with_selector(selector)
        .build()
    )
    assert svc["metadata"]["namespace"] == "ns-test"
    assert svc["spec"]["ports"] == ports
    assert svc["spec"]["selector"] == selector


def test_service_builds_are_independent():
    builder = ServiceBuilder("s")
    first = builder.build()
    first["spec"]["ports"].clear()
    assert builder.build()["spec"]["ports"] == default_service_ports()