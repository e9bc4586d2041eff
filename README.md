# kdisrupt

Building blocks for tests that run against a Kubernetes cluster. You can
create throw-away kind clusters, deploy pods and services, wait for them to
become ready, run commands inside containers, attach ephemeral containers and
check that a service answers with the status code you expect. There are fakes
too, so that code which depends on these helpers can be unit tested without a
cluster.

## Installation

```
pip install kdisrupt
```

Creating and deleting clusters runs the `kind` and `docker` commands, so both
must be on the `PATH`.

## Modules

| Module | What it offers |
| --- | --- |
| `kdisrupt.retry` | `retry(timeout, backoff, func)` calls `func` until it returns true or raises. Between calls it sleeps `backoff` seconds. It raises `TimeoutError` once `timeout` seconds have passed. |
| `kdisrupt.process` | `DefaultExecutor().exec(cmd, *args)` runs a process and returns its combined stdout and stderr. It raises `ProcessError` on a non-zero exit or when the process cannot be started. `FakeExecutor` and `CallbackExecutor` record invocations for tests. |
| `kdisrupt.lock` | `lock(path)` and `unlock(path)` manage a lock file that holds the owner's pid. A lock whose owner is dead is taken over. `unlock` raises `LockError` when the caller is not the owner. |
| `kdisrupt.cluster` | `ClusterConfig`, `Options`, `NodePort` and `Cluster` for kind clusters with mapped node ports, worker nodes, preloaded images and a chosen Kubernetes version. `default_config()` returns a configuration named `test-cluster`. |
| `kdisrupt.builders` | `PodBuilder` and `ServiceBuilder` produce Pod and Service manifests as dictionaries. `default_service_ports()` returns the default service ports. |
| `kdisrupt.kubernetes` | `new_from_kubeconfig(path)` and `new_from_config(Config(...))` return a `Kubernetes` client and reject API servers older than v1.23 (see `check_version`). `FakeKubernetes` is an in-memory cluster for tests. |
| `kdisrupt.helpers` | `Helpers` creates random namespaces, waits for pods to run and for services to have ready endpoints, runs commands in containers, attaches ephemeral containers and returns a `ServiceProxy` that sends HTTP requests through the API server. |
| `kdisrupt.fakes` | `FakePodCommandExecutor`, `FakeHelpers` and `FakeHTTPClient`. |
| `kdisrupt.fixtures` | Ready-made pods and services for httpbin, nginx, busybox and pause. Also `run_pod`, `expose_service`, `deploy_app` and `build_cluster`, which maps node ports 32080–32089 to the host. |
| `kdisrupt.checks` | `ServiceCheck` and `check_service`, which raises `HelperError` when a service cannot be reached or answers with another status code. |

Manifests are plain dictionaries in the Kubernetes JSON layout. Durations are
given in seconds.

## Example

```python
from kdisrupt.checks import ServiceCheck, check_service
from kdisrupt.fixtures import build_cluster, build_httpbin_pod, build_httpbin_service, deploy_app
from kdisrupt.kubernetes import new_from_kubeconfig

cluster = build_cluster("e2e-example")
try:
    k8s = new_from_kubeconfig(cluster.kubeconfig())
    ns = k8s.helpers().create_random_namespace("test-")
    deploy_app(k8s, ns, build_httpbin_pod(), build_httpbin_service(), 30.0)
    check_service(
        k8s,
        ServiceCheck(service="httpbin", namespace=ns, path="/status/200", expected_code=200),
    )
finally:
    cluster.delete()
```

### Rendering a kind configuration

```python
from kdisrupt.cluster import ClusterConfig, NodePort, Options

config = ClusterConfig(
    "test-cluster",
    Options(node_ports=[NodePort(node_port=32080, host_port=8080)], workers=2),
)
print(config.render())
```

When `Options.config` is set, `render()` returns it unchanged. A `NodePort`
with a zero port makes `ClusterConfig` raise `ClusterError`.
`Cluster.allocate_port()` hands out the configured node ports one at a time
and returns `None` when none is free. `release_port()` puts a port back in
the pool.

### Faking process execution

```python
from kdisrupt.process import FakeExecutor

fake = FakeExecutor(b"hello world", None)
fake.exec("cat", "-n", "hello")
assert fake.invoked()
assert fake.cmd() == "cat -n hello"
assert fake.invocations() == 1
```

### Testing with an in-memory cluster

`FakeKubernetes` keeps namespaces, pods, services and endpoints in memory.
Test code drives it with these members:

- `modify_pod(pod)` stores a pod and sends a `MODIFIED` event to anything
  watching it.
- `set_endpoints(namespace, endpoints)` creates or replaces an Endpoints
  object.
- `set_http_response(status, body)` fixes the answer to every request sent
  through `http_client()`.
- `http_requests` lists the requests that were sent.

Commands run in pods are recorded by the `FakePodCommandExecutor` returned by
`fake_executor()`.

## What the package does not do

- It has no command-line program. Everything is used from Python code.
- It does not inject faults into pods or services itself. It provides the
  clusters, helpers, fixtures and checks that tests of such faults are built
  from.
- The kubeconfig loader understands server certificates, client certificates
  and keys, bearer tokens and user names with passwords. It does not run
  credential plugins or auth providers.

## Running the tests

```
pip install -e ".[test]"
pytest
```