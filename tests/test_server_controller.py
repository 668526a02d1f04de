import datetime as dt

import pytest

from fallernetes.api import Container, ObjectMeta, Pod, PodSpec, Server, ServerSpec
from fallernetes.client import InMemoryClient, NamespacedName, Request, Result, contains_finalizer
from fallernetes.client import NotFoundError
from fallernetes.events import EventReason, EventType, RecordingRecorder
from fallernetes.server_controller import SERVER_FINALIZER, ServerReconciler
from fallernetes.sidecar import DeletionChecker, SidecarError

SERVER_NAME = "test-server"
NAMESPACE = "default"
KEY = NamespacedName(NAMESPACE, SERVER_NAME)
POD_KEY = NamespacedName(NAMESPACE, SERVER_NAME + "-pod")
REQUEST = Request(KEY)


class FailingClient(InMemoryClient):
    def __init__(self) -> None:
        super().__init__()
        self.fail_get = False
        self.fail_get_on_pod = False
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False

    def get(self, kind, key):
        if self.fail_get:
            raise RuntimeError("fail get")
        if self.fail_get_on_pod and kind is Pod:
            raise RuntimeError("fail get on pod")
        return super().get(kind, key)

    def create(self, obj):
        if self.fail_create:
            raise RuntimeError("fail create")
        super().create(obj)

    def update(self, obj):
        if self.fail_update:
            raise RuntimeError("fail update")
        super().update(obj)

    def delete(self, obj):
        if self.fail_delete:
            raise RuntimeError("fail delete")
        super().delete(obj)


class MapChecker(DeletionChecker):
    def __init__(self) -> None:
        self.allowed: dict[str, bool] = {}

    def is_deletion_allowed(self, server, pod):
        return self.allowed.get(server.metadata.name, False)


class RaisingChecker(DeletionChecker):
    def is_deletion_allowed(self, server, pod):
        raise SidecarError("boom")


def basic_server_spec() -> ServerSpec:
    return ServerSpec(
        pod=PodSpec(containers=[Container(name="nginx", image="nginx:1.7.9")]),
        allow_force_delete=False,
        timeout=dt.timedelta(minutes=5),
    )


@pytest.fixture
def client():
    c = FailingClient()
    c.create(Server(metadata=ObjectMeta(name=SERVER_NAME, namespace=NAMESPACE), spec=basic_server_spec()))
    return c


@pytest.fixture
def recorder():
    return RecordingRecorder()


@pytest.fixture
def checker():
    return MapChecker()


@pytest.fixture
def reconciler(client, recorder, checker):
    return ServerReconciler(
        client=client,
        recorder=recorder,
        deletion_checker=checker,
        error_on_not_allowed=True,
    )


def run(reconciler, times):
    return [reconciler.reconcile(REQUEST) for _ in range(times)]


def test_adds_finalizer_if_not_present(reconciler, client, recorder):
    assert reconciler.reconcile(REQUEST) == Result()
    server = client.get(Server, KEY)
    assert contains_finalizer(server, SERVER_FINALIZER)
    assert "Finalizer added" in recorder.messages()


def test_missing_server_is_ignored(reconciler):
    result = reconciler.reconcile(Request(NamespacedName(NAMESPACE, "nope")))
    assert result == Result()


def test_creates_pod_for_server(reconciler, client, recorder):
    results = run(reconciler, 2)
    assert results[1] == Result(requeue=True)
    pod = client.get(Pod, POD_KEY)
    assert [c.name for c in pod.spec.containers] == ["nginx", "fallernetes-sidecar"]
    assert pod.metadata.labels["server"] == SERVER_NAME
    assert pod.metadata.owner_references[0].kind == "Server"

    assert reconciler.reconcile(REQUEST) == Result()
    assert contains_finalizer(client.get(Pod, POD_KEY), SERVER_FINALIZER)
    assert "Pod created successfully" in recorder.messages()
    assert any(
        isinstance(e.obj, Pod) and e.message == "Pod finalizer added" for e in recorder.events
    )
    assert any(
        isinstance(e.obj, Server) and e.message == "Pod finalizer added" for e in recorder.events
    )
    assert "Setting up sidecar with image unfamousthomas/fallernetes-sidecar:main" in recorder.messages()


def test_fully_reconciled_server_updates_status(reconciler, client):
    results = run(reconciler, 4)
    assert results[3] == Result()
    assert contains_finalizer(client.get(Server, KEY), SERVER_FINALIZER)


def test_deletion_removes_pod_and_server(reconciler, client, recorder, checker):
    run(reconciler, 3)
    client.get(Pod, POD_KEY)
    client.delete(client.get(Server, KEY))

    with pytest.raises(RuntimeError, match="server deletion not allowed"):
        reconciler.reconcile(REQUEST)
    assert "Server did not respond with allowed" in recorder.messages()

    checker.allowed[SERVER_NAME] = True
    assert reconciler.reconcile(REQUEST) == Result(requeue=True)

    with pytest.raises(NotFoundError):
        client.get(Pod, POD_KEY)
    with pytest.raises(NotFoundError):
        client.get(Server, KEY)

    messages = recorder.messages()
    assert "Pod successfully deleted during finalization" in messages
    assert "Finalizer removed" in messages
    assert any(
        isinstance(e.obj, Pod) and e.message == "Pod finalizer removed" for e in recorder.events
    )
    assert any(
        isinstance(e.obj, Server) and e.message == "Pod finalizer removed" for e in recorder.events
    )


def test_not_allowed_requeues_without_error(client, recorder, checker):
    reconciler = ServerReconciler(
        client=client, recorder=recorder, deletion_checker=checker, error_on_not_allowed=False
    )
    run(reconciler, 3)
    client.delete(client.get(Server, KEY))
    assert reconciler.reconcile(REQUEST) == Result(requeue=True)
    server = client.get(Server, KEY)
    assert server.metadata.deleting
    assert contains_finalizer(server, SERVER_FINALIZER)


def test_checker_failure_raises_and_warns(client, recorder):
    reconciler = ServerReconciler(
        client=client, recorder=recorder, deletion_checker=RaisingChecker()
    )
    run(reconciler, 3)
    client.delete(client.get(Server, KEY))
    with pytest.raises(SidecarError, match="boom"):
        reconciler.reconcile(REQUEST)
    warnings = [
        e
        for e in recorder.events
        if e.message == "Deletion request did not succeed" and e.event_type == EventType.WARNING
    ]
    assert {type(e.obj) for e in warnings} == {Pod, Server}


def test_error_on_get_fail(reconciler, client):
    client.fail_get = True
    with pytest.raises(RuntimeError, match="fail get"):
        reconciler.reconcile(REQUEST)


def test_errors_on_update_fail(reconciler, client, recorder):
    client.fail_update = True
    with pytest.raises(RuntimeError, match="fail update"):
        reconciler.reconcile(REQUEST)
    assert any(m.startswith("failed to update server") for m in recorder.messages())

    client.fail_update = False
    assert reconciler.reconcile(REQUEST) == Result()

    client.fail_update = True
    assert reconciler.reconcile(REQUEST) == Result(requeue=True)
    with pytest.raises(RuntimeError, match="fail update"):
        reconciler.reconcile(REQUEST)

    client.fail_update = False
    client.fail_get_on_pod = True
    with pytest.raises(RuntimeError, match="fail get on pod"):
        reconciler.reconcile(REQUEST)


def test_pod_creation_failure_is_reported(reconciler, client, recorder):
    reconciler.reconcile(REQUEST)
    client.fail_create = True
    with pytest.raises(RuntimeError, match="fail create"):
        reconciler.reconcile(REQUEST)
    failed = [e for e in recorder.events if e.reason == EventReason.SERVER_POD_CREATION_FAILED]
    assert [e.message for e in failed] == ["Pod creation errored: fail create"]
    with pytest.raises(NotFoundError):
        client.get(Pod, POD_KEY)


def test_pod_delete_failure_keeps_server(reconciler, client, checker):
    run(reconciler, 3)
    client.delete(client.get(Server, KEY))
    checker.allowed[SERVER_NAME] = True
    client.fail_delete = True
    with pytest.raises(RuntimeError, match="fail delete"):
        reconciler.reconcile(REQUEST)
    assert contains_finalizer(client.get(Server, KEY), SERVER_FINALIZER)