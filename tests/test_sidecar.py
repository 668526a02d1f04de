import datetime as dt
import json

import pytest
import responses

from fallernetes.api import (
    POD_RUNNING,
    ObjectMeta,
    Pod,
    PodStatus,
    Server,
    ServerSpec,
    SidecarSettings,
)
from fallernetes.client import InMemoryClient, NotFoundError
from fallernetes.sidecar import (
    ProdDeletionChecker,
    SidecarError,
    is_delete_allowed,
    pod_base_address,
    request_shutdown,
)

IP = "10.1.2.3"
BASE = f"http://{IP}:8080/"
NOW = dt.datetime.now(dt.timezone.utc)


@pytest.fixture
def rsps():
    with responses.RequestsMock() as mock:
        yield mock


def _pod(phase=POD_RUNNING):
    return Pod(
        metadata=ObjectMeta(name="srv-pod", namespace="default"),
        status=PodStatus(phase=phase, pod_ip=IP),
    )


def _server(deleted_at=None, **spec):
    server = Server(metadata=ObjectMeta(name="srv", namespace="default"), spec=ServerSpec(**spec))
    server.metadata.deletion_timestamp = deleted_at
    return server


def test_pod_base_address():
    assert pod_base_address(_pod(), 8080) == "http://10.1.2.3:8080/"
    assert pod_base_address(_pod(), "9000").endswith(":9000/")


@pytest.mark.parametrize("allowed", [True, False])
def test_is_delete_allowed_reads_answer(rsps, allowed):
    rsps.add(responses.GET, BASE + "allow_delete", json={"allowed": allowed})
    assert is_delete_allowed(_pod(), 8080) is allowed


@pytest.mark.parametrize(
    "response, match",
    [({"status": 503}, "^GET request returned: 503"), ({"body": "not json"}, "")],
)
def test_is_delete_allowed_rejects_bad_answer(rsps, response, match):
    rsps.add(responses.GET, BASE + "allow_delete", **response)
    with pytest.raises(SidecarError, match=match):
        is_delete_allowed(_pod(), 8080)


def test_request_shutdown_sends_flag(rsps):
    rsps.add(responses.POST, BASE + "shutdown")
    assert request_shutdown(_pod(), 8080) is None
    assert [c.request.url for c in rsps.calls] == [BASE + "shutdown"]
    assert json.loads(rsps.calls[0].request.body) == {"shutdown": True}


def test_request_shutdown_rejects_bad_status(rsps):
    rsps.add(responses.POST, BASE + "shutdown", status=500)
    with pytest.raises(SidecarError, match="^POST request returned: 500"):
        request_shutdown(_pod(), 8080)


def test_connection_failure_raises_sidecar_error(rsps):
    with pytest.raises(SidecarError):
        is_delete_allowed(_pod(), 8080)
    assert len(rsps.calls) == 1


@pytest.mark.parametrize(
    "server, pod",
    [
        (_server(), _pod(phase="Pending")),
        (_server(allow_force_delete=True), _pod()),
        (_server(NOW - dt.timedelta(minutes=10), timeout=dt.timedelta(minutes=5)), _pod()),
    ],
    ids=["not-running", "forced", "timed-out"],
)
def test_checker_allows_without_asking(rsps, server, pod):
    assert ProdDeletionChecker().is_deletion_allowed(server, pod)
    assert len(rsps.calls) == 0


@pytest.mark.parametrize("allowed", [True, False])
def test_checker_asks_sidecar_before_timeout(rsps, allowed):
    server = _server(dt.datetime.now(dt.timezone.utc), timeout=dt.timedelta(minutes=5))
    rsps.add(responses.POST, BASE + "shutdown")
    rsps.add(responses.GET, BASE + "allow_delete", json={"allowed": allowed})
    assert ProdDeletionChecker().is_deletion_allowed(server, _pod()) is allowed
    assert [c.request.method for c in rsps.calls] == ["POST", "GET"]


def test_checker_propagates_shutdown_failure(rsps):
    rsps.add(responses.POST, BASE + "shutdown", status=500)
    with pytest.raises(SidecarError):
        ProdDeletionChecker().is_deletion_allowed(_server(), _pod())


@pytest.mark.parametrize(
    "port, response, expected",
    [(9000, {"json": {"allowed": True}}, True), (8080, {"status": 500}, False)],
)
def test_fleet_check_asks_pod_sidecar(rsps, port, response, expected):
    client = InMemoryClient()
    client.create(_pod())
    rsps.add(responses.GET, f"http://{IP}:{port}/allow_delete", **response)
    server = _server(sidecar=SidecarSettings(port=port))
    assert ProdDeletionChecker().is_delete_allowed(server, client) is expected


def test_fleet_check_missing_pod_raises():
    with pytest.raises(NotFoundError):
        ProdDeletionChecker().is_delete_allowed(_server(), InMemoryClient())