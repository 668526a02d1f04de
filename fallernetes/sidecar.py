"""Talking to the sidecar that runs next to every game server."""

from __future__ import annotations

import abc
import datetime as dt

import requests

from .api import POD_RUNNING, Pod, Server
from .client import Client, NamespacedName

REQUEST_TIMEOUT = 10.0


class SidecarError(Exception):
    """A request to the sidecar failed or returned something unusable."""


def pod_base_address(pod: Pod, port: int | str) -> str:
    """Base URL of the sidecar API on ``pod``."""
    return f"http://{pod.status.pod_ip}:{port}/"


def is_delete_allowed(pod: Pod, port: int | str) -> bool:
    """Ask the sidecar whether the server may be shut down and deleted."""
    try:
        response = requests.get(pod_base_address(pod, port) + "allow_delete", timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise SidecarError(str(exc)) from exc
    if response.status_code != 200:
        raise SidecarError(
            f"GET request returned: {response.status_code} {response.reason or ''}".rstrip()
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise SidecarError(f"invalid allow_delete response: {exc}") from exc
    if data is None:
        return False
    allowed = data.get("allowed", False) if isinstance(data, dict) else None
    if not isinstance(allowed, bool):
        raise SidecarError(f"invalid allow_delete response: {response.text}")
    return allowed


def request_shutdown(pod: Pod, port: int | str) -> None:
    """Tell the sidecar that the operator wants the server shut down."""
    try:
        response = requests.post(
            pod_base_address(pod, port) + "shutdown",
            json={"shutdown": True},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise SidecarError(str(exc)) from exc
    if response.status_code != 200:
        raise SidecarError(
            f"POST request returned: {response.status_code} {response.reason or ''}".rstrip()
        )


class DeletionChecker(abc.ABC):
    """Decides whether a server's pod may be deleted."""

    @abc.abstractmethod
    def is_deletion_allowed(self, server: Server, pod: Pod) -> bool:
        """Return whether ``server`` running in ``pod`` may be deleted."""


class ProdDeletionChecker(DeletionChecker):
    """Asks the sidecar, unless the server may be removed without asking."""

    def is_deletion_allowed(self, server: Server, pod: Pod) -> bool:
        if pod.status.phase != POD_RUNNING:
            return True
        if server.spec.allow_force_delete:
            return True
        deleted_at = server.metadata.deletion_timestamp
        if server.spec.timeout is not None and deleted_at is not None:
            if deleted_at + server.spec.timeout < dt.datetime.now(dt.timezone.utc):
                return True
        port = server.spec.sidecar.port
        request_shutdown(pod, port)
        return is_delete_allowed(pod, port)

    def is_delete_allowed(self, server: Server, client: Client) -> bool:
        """Whether the sidecar of ``server`` allows deletion; False if it cannot say."""
        key = NamespacedName(server.metadata.namespace, server.metadata.name + "-pod")
        pod = client.get(Pod, key)
        try:
            return is_delete_allowed(pod, server.spec.sidecar.port)
        except SidecarError:
            return False