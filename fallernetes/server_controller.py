"""Reconciler that runs each game server in a pod and guards its deletion."""

from __future__ import annotations

from dataclasses import dataclass, field

from .api import CONDITION_FALSE, CONDITION_TRUE, Condition, Pod, Server
from .client import (
    Client,
    NamespacedName,
    NotFoundError,
    Request,
    Result,
    add_finalizer,
    contains_finalizer,
    remove_finalizer,
    set_status_condition,
)
from .events import EventReason, EventRecorder, EventType
from .resources import get_new_pod
from .sidecar import DeletionChecker, ProdDeletionChecker

SERVER_FINALIZER = "server.falloria.com/finalizer"
MAX_CONCURRENT_RECONCILES = 10
DELETION_NOT_ALLOWED = "server deletion not allowed"


class _DeletionNotAllowedError(RuntimeError):
    """The server's sidecar did not allow the server to be deleted."""

    def __init__(self) -> None:
        super().__init__(DELETION_NOT_ALLOWED)


def _pod_key(server: Server) -> NamespacedName:
    return NamespacedName(server.metadata.namespace, server.metadata.name + "-pod")


@dataclass
class ServerReconciler:
    """Keeps a pod running for every server and removes it once deletion is allowed."""

    client: Client
    recorder: EventRecorder = field(default_factory=EventRecorder)
    deletion_checker: DeletionChecker = field(default_factory=ProdDeletionChecker)
    error_on_not_allowed: bool = False

    def reconcile(self, request: Request) -> Result:
        """Move the server named by ``request`` one step towards its desired state."""
        try:
            server = self.client.get(Server, request.namespaced_name)
        except NotFoundError:
            return Result()
        except Exception as exc:
            exc.add_note("failed to get Server")
            raise

        if not server.metadata.deleting and not contains_finalizer(server, SERVER_FINALIZER):
            add_finalizer(server, SERVER_FINALIZER)
            try:
                self.client.update(server)
            except Exception as exc:
                self._emit(
                    server,
                    EventType.WARNING,
                    EventReason.SERVER_UPDATE_FAILED,
                    f"failed to update server: {exc}",
                )
                exc.add_note("failed to update server for finalizer")
                raise
            self._emit(server, EventType.NORMAL, EventReason.SERVER_INITIALIZED, "Finalizer added")
            return Result()

        if server.metadata.deleting:
            try:
                self._handle_deletion(server)
            except _DeletionNotAllowedError:
                if not self.error_on_not_allowed:
                    return Result(requeue=True)
                raise
            except Exception as exc:
                exc.add_note("failed to handle server deletion")
                raise
            remove_finalizer(server, SERVER_FINALIZER)
            try:
                self.client.update(server)
            except Exception as exc:
                self._emit(
                    server,
                    EventType.WARNING,
                    EventReason.SERVER_DELETION_ALLOWED,
                    "Failed to update server object",
                )
                exc.add_note("failed to remove finalizer")
                raise
            self._emit(
                server, EventType.NORMAL, EventReason.SERVER_DELETION_ALLOWED, "Finalizer removed"
            )
            return Result(requeue=True)

        try:
            pod_exists = self._ensure_pod_exists(server)
        except Exception as exc:
            self.client.update(server)
            exc.add_note("failed to ensure Pod exists for Server")
            raise
        if not pod_exists:
            return Result(requeue=True)

        if self._ensure_pod_finalizer(server):
            return Result()

        try:
            self.client.update_status(server)
        except Exception as exc:
            exc.add_note("failed to update Server resource")
            raise
        return Result()

    def _ensure_pod_exists(self, server: Server) -> bool:
        """Return True if the pod exists; otherwise create it and return False."""
        try:
            self.client.get(Pod, _pod_key(server))
            return True
        except NotFoundError:
            pass
        except Exception as exc:
            exc.add_note("failed to get Pod resource")
            raise

        new_pod = get_new_pod(server, server.metadata.namespace)
        self._emit(
            server,
            EventType.NORMAL,
            EventReason.SERVER_INITIALIZED,
            f"Setting up sidecar with image {server.spec.sidecar.image}",
        )
        try:
            self.client.create(new_pod)
        except Exception as exc:
            set_status_condition(
                server.status.conditions,
                Condition(
                    type="PodFailed",
                    status=CONDITION_FALSE,
                    reason="PodCreationFailed",
                    message="Failed to create the Pod",
                ),
            )
            self._emit(
                server,
                EventType.WARNING,
                EventReason.SERVER_POD_CREATION_FAILED,
                f"Pod creation errored: {exc}",
            )
            raise
        set_status_condition(
            server.status.conditions,
            Condition(
                type="PodCreated",
                status=CONDITION_TRUE,
                reason="PodCreatedSuccessfully",
                message="Pod has been successfully created",
            ),
        )
        self._emit(
            server, EventType.NORMAL, EventReason.SERVER_INITIALIZED, "Pod created successfully"
        )
        return False

    def _handle_deletion(self, server: Server) -> None:
        key = _pod_key(server)
        pod = self.client.get(Pod, key)
        try:
            allowed = self.deletion_checker.is_deletion_allowed(server, pod)
        except Exception as exc:
            for obj in (pod, server):
                self._emit(
                    obj,
                    EventType.WARNING,
                    EventReason.SERVER_DELETION_NOT_ALLOWED,
                    "Deletion request did not succeed",
                )
            exc.add_note("failed to check for deletion for server")
            raise
        if not allowed:
            for obj in (pod, server):
                self._emit(
                    obj,
                    EventType.NORMAL,
                    EventReason.SERVER_DELETION_ALLOWED,
                    "Server did not respond with allowed",
                )
            raise _DeletionNotAllowedError()

        if contains_finalizer(pod, SERVER_FINALIZER):
            remove_finalizer(pod, SERVER_FINALIZER)
            for obj in (server, pod):
                self._emit(
                    obj,
                    EventType.NORMAL,
                    EventReason.SERVER_DELETION_ALLOWED,
                    "Pod finalizer removed",
                )
            self.client.update(pod)
            pod = self.client.get(Pod, key)

        self.client.delete(pod)

        set_status_condition(
            server.status.conditions,
            Condition(
                type="Finalizing",
                status=CONDITION_TRUE,
                reason="PodDeleted",
                message="Pod successfully deleted during finalization",
            ),
        )
        self._emit(
            server,
            EventType.NORMAL,
            EventReason.SERVER_POD_DELETED,
            "Pod successfully deleted during finalization",
        )

    def _ensure_pod_finalizer(self, server: Server) -> bool:
        """Add the finalizer to the server's pod; return whether it had to be added."""
        pod = self.client.get(Pod, _pod_key(server))
        if contains_finalizer(pod, SERVER_FINALIZER):
            return False
        add_finalizer(pod, SERVER_FINALIZER)
        for obj in (server, pod):
            self._emit(obj, EventType.NORMAL, EventReason.SERVER_INITIALIZED, "Pod finalizer added")
        try:
            self.client.update(pod)
        except Exception as exc:
            exc.add_note("failed to add finalizer to pod")
            raise
        return True

    def _emit(self, obj, event_type: EventType, reason: EventReason, message: str) -> None:
        self.recorder.event(obj, event_type, reason, message)