"""Reconciler keeping a fleet's servers at the desired replica count."""

from __future__ import annotations

from dataclasses import dataclass, field

from .api import Fleet, Server
from .client import (
    Client,
    Request,
    Result,
    add_finalizer,
    contains_finalizer,
    remove_finalizer,
)
from .events import EventReason, EventRecorder, EventType
from .fleet_deletion import FleetDeletionChecker, find_delete_server
from .resources import create_server_for_fleet
from .sidecar import ProdDeletionChecker

FLEET_FINALIZER = "fleets.falloria.com/finalizer"
MAX_CONCURRENT_RECONCILES = 10


@dataclass
class FleetReconciler:
    """Creates and deletes servers so a fleet has the replicas it asks for."""

    client: Client
    recorder: EventRecorder = field(default_factory=EventRecorder)
    deletion_checker: FleetDeletionChecker = field(default_factory=ProdDeletionChecker)

    def reconcile(self, request: Request) -> Result:
        """Move the fleet named by ``request`` one step towards its desired state."""
        fleet = self.client.get(Fleet, request.namespaced_name)

        if fleet.metadata.deleting:
            try:
                self._handle_deletion(fleet)
            except Exception as exc:
                exc.add_note("failed to handle fleet deletion")
                raise
            return Result(requeue=True)

        if not contains_finalizer(fleet, FLEET_FINALIZER):
            add_finalizer(fleet, FLEET_FINALIZER)
            try:
                self.client.update(fleet)
            except Exception as exc:
                self._emit(
                    fleet,
                    EventType.WARNING,
                    EventReason.FLEET_UPDATE_FAILED,
                    f"Fleet finalizer update failed: {exc}",
                )
                exc.add_note("failed to add finalizer to fleet")
                raise
            self._emit(
                fleet, EventType.NORMAL, EventReason.FLEET_INITIALIZED, "Fleet finalizers added"
            )
            return Result(requeue=True)

        fleet.status.current_replicas = len(self._servers(fleet))
        if fleet.spec.scaling.replicas != fleet.status.current_replicas:
            self._scale_server_count(fleet, request.namespace)
            fleet.status.current_replicas = len(self._servers(fleet))

        try:
            self.client.update_status(fleet)
        except Exception as exc:
            exc.add_note("failed to update Fleet status resource")
            raise
        return Result(requeue=True)

    def _scale_server_count(self, fleet: Fleet, namespace: str) -> None:
        desired = fleet.spec.scaling.replicas
        current = fleet.status.current_replicas
        if current < desired:
            for _ in range(desired - current):
                server = create_server_for_fleet(fleet, namespace)
                try:
                    self.client.create(server)
                except Exception as exc:
                    self._emit(
                        fleet,
                        EventType.WARNING,
                        EventReason.FLEET_SCALE_SERVERS,
                        f"Failed to create a server: {exc}",
                    )
                    raise
            self._emit(
                fleet,
                EventType.NORMAL,
                EventReason.FLEET_SCALE_SERVERS,
                f"Scaled servers up to {desired}",
            )
        if current > desired:
            servers = self._servers(fleet)
            server = find_delete_server(fleet, servers, self.client, self.deletion_checker)
            try:
                self.client.delete(server)
            except Exception as exc:
                self._emit(
                    fleet,
                    EventType.WARNING,
                    EventReason.FLEET_SCALE_SERVERS,
                    f"Failed to delete a server: {exc}",
                )
                raise
            self._emit(
                fleet,
                EventType.NORMAL,
                EventReason.FLEET_SCALE_SERVERS,
                f"Scaled servers down to {desired}",
            )

    def _servers(self, fleet: Fleet) -> list[Server]:
        return self.client.list(
            Server, fleet.metadata.namespace, {"fleet": fleet.metadata.name}
        )

    def _handle_deletion(self, fleet: Fleet) -> None:
        for server in self._servers(fleet):
            self.client.delete(server)
        if self._servers(fleet):
            return
        remove_finalizer(fleet, FLEET_FINALIZER)
        try:
            self.client.update(fleet)
        except Exception as exc:
            self._emit(
                fleet,
                EventType.WARNING,
                EventReason.FLEET_UPDATE_FAILED,
                f"Failed to remove finalizer: {exc}",
            )
            raise
        self._emit(
            fleet, EventType.NORMAL, EventReason.FLEET_SERVERS_REMOVED, "Fleet finalizers removed"
        )

    def _emit(self, obj, event_type: EventType, reason: EventReason, message: str) -> None:
        self.recorder.event(obj, event_type, reason, message)