"""Reconciler that keeps one up-to-date fleet running for each game type."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

from .api import Fleet, GameType, are_fleets_pods_equal
from .client import (
    Client,
    NamespacedName,
    Request,
    Result,
    add_finalizer,
    contains_finalizer,
    remove_finalizer,
)
from .events import EventReason, EventRecorder, EventType
from .resources import get_fleet_object_for_type, get_fleets_for_type

_log = logging.getLogger(__name__)

TYPE_FINALIZER = "gametype.falloria.com/finalizer"

_MIN_TIME = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def _created(fleet: Fleet) -> dt.datetime:
    return fleet.metadata.creation_timestamp or _MIN_TIME


@dataclass
class GameTypeReconciler:
    """Creates a fleet for a game type and replaces it when the pod spec changes."""

    client: Client
    recorder: EventRecorder = field(default_factory=EventRecorder)

    def reconcile(self, request: Request) -> Result:
        """Move the game type named by ``request`` one step towards its desired state."""
        _log.info("Reconciling GameType %s", request.namespaced_name)
        try:
            gametype = self.client.get(GameType, request.namespaced_name)
        except Exception:
            _log.exception("Failed to get gametype resource")
            raise

        if not gametype.metadata.deleting and not contains_finalizer(gametype, TYPE_FINALIZER):
            _log.info("Adding finalizer to gametype %s", request.namespaced_name)
            add_finalizer(gametype, TYPE_FINALIZER)
            try:
                self.client.update(gametype)
            except Exception as exc:
                self._emit(
                    gametype,
                    EventType.WARNING,
                    EventReason.GAMETYPE_INITIALIZED,
                    f"failed to add finalizers: {exc}",
                )
                _log.error("Failed to add finalizer to gametype: %s", exc)
                raise
            self._emit(
                gametype,
                EventType.NORMAL,
                EventReason.GAMETYPE_INITIALIZED,
                "Added finalizers to game",
            )
            return Result(requeue=True)

        if gametype.metadata.deleting:
            _log.info("Handling deletion of gametype %s", request.namespaced_name)
            try:
                self._handle_deletion(gametype)
            except Exception as exc:
                self._emit(
                    gametype,
                    EventType.WARNING,
                    EventReason.GAMETYPE_INITIALIZED,
                    f"failed to remove finalizers: {exc}",
                )
                _log.error("Failed to handle gametype deletion: %s", exc)
                raise
            return Result(requeue=True)

        self._handle_gametype_status(gametype)
        self._update_replica_count(gametype)

        result = self._handle_updating(gametype)
        if result is not None:
            return result
        return Result(requeue=True)

    def _update_replica_count(self, gametype: GameType) -> None:
        """Record the replica count of the current fleet in the game type's status."""
        name = gametype.status.current_fleet_name
        if not name:
            return
        key = NamespacedName(gametype.metadata.namespace, name)
        try:
            fleet = self.client.get(Fleet, key)
        except Exception as exc:
            exc.add_note("failed to get fleet to update")
            raise
        gametype.status.current_fleet_replicas = fleet.spec.scaling.replicas
        self.client.update_status(gametype)

    def _handle_updating(self, gametype: GameType) -> Result | None:
        """Create, rescale or retire fleets; return a result when reconciling is done."""
        fleets = get_fleets_for_type(self.client, gametype)

        if not fleets:
            self._handle_creation(gametype)
            self._emit(
                gametype,
                EventType.NORMAL,
                EventReason.GAMETYPE_INITIALIZED,
                "Created initial fleet",
            )
            return Result(requeue=True)

        if len(fleets) == 1:
            fleet = fleets[0]
            gametype.status.current_fleet_name = fleet.metadata.name
            self.client.update_status(gametype)
            desired = gametype.spec.fleet_spec.scaling.replicas
            if not are_fleets_pods_equal(fleet.spec, gametype.spec.fleet_spec):
                self._emit(
                    gametype,
                    EventType.NORMAL,
                    EventReason.GAMETYPE_SPEC_UPDATED,
                    "Creating new fleet",
                )
                self._handle_creation(gametype)
                return Result()
            if desired != gametype.status.current_fleet_replicas:
                gametype.status.current_fleet_replicas = desired
                fleet.spec.scaling.replicas = desired
                self.client.update(fleet)
                self.client.update_status(gametype)
                self._emit(
                    gametype,
                    EventType.NORMAL,
                    EventReason.GAMETYPE_REPLICAS_UPDATED,
                    f"Scaling gametype to {fleet.spec.scaling.replicas}",
                )

        if len(fleets) > 1:
            oldest = None
            for fleet in fleets:
                if oldest is None or _created(fleet) < _created(oldest):
                    oldest = fleet
            if oldest is not None and not oldest.metadata.deleting:
                self._emit(
                    gametype,
                    EventType.NORMAL,
                    EventReason.GAMETYPE_SPEC_UPDATED,
                    "Deleting extra fleet",
                )
                self.client.delete(oldest)
        return None

    def _handle_deletion(self, gametype: GameType) -> None:
        """Delete every fleet of the game type, then drop its finalizer."""
        _log.info("Triggered deletion for gametype %s", gametype.metadata.name)
        if not contains_finalizer(gametype, TYPE_FINALIZER):
            return
        for fleet in get_fleets_for_type(self.client, gametype):
            self._emit(
                gametype,
                EventType.NORMAL,
                EventReason.GAMETYPE_DELETING,
                f"Deleting fleet {fleet.metadata.name}",
            )
            try:
                self.client.delete(fleet)
            except Exception:
                self._emit(
                    gametype,
                    EventType.WARNING,
                    EventReason.GAMETYPE_SERVERS_DELETED,
                    f"Failed to delete fleet {fleet.metadata.name}",
                )
                raise
        if get_fleets_for_type(self.client, gametype):
            return
        remove_finalizer(gametype, TYPE_FINALIZER)
        self.client.update(gametype)
        self._emit(
            gametype,
            EventType.NORMAL,
            EventReason.GAMETYPE_SERVERS_DELETED,
            "Removed finalizer",
        )

    def _handle_creation(self, gametype: GameType) -> None:
        """Create a new fleet from the game type's fleet spec."""
        fleet = get_fleet_object_for_type(gametype)
        try:
            self.client.create(fleet)
        except Exception as exc:
            self._emit(
                gametype,
                EventType.WARNING,
                EventReason.GAMETYPE_REPLICAS_UPDATED,
                f"Failed to create new fleet {exc}",
            )
            _log.error("failed to create a new fleet for gametype: %s", exc)
            raise

    def _handle_gametype_status(self, gametype: GameType) -> None:
        """Point the game type's status at its newest fleet."""
        youngest = None
        for fleet in get_fleets_for_type(self.client, gametype):
            if youngest is None or _created(fleet) > _created(youngest):
                youngest = fleet
        if youngest is not None:
            gametype.status.current_fleet_name = youngest.metadata.name
            self.client.update_status(youngest)

    def _emit(self, obj, event_type: EventType, reason: EventReason, message: str) -> None:
        self.recorder.event(obj, event_type, reason, message)