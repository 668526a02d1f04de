"""Event reasons and recorders used by the reconcilers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

_log = logging.getLogger(__name__)


class EventReason(StrEnum):
    SERVER_INITIALIZED = "ServerInitialized"
    SERVER_DELETION_ALLOWED = "ServerDeletionAllowed"
    SERVER_DELETION_NOT_ALLOWED = "ServerDeletionNotAllowed"
    SERVER_POD_DELETED = "ServerPodDeleted"
    SERVER_POD_CREATION_FAILED = "ServerPodCreationFailed"
    SERVER_UPDATE_FAILED = "ServerUpdateFailed"

    FLEET_INITIALIZED = "FleetInitialized"
    FLEET_UPDATE_FAILED = "FleetUpdateFailed"
    FLEET_SERVERS_REMOVED = "FleetServersRemoved"
    FLEET_SCALE_SERVERS = "FleetScaleServers"

    GAMETYPE_INITIALIZED = "GametypeInitialized"
    GAMETYPE_DELETING = "GameTypeDeleting"
    GAMETYPE_SERVERS_DELETED = "GametypeServersDeleted"
    GAMETYPE_SPEC_UPDATED = "GametypeSpecUpdated"
    GAMETYPE_REPLICAS_UPDATED = "GametypeReplicasUpdated"

    AUTOSCALER_INVALID_SERVER = "GameAutoscalerInvalidServer"
    AUTOSCALER_INVALID_AUTOSCALE_POLICY = "GameautoscalerInvalidAutoscalePolicy"
    AUTOSCALER_INVALID_SYNC_TYPE = "GameautoscalerInvalidSyncType"
    AUTOSCALER_WEBHOOK = "GameautoscalerWebhook"
    AUTOSCALER_SCALE = "GameautoscalerScale"


class EventType(StrEnum):
    NORMAL = "Normal"
    WARNING = "Warning"


@dataclass(frozen=True)
class Event:
    """One recorded event about an object."""

    obj: Any
    event_type: str
    reason: str
    message: str


class EventRecorder:
    """Emits events about objects to the log."""

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        meta = getattr(obj, "metadata", None)
        name = f"{meta.namespace}/{meta.name}" if meta is not None else repr(obj)
        level = logging.WARNING if event_type == EventType.WARNING else logging.INFO
        _log.log(
            level,
            "%s %s %s: %s",
            type(obj).__name__,
            name,
            str(reason),
            message,
        )


class RecordingRecorder(EventRecorder):
    """Keeps every event it is given, in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[Event] = []

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        with self._lock:
            self.events.append(Event(obj, str(event_type), str(reason), message))

    def messages(self) -> list[str]:
        with self._lock:
            return [e.message for e in self.events]