"""Reconciler that applies webhook scaling decisions to game types."""

from __future__ import annotations

from dataclasses import dataclass, field

from .api import GameType, GameTypeAutoscaler, PolicyStrategy, SyncStrategy
from .autoscale import ProductionWebhook, Webhook
from .client import Client, NamespacedName, Request, Result
from .events import EventReason, EventRecorder, EventType


@dataclass
class GameTypeAutoscalerReconciler:
    """Asks the autoscaler's webhook for a replica count and applies it."""

    client: Client
    webhook: Webhook = field(default_factory=ProductionWebhook)
    recorder: EventRecorder = field(default_factory=EventRecorder)

    def reconcile(self, request: Request) -> Result:
        """Ask for a scaling decision once and requeue after the sync interval."""
        autoscaler = self.client.get(GameTypeAutoscaler, request.namespaced_name)

        key = NamespacedName(autoscaler.metadata.namespace, autoscaler.spec.game_type_name)
        try:
            gametype = self.client.get(GameType, key)
        except Exception:
            self._emit(
                autoscaler,
                EventType.WARNING,
                EventReason.AUTOSCALER_INVALID_SERVER,
                "Failed to find the gametype",
            )
            raise

        policy_type = autoscaler.spec.policy.type
        if policy_type != PolicyStrategy.WEBHOOK:
            self._emit(
                autoscaler,
                EventType.WARNING,
                EventReason.AUTOSCALER_INVALID_AUTOSCALE_POLICY,
                "invalid game autoscaler policy type",
            )
            raise ValueError(f"{policy_type} is not a valid policy type")

        try:
            result = self.webhook.send_scale_webhook_request(autoscaler, gametype)
        except Exception as exc:
            self._emit(
                autoscaler,
                EventType.WARNING,
                EventReason.AUTOSCALER_WEBHOOK,
                f"failed to send the webhook request: {exc}",
            )
            exc.add_note("failed to send scale webhook request")
            raise

        sync_type = autoscaler.spec.sync.type
        if sync_type != SyncStrategy.FIXED_INTERVAL:
            self._emit(
                autoscaler,
                EventType.WARNING,
                EventReason.AUTOSCALER_INVALID_SYNC_TYPE,
                f"{sync_type} is not a valid sync type",
            )
            raise ValueError(
                f"{sync_type} is not a valid sync type, currently only fixed interval is supported"
            )

        interval = autoscaler.spec.sync.interval
        if not result.scale:
            return Result(requeue_after=interval)

        gametype.spec.fleet_spec.scaling.replicas = result.desired_replicas
        try:
            self.client.update(gametype)
        except Exception as exc:
            self._emit(
                autoscaler,
                EventType.WARNING,
                EventReason.AUTOSCALER_SCALE,
                "failed to update the gametype",
            )
            exc.add_note("failed to update gametype with new replica count")
            raise
        self._emit(
            autoscaler,
            EventType.NORMAL,
            EventReason.AUTOSCALER_SCALE,
            f"Scaling game to {result.desired_replicas}",
        )
        return Result(requeue_after=interval)

    def _emit(self, obj, event_type: EventType, reason: EventReason, message: str) -> None:
        self.recorder.event(obj, event_type, reason, message)