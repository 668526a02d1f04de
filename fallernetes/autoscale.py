"""Asking an external webhook how many replicas a game type should run."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any

import requests

from .api import GameType, GameTypeAutoscaler, WebhookAutoscalerSpec


class WebhookError(Exception):
    """The autoscale webhook could not be reached or gave an unusable answer."""


@dataclass(frozen=True)
class AutoscaleRequest:
    game_name: str
    current_replicas: int

    def to_json(self) -> dict[str, Any]:
        return {"game_name": self.game_name, "current_replicas": self.current_replicas}


@dataclass(frozen=True)
class AutoscaleResponse:
    scale: bool = False
    desired_replicas: int = 0

    @classmethod
    def from_json(cls, data: Any) -> AutoscaleResponse:
        """Parse a decoded JSON body; missing fields take their defaults."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("response is not a JSON object")
        scale = data.get("scale", False)
        desired = data.get("desired_replicas", 0)
        if not isinstance(scale, bool):
            raise ValueError("scale must be a boolean")
        if isinstance(desired, bool) or not isinstance(desired, int):
            raise ValueError("desired_replicas must be an integer")
        return cls(scale=scale, desired_replicas=desired)


def webhook_url(spec: WebhookAutoscalerSpec) -> str:
    """Full URL of the webhook described by ``spec``."""
    if spec.url is not None:
        url = spec.url
    elif spec.service is not None:
        service = spec.service
        url = f"http://{service.name}.{service.namespace}.svc.cluster.local:{service.port}"
    else:
        raise WebhookError("missing url or service")
    if spec.path is None:
        raise WebhookError("missing path")
    return url + "/" + spec.path


class Webhook(abc.ABC):
    """Source of scaling decisions for an autoscaler."""

    @abc.abstractmethod
    def send_scale_webhook_request(
        self, autoscaler: GameTypeAutoscaler, gametype: GameType
    ) -> AutoscaleResponse:
        """Ask for a scaling decision for ``gametype``."""


@dataclass(frozen=True)
class ProductionWebhook(Webhook):
    """Posts the current state to the configured HTTP endpoint."""

    timeout: float = 10.0

    def send_scale_webhook_request(
        self, autoscaler: GameTypeAutoscaler, gametype: GameType
    ) -> AutoscaleResponse:
        url = webhook_url(autoscaler.spec.policy.webhook)
        request = AutoscaleRequest(
            game_name=autoscaler.spec.game_type_name,
            current_replicas=gametype.spec.fleet_spec.scaling.replicas,
        )
        try:
            response = requests.post(url, json=request.to_json(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise WebhookError(str(exc)) from exc
        body = response.text
        if response.status_code != 200:
            raise WebhookError(
                f"invalid request response: {response.status_code}. Raw response: {body}"
            )
        try:
            return AutoscaleResponse.from_json(response.json())
        except ValueError as exc:
            raise WebhookError(f"failed to decode response: {exc}\nRaw response: {body}\n") from exc