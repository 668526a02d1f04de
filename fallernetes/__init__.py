"""Reconcilers for game servers, fleets, game types and webhook-driven autoscaling."""

__version__ = "0.1.0"

__all__ = [
    "api",
    "events",
    "client",
    "resources",
    "sidecar",
    "autoscale",
    "fleet_deletion",
    "fleet_controller",
    "server_controller",
    "autoscaler_controller",
    "gametype_controller",
]