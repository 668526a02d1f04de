"""Choosing which server a fleet removes when it scales down."""

from __future__ import annotations

import datetime as dt
from typing import Callable, Iterable, Protocol, runtime_checkable

from .api import Fleet, Priority, Server
from .client import Client

_EPOCH_MIN = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


@runtime_checkable
class FleetDeletionChecker(Protocol):
    """Tells whether a server of a fleet may be deleted right now."""

    def is_delete_allowed(self, server: Server, client: Client | None) -> bool:
        """Return whether ``server`` may be deleted."""


def _created(server: Server) -> dt.datetime:
    return server.metadata.creation_timestamp or _EPOCH_MIN


def _pick(servers, delete_first, client, checker, choose: Callable) -> Server:
    candidates = list(servers)
    if not candidates:
        raise LookupError("no servers found")
    if delete_first:
        allowed = [s for s in candidates if checker.is_delete_allowed(s, client)]
        if allowed:
            return choose(allowed, key=_created)
    return choose(candidates, key=_created)


def get_oldest_server(servers, delete_first, client, checker) -> Server:
    """Return the oldest server, preferring deletable ones when ``delete_first`` is set."""
    return _pick(servers, delete_first, client, checker, min)


def get_newest_server(servers, delete_first, client, checker) -> Server:
    """Return the newest server, preferring deletable ones when ``delete_first`` is set."""
    return _pick(servers, delete_first, client, checker, max)


_STRATEGIES = {
    Priority.OLDEST_FIRST: get_oldest_server,
    Priority.NEWEST_FIRST: get_newest_server,
}


def find_delete_server(
    fleet: Fleet,
    servers: Iterable[Server],
    client: Client | None,
    checker: FleetDeletionChecker,
) -> Server:
    """Return the server ``fleet`` should delete next, by its age priority."""
    scaling = fleet.spec.scaling
    chooser = _STRATEGIES.get(scaling.age_priority)
    if chooser is None:
        raise ValueError(f"invalid scaling strategy: {scaling.age_priority}")
    return chooser(servers, scaling.prioritize_allowed, client, checker)