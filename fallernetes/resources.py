"""Builders for the objects the reconcilers create, and lookups between them."""

from __future__ import annotations

import copy
import logging
import os
from typing import Iterator

from .api import (
    PULL_IF_NOT_PRESENT,
    Container,
    ContainerPort,
    EnvVar,
    Fleet,
    GameType,
    ObjectMeta,
    Pod,
    PodSpec,
    Server,
    new_controller_ref,
)
from .client import Client

_log = logging.getLogger(__name__)

SIDECAR_CONTAINER_NAME = "fallernetes-sidecar"
SIDECAR_CONTAINER_PORT = 8080
IMAGE_PULL_SECRET_ENV = "IMAGE_PULL_SECRET_NAME"


def _injected_env(container: Container, server: Server) -> Iterator[EnvVar]:
    labels = server.metadata.labels
    yield EnvVar("CONTAINER_IMAGE", container.image)
    yield EnvVar("SERVER_NAME", server.metadata.name)
    if "fleet" in labels:
        yield EnvVar("FLEET_NAME", labels["fleet"])
    if "gametype" in labels:
        yield EnvVar("GAME_NAME", labels["gametype"])
    yield EnvVar("POD_IP", field_path="status.podIP")
    yield EnvVar("NODE_NAME", field_path="spec.nodeName", field_api_version="v1")
    game_info = server.spec.game_info
    if game_info is not None and game_info.capacity is not None:
        yield EnvVar("SERVER_CAPACITY", str(game_info.capacity))


def _pod_spec(server: Server) -> PodSpec:
    spec = copy.deepcopy(server.spec.pod)
    sidecar = server.spec.sidecar
    spec.containers.append(
        Container(
            name=SIDECAR_CONTAINER_NAME,
            image=sidecar.image,
            ports=[ContainerPort("http", SIDECAR_CONTAINER_PORT)],
            env=[
                EnvVar("PORT", str(sidecar.port)),
                EnvVar("DEBUG", "true" if sidecar.log_debug else "false"),
            ],
            image_pull_policy=PULL_IF_NOT_PRESENT,
        )
    )
    for container in spec.containers:
        container.env.extend(_injected_env(container, server))
    spec.image_pull_secrets.append(os.environ.get(IMAGE_PULL_SECRET_ENV, ""))
    return spec


def get_new_pod(server: Server, namespace: str) -> Pod:
    """Build the pod that runs ``server``, with the sidecar added."""
    labels = dict(server.metadata.labels)
    labels["server"] = server.metadata.name
    return Pod(
        metadata=ObjectMeta(
            name=server.metadata.name + "-pod",
            namespace=namespace,
            labels=labels,
            owner_references=[new_controller_ref(server, Server.KIND)],
        ),
        spec=_pod_spec(server),
    )


def create_server_for_fleet(fleet: Fleet, namespace: str) -> Server:
    """Build a new server belonging to ``fleet``."""
    labels = dict(fleet.metadata.labels)
    labels["fleet"] = fleet.metadata.name
    return Server(
        metadata=ObjectMeta(
            generate_name=fleet.metadata.name + "-",
            namespace=namespace,
            labels=labels,
            owner_references=[new_controller_ref(fleet, Fleet.KIND)],
        ),
        spec=copy.deepcopy(fleet.spec.server_spec),
    )


def get_fleets_for_type(client: Client, gametype: GameType) -> list[Fleet]:
    """Return every fleet labelled as belonging to ``gametype``."""
    try:
        return client.list(Fleet, None, {"gametype": gametype.metadata.name})
    except Exception:
        _log.exception("Failed to list fleets for game type %s", gametype.metadata.name)
        raise


def get_fleet_object_for_type(gametype: GameType) -> Fleet:
    """Build a new fleet for ``gametype`` from its fleet spec."""
    labels = dict(gametype.metadata.labels)
    labels["gametype"] = gametype.metadata.name
    return Fleet(
        metadata=ObjectMeta(
            generate_name=gametype.metadata.name + "-",
            namespace=gametype.metadata.namespace,
            labels=labels,
            owner_references=[new_controller_ref(gametype, GameType.KIND)],
        ),
        spec=copy.deepcopy(gametype.spec.fleet_spec),
    )