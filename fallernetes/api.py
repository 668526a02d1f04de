"""Resource types of the gameserver.falloria.com/v1alpha1 API group."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar, NamedTuple

GROUP = "gameserver.falloria.com"
VERSION = "v1alpha1"

DEFAULT_SIDECAR_PORT = 8080
DEFAULT_SIDECAR_IMAGE = "unfamousthomas/fallernetes-sidecar:main"

PULL_IF_NOT_PRESENT = "IfNotPresent"
POD_RUNNING = "Running"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


class GroupVersionKind(NamedTuple):
    """A kind qualified by its API group and version."""

    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with one of its versions."""

    group: str
    version: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def with_kind(self, kind: str) -> GroupVersionKind:
        return GroupVersionKind(self.group, self.version, kind)


GROUP_VERSION = GroupVersion(GROUP, VERSION)
CORE_GROUP_VERSION = GroupVersion("", "v1")


@dataclass
class OwnerReference:
    """Points at the object that owns another object."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False
    block_owner_deletion: bool = False


@dataclass
class ObjectMeta:
    """Metadata shared by every stored object."""

    name: str = ""
    namespace: str = ""
    generate_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    uid: str = ""
    resource_version: int = 0
    creation_timestamp: dt.datetime | None = None
    deletion_timestamp: dt.datetime | None = None

    @property
    def deleting(self) -> bool:
        """True once deletion of the object has been requested."""
        return self.deletion_timestamp is not None


@dataclass
class Condition:
    """One observed condition of an object."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: dt.datetime | None = None


@dataclass
class EnvVar:
    """An environment variable, given literally or taken from a pod field."""

    name: str
    value: str = ""
    field_path: str | None = None
    field_api_version: str | None = None


@dataclass
class ContainerPort:
    name: str
    container_port: int


@dataclass
class Container:
    name: str
    image: str = ""
    ports: list[ContainerPort] = field(default_factory=list)
    env: list[EnvVar] = field(default_factory=list)
    image_pull_policy: str = ""


@dataclass
class PodSpec:
    containers: list[Container] = field(default_factory=list)
    image_pull_secrets: list[str] = field(default_factory=list)


@dataclass
class PodStatus:
    phase: str = ""
    pod_ip: str = ""


@dataclass
class Pod:
    KIND: ClassVar[str] = "Pod"
    API_VERSION: ClassVar[str] = CORE_GROUP_VERSION.api_version

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodSpec = field(default_factory=PodSpec)
    status: PodStatus = field(default_factory=PodStatus)


@dataclass
class GameInfo:
    capacity: int | None = None


@dataclass
class SidecarSettings:
    port: int = DEFAULT_SIDECAR_PORT
    image: str = DEFAULT_SIDECAR_IMAGE
    log_debug: bool = False


@dataclass
class ServerSpec:
    """Desired state of a game server."""

    pod: PodSpec = field(default_factory=PodSpec)
    timeout: dt.timedelta | None = None
    allow_force_delete: bool = False
    sidecar: SidecarSettings = field(default_factory=SidecarSettings)
    game_info: GameInfo | None = None


@dataclass
class ServerStatus:
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class Server:
    KIND: ClassVar[str] = "Server"
    API_VERSION: ClassVar[str] = GROUP_VERSION.api_version

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ServerSpec = field(default_factory=ServerSpec)
    status: ServerStatus = field(default_factory=ServerStatus)


class Priority(StrEnum):
    """Which servers a fleet removes first when it scales down."""

    OLDEST_FIRST = "oldest_first"
    NEWEST_FIRST = "newest_first"


@dataclass
class FleetScaling:
    replicas: int = 1
    prioritize_allowed: bool = True
    age_priority: Priority | str = Priority.OLDEST_FIRST


@dataclass
class FleetSpec:
    server_spec: ServerSpec = field(default_factory=ServerSpec)
    scaling: FleetScaling = field(default_factory=FleetScaling)


@dataclass
class FleetStatus:
    conditions: list[Condition] = field(default_factory=list)
    current_replicas: int = 0


@dataclass
class Fleet:
    KIND: ClassVar[str] = "Fleet"
    API_VERSION: ClassVar[str] = GROUP_VERSION.api_version

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: FleetSpec = field(default_factory=FleetSpec)
    status: FleetStatus = field(default_factory=FleetStatus)


@dataclass
class GameTypeSpec:
    fleet_spec: FleetSpec = field(default_factory=FleetSpec)


@dataclass
class GameTypeStatus:
    conditions: list[Condition] = field(default_factory=list)
    current_fleet_name: str = ""
    current_fleet_replicas: int = 0


@dataclass
class GameType:
    KIND: ClassVar[str] = "GameType"
    API_VERSION: ClassVar[str] = GROUP_VERSION.api_version

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: GameTypeSpec = field(default_factory=GameTypeSpec)
    status: GameTypeStatus = field(default_factory=GameTypeStatus)


class PolicyStrategy(StrEnum):
    """How an autoscaler decides on a replica count."""

    WEBHOOK = "webhook"


class SyncStrategy(StrEnum):
    """When an autoscaler asks for a new replica count."""

    FIXED_INTERVAL = "fixedinterval"


@dataclass
class Service:
    name: str
    namespace: str
    port: int


@dataclass
class WebhookAutoscalerSpec:
    url: str | None = None
    path: str | None = None
    service: Service | None = None


@dataclass
class AutoscalePolicy:
    type: PolicyStrategy | str = PolicyStrategy.WEBHOOK
    webhook: WebhookAutoscalerSpec = field(default_factory=WebhookAutoscalerSpec)


@dataclass
class Sync:
    type: SyncStrategy | str = SyncStrategy.FIXED_INTERVAL
    interval: dt.timedelta | None = None


@dataclass
class GameTypeAutoscalerSpec:
    game_type_name: str = ""
    policy: AutoscalePolicy = field(default_factory=AutoscalePolicy)
    sync: Sync = field(default_factory=Sync)


@dataclass
class GameTypeAutoscaler:
    KIND: ClassVar[str] = "GameTypeAutoscaler"
    API_VERSION: ClassVar[str] = GROUP_VERSION.api_version

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: GameTypeAutoscalerSpec = field(default_factory=GameTypeAutoscalerSpec)


def are_fleets_pods_equal(fleet1: FleetSpec, fleet2: FleetSpec) -> bool:
    """Whether two fleet specs describe the same pod."""
    return fleet1.server_spec.pod == fleet2.server_spec.pod


def new_controller_ref(owner, kind: str) -> OwnerReference:
    """Build a controlling owner reference pointing at ``owner``."""
    gvk = GROUP_VERSION.with_kind(kind)
    return OwnerReference(
        api_version=gvk.api_version,
        kind=gvk.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )