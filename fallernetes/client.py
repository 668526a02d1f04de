"""Object store interface used by the reconcilers, and an in-memory store."""

from __future__ import annotations

import abc
import copy
import datetime as dt
import random
import threading
import uuid
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, NamedTuple

from .api import Condition

_NAME_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_NAME_SUFFIX_LENGTH = 5


class NamespacedName(NamedTuple):
    """Identifies an object by namespace and name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Request:
    """A request to reconcile one object."""

    namespaced_name: NamespacedName

    @property
    def name(self) -> str:
        return self.namespaced_name.name

    @property
    def namespace(self) -> str:
        return self.namespaced_name.namespace


@dataclass(frozen=True)
class Result:
    """What a reconciler asks of the loop that called it."""

    requeue: bool = False
    requeue_after: dt.timedelta | None = None


class NotFoundError(LookupError):
    """The requested object does not exist."""

    def __init__(self, kind: str, key: NamespacedName) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


def _kind_name(kind: type) -> str:
    return getattr(kind, "KIND", None) or kind.__name__


class Client(abc.ABC):
    """Reads and writes stored objects."""

    @abc.abstractmethod
    def get(self, kind: type, key: NamespacedName) -> Any:
        """Return the stored object of ``kind`` named by ``key``."""

    @abc.abstractmethod
    def create(self, obj: Any) -> None:
        """Store a new object, filling in its generated metadata."""

    @abc.abstractmethod
    def update(self, obj: Any) -> None:
        """Replace the metadata and spec of a stored object."""

    @abc.abstractmethod
    def update_status(self, obj: Any) -> None:
        """Replace the status of a stored object."""

    @abc.abstractmethod
    def delete(self, obj: Any) -> None:
        """Delete an object, or mark it as deleting while it has finalizers."""

    @abc.abstractmethod
    def list(
        self,
        kind: type,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Any]:
        """Return the objects of ``kind`` matching namespace and labels."""


class InMemoryClient(Client):
    """A thread-safe object store kept in memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str], Any] = {}
        self._version = 0
        self._last_time: dt.datetime | None = None
        self._rng = random.Random()

    def _now(self) -> dt.datetime:
        now = dt.datetime.now(dt.timezone.utc)
        if self._last_time is not None and now <= self._last_time:
            now = self._last_time + dt.timedelta(microseconds=1)
        self._last_time = now
        return now

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    @staticmethod
    def _key_of(obj: Any) -> tuple[str, str, str]:
        meta = obj.metadata
        return _kind_name(type(obj)), meta.namespace, meta.name

    def _stored(self, obj: Any) -> Any:
        key = self._key_of(obj)
        try:
            return self._objects[key]
        except KeyError:
            raise NotFoundError(key[0], NamespacedName(key[1], key[2])) from None

    def _generate_name(self, kind: str, namespace: str, prefix: str) -> str:
        while True:
            suffix = "".join(
                self._rng.choice(_NAME_SUFFIX_ALPHABET)
                for _ in range(_NAME_SUFFIX_LENGTH)
            )
            name = prefix + suffix
            if (kind, namespace, name) not in self._objects:
                return name

    def get(self, kind: type, key: NamespacedName) -> Any:
        name = _kind_name(kind)
        with self._lock:
            try:
                stored = self._objects[(name, key.namespace, key.name)]
            except KeyError:
                raise NotFoundError(name, NamespacedName(*key)) from None
            return copy.deepcopy(stored)

    def create(self, obj: Any) -> None:
        kind = _kind_name(type(obj))
        with self._lock:
            meta = obj.metadata
            if not meta.name:
                if not meta.generate_name:
                    raise ValueError(f"{kind} needs a name or a generate_name")
                meta.name = self._generate_name(kind, meta.namespace, meta.generate_name)
            key = (kind, meta.namespace, meta.name)
            if key in self._objects:
                raise ValueError(f"{kind} {meta.namespace}/{meta.name} already exists")
            meta.uid = str(uuid.uuid4())
            meta.creation_timestamp = self._now()
            meta.deletion_timestamp = None
            meta.resource_version = self._next_version()
            self._objects[key] = copy.deepcopy(obj)

    def update(self, obj: Any) -> None:
        with self._lock:
            stored = self._stored(obj)
            new = copy.deepcopy(obj)
            new.metadata.uid = stored.metadata.uid
            new.metadata.creation_timestamp = stored.metadata.creation_timestamp
            new.metadata.deletion_timestamp = stored.metadata.deletion_timestamp
            if hasattr(stored, "status"):
                new.status = stored.status
            new.metadata.resource_version = self._next_version()
            obj.metadata.uid = new.metadata.uid
            obj.metadata.creation_timestamp = new.metadata.creation_timestamp
            obj.metadata.deletion_timestamp = new.metadata.deletion_timestamp
            obj.metadata.resource_version = new.metadata.resource_version
            key = self._key_of(new)
            if new.metadata.deleting and not new.metadata.finalizers:
                del self._objects[key]
            else:
                self._objects[key] = new

    def update_status(self, obj: Any) -> None:
        with self._lock:
            stored = self._stored(obj)
            new = copy.deepcopy(stored)
            if hasattr(obj, "status"):
                new.status = copy.deepcopy(obj.status)
            new.metadata.resource_version = self._next_version()
            obj.metadata.resource_version = new.metadata.resource_version
            self._objects[self._key_of(new)] = new

    def delete(self, obj: Any) -> None:
        with self._lock:
            stored = self._stored(obj)
            if stored.metadata.finalizers:
                if not stored.metadata.deleting:
                    stored.metadata.deletion_timestamp = self._now()
                    stored.metadata.resource_version = self._next_version()
                return
            del self._objects[self._key_of(stored)]

    def list(
        self,
        kind: type,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Any]:
        name = _kind_name(kind)
        wanted = dict(labels or {})
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (obj_kind, obj_ns, _), obj in sorted(
                    self._objects.items(), key=lambda item: item[0]
                )
                if obj_kind == name
                and (namespace is None or obj_ns == namespace)
                and _labels_match(obj.metadata.labels, wanted.items())
            ]


def _labels_match(labels: Mapping[str, str], wanted: Iterable[tuple[str, str]]) -> bool:
    return all(labels.get(key) == value for key, value in wanted)


def contains_finalizer(obj: Any, finalizer: str) -> bool:
    """Whether the object carries ``finalizer``."""
    return finalizer in obj.metadata.finalizers


def add_finalizer(obj: Any, finalizer: str) -> bool:
    """Add ``finalizer`` to the object; return whether it was missing."""
    if finalizer in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: Any, finalizer: str) -> bool:
    """Remove every copy of ``finalizer``; return whether any was present."""
    before = len(obj.metadata.finalizers)
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return len(obj.metadata.finalizers) != before


def set_status_condition(conditions: list[Condition], condition: Condition) -> bool:
    """Add or update the condition of the same type; return whether anything changed.

    The transition time only moves when the status changes.
    """
    now = dt.datetime.now(dt.timezone.utc)
    existing = next((c for c in conditions if c.type == condition.type), None)
    if existing is None:
        if condition.last_transition_time is None:
            condition = replace(condition, last_transition_time=now)
        else:
            condition = replace(condition)
        conditions.append(condition)
        return True

    changed = False
    if existing.status != condition.status:
        existing.status = condition.status
        existing.last_transition_time = condition.last_transition_time or now
        changed = True
    if existing.reason != condition.reason:
        existing.reason = condition.reason
        changed = True
    if existing.message != condition.message:
        existing.message = condition.message
        changed = True
    return changed