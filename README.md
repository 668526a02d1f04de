# fallernetes

Reconciliation logic that runs game servers as managed resources. The package
defines four resource kinds in `fallernetes.api`: `Server`, `Fleet`, `GameType`
and `GameTypeAutoscaler`. Each kind has a reconciler. A single call to
`reconcile(request)` moves the object one step toward its desired state and
returns a `Result` that tells the caller whether to requeue, and after how long.

- `fallernetes.server_controller.ServerReconciler` adds a finalizer to each
  `Server` and creates the server's pod (`<server name>-pod`) with a sidecar
  container added. It also puts a finalizer on the pod. When the server is being
  deleted, it asks its `DeletionChecker` whether deletion is allowed, and only
  then removes the pod and the finalizers. If deletion is refused, the call
  requeues quietly. With `error_on_not_allowed=True` it raises instead.
- `fallernetes.fleet_controller.FleetReconciler` creates or deletes servers
  until a `Fleet` has `spec.scaling.replicas` of them. It deletes one server
  per call when scaling down. The server it removes is chosen by
  `fallernetes.fleet_deletion.find_delete_server`, which follows the fleet's
  `age_priority` (`Priority.OLDEST_FIRST` or `Priority.NEWEST_FIRST`). When
  `prioritize_allowed` is set, that function prefers servers that allow
  deletion. When a fleet is deleted, the reconciler deletes all of its servers
  before it drops its finalizer.
- `fallernetes.gametype_controller.GameTypeReconciler` keeps one fleet for each
  `GameType` and passes replica changes through to that fleet. If the pod spec
  changes, it creates a new fleet, and then deletes the oldest one on a later
  call.
- `fallernetes.autoscaler_controller.GameTypeAutoscalerReconciler` asks a
  `Webhook` for a scaling decision. If the decision says to scale, it writes
  the desired replica count into the game type. It then requeues after
  `spec.sync.interval`.

## Installation

```
pip install fallernetes
```

To install with the test dependencies:

```
pip install "fallernetes[test]"
```

## Usage

The reconcilers read and write objects through a `fallernetes.client.Client`.
`InMemoryClient` is a thread-safe in-process store. It fills in names from
`generate_name`, and sets uids, creation timestamps and resource versions.
While an object still has finalizers, a delete call only marks it as deleting.
The object is removed once an update leaves it with no finalizers.

```python
from fallernetes.api import (
    Container, Fleet, FleetScaling, FleetSpec, ObjectMeta, PodSpec,
    Priority, ServerSpec,
)
from fallernetes.client import InMemoryClient, NamespacedName, Request
from fallernetes.events import RecordingRecorder
from fallernetes.fleet_controller import FleetReconciler
from fallernetes.sidecar import ProdDeletionChecker

client = InMemoryClient()
client.create(Fleet(
    metadata=ObjectMeta(name="lobby", namespace="default"),
    spec=FleetSpec(
        server_spec=ServerSpec(pod=PodSpec(containers=[Container(name="game", image="game:1.0")])),
        scaling=FleetScaling(replicas=3, prioritize_allowed=True, age_priority=Priority.OLDEST_FIRST),
    ),
))

recorder = RecordingRecorder()
reconciler = FleetReconciler(client, recorder, ProdDeletionChecker())
request = Request(NamespacedName(namespace="default", name="lobby"))

reconciler.reconcile(request)  # adds the finalizer
reconciler.reconcile(request)  # creates three servers

print(recorder.messages())  # ['Fleet finalizers added', 'Scaled servers up to 3']
```

Errors from the client or from the network are raised as exceptions, with a
note added that says what the reconciler was doing. A missing object raises
`NotFoundError`. Failed sidecar calls raise `SidecarError`, and failed
autoscale webhook calls raise `WebhookError`.

### Events

Each reconciler reports its actions to an `fallernetes.events.EventRecorder`.
The base recorder writes events to the `logging` module. `RecordingRecorder`
keeps every `Event` in memory, and `messages()` returns the recorded messages
in order. Each event carries an `EventReason`, such as `FleetScaleServers` or
`ServerPodDeleted`, and an `EventType`, which is `Normal` or `Warning`.

### Pods

`fallernetes.resources.get_new_pod` builds a server's pod. It copies the
server's pod spec and adds a `fallernetes-sidecar` container that uses the
server's sidecar image. The sidecar gets `PORT` and `DEBUG` variables. Every
container gets these environment variables:

- `CONTAINER_IMAGE`
- `SERVER_NAME`
- `FLEET_NAME` and `GAME_NAME`, when the server has those labels
- `POD_IP`
- `NODE_NAME`
- `SERVER_CAPACITY`, when it is set

The image pull secret name is read from the `IMAGE_PULL_SECRET_NAME`
environment variable.

### Sidecar protocol

A server's sidecar listens at `http://<pod ip>:<port>/` and answers two
requests:

- `GET allow_delete`, with `{"allowed": true|false}`
- `POST shutdown`, whose request body is `{"shutdown": true}`

`fallernetes.sidecar.ProdDeletionChecker` allows deletion in three cases:

- the pod is not running
- the server has `allow_force_delete` set
- the server's timeout has passed since its deletion timestamp

In every other case it requests a shutdown and then asks the sidecar. Its
`is_delete_allowed(server, client)` looks up the server's pod and asks the
sidecar. It returns `False` if the sidecar cannot answer.

### Autoscaling webhook

`fallernetes.autoscale.ProductionWebhook` sends a POST to the autoscaler's
`url`. If no URL is given, it uses
`http://<name>.<namespace>.svc.cluster.local:<port>` for the configured service.
The configured path is appended in both cases. The request body is
`{"game_name": ..., "current_replicas": ...}`, and the answer is
`{"scale": bool, "desired_replicas": int}`.

## What the package does not do

The package contains the reconcilers and an in-memory store, nothing more. It
has no client for a real cluster API, no watch loop or manager that calls the
reconcilers when objects change, and no leader election. It serves no metrics
or health endpoints and no admission webhooks, and it provides no command to
start any of these. `InMemoryClient` records owner references but never
garbage-collects owned objects. To drive the reconcilers, call `reconcile`
yourself, and requeue as the returned `Result` asks.

## Running the tests

```
pytest
```