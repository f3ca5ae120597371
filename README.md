# kertical

Resource models and reconciliation helpers for two networking resources of
the `networking.kertical.com/v1alpha1` API group:

* **ExternalProxy** exposes addresses outside the cluster through a generated
  Service, its EndpointSlices and, optionally, an Ingress.
* **PortForwarding** forwards host ports on each node to the ports of a Service.

The package has no runtime dependencies and does not talk to a cluster by
itself. Functions that read or write objects take a client object that you
supply.

## Installation

```
pip install .
```

## Modules

* `kertical.resources`: the core object model (`ObjectMeta`, `Service`,
  `EndpointSlice`, `Ingress`, `IntOrString`, `Condition`, ...), the errors
  `NotFoundError` and `ConflictError`, and the helpers `get_controller_of`,
  `set_controller_reference`, `retry_on_conflict` and `set_status_condition`.
* `kertical.v1alpha1`: the `ExternalProxy` and `PortForwarding` resources and
  their spec and status types. Both resources offer `to_dict()` and
  `from_dict()`. `from_dict` raises `ValueError` when `apiVersion` or `kind`
  does not match.
* `kertical.externalproxy`: builders for the objects an ExternalProxy owns,
  plus a `StatusUpdater`.
* `kertical.portforwarding`: port forwarding planning, finalizer handling and
  a `StatusUpdater`.
* `kertical.events`: event handlers that turn watched objects into
  reconcile requests.

## The client

Wherever a client is needed it must provide:

* `get(resource_type, key)`: return the stored object for a `NamespacedName`.
  Raise `NotFoundError` if it does not exist.
* `update(obj)`: store the object.
* `update_status(obj)`: store the object's status.

A write that hits a concurrent modification should raise `ConflictError`.
Such a call is retried through `retry_on_conflict`, which makes up to five
attempts by default.

## ExternalProxy

```python
from kertical.v1alpha1 import ExternalProxy
from kertical.externalproxy import new_service, new_endpoint_slices, new_ingress

proxy = ExternalProxy.from_dict(manifest)

service = new_service(proxy)
slices = new_endpoint_slices(proxy, "kertical-manager")
ingress = new_ingress(proxy) if proxy.spec.ingress else None
```

* `new_endpoint_slices(proxy, controller_name)` builds an IPv4 slice and an
  IPv6 slice for each backend. The slices are named
  `<service>-be<index>v4` and `<service>-be<index>v6`, and slices with no
  addresses are left out. Each slice is labelled with the controller name and
  the Service name.
* `filter_ipv4` and `filter_ipv6` decide which family an address belongs to.
  An IPv4-mapped IPv6 address counts as IPv4.
* `new_ingress` raises `ValueError` when the proxy has no ingress section, or
  when an ingress path has no backend.
* Every built object carries the annotation
  `networking.kertical.com/external-proxy-revision`, which holds the proxy's
  generation. `inject_revision(proxy, obj)` sets it.
  `should_reconcile_resource(proxy, obj)` tells whether an existing object was
  built from a different generation.
* `service_key(proxy)` gives the `NamespacedName` of the proxy's Service.
* `StatusUpdater(client).update_status(proxy, new_status)` reads the latest
  copy of the proxy and replaces its status.

## PortForwarding

```python
from kertical.portforwarding import sync_forwarding_ports, StatusUpdater

diff = sync_forwarding_ports(pf, service, endpoint_slices, node_name="node-1")
diff.additions   # rules to install
diff.deletions   # rules to remove
diff.unchanged   # rules already in place
diff.errors      # targets that match no port on the Service
```

* For a normal Service the target host is the cluster IP. For a headless
  Service (cluster IP `None`) the targets are the ready endpoint addresses,
  sorted by IP. The port is then taken from the EndpointSlices through
  `find_endpoint_slice_port`.
* `find_service_port(service, target, endpoint_slices)` returns the matching
  `ServicePort` or `None`.
* `service_object_key(pf)` gives the key of the referenced Service.
  `service_owner_reference(obj)` reads the owning Service name from the
  `kubernetes.io/service-name` label.
* `contains_finalizer(pf)`, `add_finalizer(client, pf)` and
  `remove_finalizer(client, pf)` manage the finalizer
  `networking.kertical.com/portforwarding`. `remove_finalizer` returns `True`
  (requeue) while any node still reports forwarded ports.
* `StatusUpdater(client).patch_node_forwarded_status(pf, node_name, ports)`
  records the forwarded ports of one node.
  `update_condition(pf, condition)` writes a condition, but only when it
  changes something.

## Event handlers

* `Nothing` ignores every event.
* `Referenced(resolver, resource_type=object)` passes each created, updated
  or deleted object to `resolver` and adds every request it returns to the
  queue. The queue is any object with `add(request)`.
* `resolve_controller_ref(obj, api_version, kind)` and
  `gvk_resolver(api_version, kind)` follow an object's controller reference
  back to its owner.

## What this package does not do

It computes which forwarding rules to add or remove, but it does not install
them on the host. It does not watch a cluster or run a reconcile loop. It has
no API client, and it provides no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```