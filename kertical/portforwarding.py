"""Port forwarding planning, finalizer handling and status updates for PortForwarding resources."""

from __future__ import annotations

import copy
import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from kertical.resources import (
    CLUSTER_IP_NONE,
    LABEL_SERVICE_NAME,
    PROTOCOL_TCP,
    Condition,
    EndpointPort,
    EndpointSlice,
    IntOrString,
    NamespacedName,
    NotFoundError,
    Service,
    ServicePort,
    retry_on_conflict,
    set_status_condition,
)
from kertical.v1alpha1 import (
    ForwardedPort,
    NodePortForwardingStatus,
    PortForwarding,
    PortForwardingState,
)

# Index key for looking up EndpointSlices by their owning Service.
INDEX_SERVICE_OWNER_REFERENCE = "metadata.labels.service-name"

# Finalizer ensuring forwarding rules are removed before a PortForwarding goes away.
FINALIZER_NAME = "networking.kertical.com/portforwarding"

_log = logging.getLogger(__name__)


class _Client(Protocol):
    def get(self, resource_type: type, key: NamespacedName) -> Any: ...

    def update(self, obj: Any) -> None: ...

    def update_status(self, obj: Any) -> None: ...


@dataclass
class ForwardingDiff:
    """Forwarded ports to add, to delete, left as they are, and those that could not be resolved."""

    additions: list[ForwardedPort] = field(default_factory=list)
    deletions: list[ForwardedPort] = field(default_factory=list)
    unchanged: list[ForwardedPort] = field(default_factory=list)
    errors: list[ForwardedPort] = field(default_factory=list)


def _key_of(pf: PortForwarding) -> NamespacedName:
    return NamespacedName(namespace=pf.metadata.namespace, name=pf.metadata.name)


def service_object_key(pf: PortForwarding) -> NamespacedName:
    """Key of the Service referenced by the PortForwarding."""
    return NamespacedName(namespace=pf.metadata.namespace, name=pf.spec.service_ref)


def find_endpoint_slice_port(target: IntOrString, endpoint_slices: list[EndpointSlice]) -> Optional[EndpointPort]:
    """Find the endpoint port matching ``target`` by name or number.

    A slice with exactly one port yields that port regardless of the target.
    """
    for endpoint_slice in endpoint_slices:
        if len(endpoint_slice.ports) == 1:
            return endpoint_slice.ports[0]
        for port in endpoint_slice.ports:
            if (port.name or "") == target.str_val or (port.port or 0) == target.int_val:
                return port
    return None


def find_service_port(
    service: Service, target: IntOrString, endpoint_slices: list[EndpointSlice]
) -> Optional[ServicePort]:
    """Find the Service port matching ``target``; headless Services resolve to the endpoint port."""
    for port in service.spec.ports:
        if port.port == target.int_val or port.name == target.str_val:
            if service.spec.cluster_ip == CLUSTER_IP_NONE:
                endpoint_port = find_endpoint_slice_port(port.target_port, endpoint_slices)
                if endpoint_port is None:
                    return None
                return ServicePort(
                    name=endpoint_port.name or "",
                    protocol=endpoint_port.protocol or PROTOCOL_TCP,
                    port=endpoint_port.port or 0,
                )
            return port
    return None


def _ip_sort_key(text: str) -> bytes:
    if "%" in text:
        return b""
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return b""
    if isinstance(ip, ipaddress.IPv4Address):
        return b"\x00" * 10 + b"\xff\xff" + ip.packed
    return ip.packed


def _target_hosts(service: Service, endpoint_slices: list[EndpointSlice]) -> list[str]:
    if service.spec.cluster_ip != CLUSTER_IP_NONE:
        hosts = [service.spec.cluster_ip]
    else:
        hosts = [
            address
            for endpoint_slice in endpoint_slices
            for endpoint in endpoint_slice.endpoints
            if endpoint.conditions.ready
            for address in endpoint.addresses
        ]
    return sorted(hosts, key=_ip_sort_key)


def sync_forwarding_ports(
    pf: PortForwarding, service: Service, endpoint_slices: list[EndpointSlice], node_name: str
) -> ForwardingDiff:
    """Compare the ports forwarded on ``node_name`` with the ports the PortForwarding asks for."""
    forwarded: dict[IntOrString, ForwardedPort] = {}
    for node_status in pf.status.node_port_forwarding_status:
        if node_status.node_name == node_name:
            forwarded = {port.source_port: port for port in node_status.forwarded_ports}
            break

    diff = ForwardingDiff()
    for forwarding in pf.spec.ports:
        service_port = find_service_port(service, forwarding.target, endpoint_slices)
        if service_port is None:
            diff.errors.append(ForwardedPort(source_port=forwarding.target, state=PortForwardingState.FAILED))
            continue

        target_hosts = _target_hosts(service, endpoint_slices)
        if forwarding.host_port is not None:
            source_port = IntOrString(forwarding.host_port)
        else:
            source_port = IntOrString(service_port.port)
        protocol = service_port.protocol
        desired = ForwardedPort(
            protocol=protocol,
            source_port=source_port,
            target_hosts=target_hosts,
            target_port=service_port.port,
            state=PortForwardingState.READY,
        )

        existing = forwarded.pop(source_port, None)
        if existing is None:
            diff.additions.append(desired)
        elif (
            existing.protocol != protocol
            or existing.source_port != source_port
            or existing.target_hosts != target_hosts
        ):
            diff.deletions.append(existing)
            diff.additions.append(desired)
        else:
            diff.unchanged.append(existing)

    diff.deletions.extend(forwarded.values())
    return diff


def service_owner_reference(obj: Any) -> list[str]:
    """The owning Service name taken from the object's service-name label, if present."""
    labels = obj.metadata.labels or {}
    return [labels[LABEL_SERVICE_NAME]] if LABEL_SERVICE_NAME in labels else []


def contains_finalizer(pf: PortForwarding) -> bool:
    """Whether the PortForwarding carries the port forwarding finalizer."""
    return pf.metadata.has_finalizer(FINALIZER_NAME)


def add_finalizer(client: _Client, pf: PortForwarding) -> None:
    """Add the finalizer to the stored PortForwarding unless it is being deleted or already has it."""

    def attempt() -> None:
        try:
            latest = client.get(PortForwarding, _key_of(pf))
        except NotFoundError:
            return
        if latest.metadata.deletion_timestamp is None and not latest.metadata.has_finalizer(FINALIZER_NAME):
            latest.metadata.add_finalizer(FINALIZER_NAME)
            client.update(latest)

    retry_on_conflict(attempt)


def remove_finalizer(client: _Client, pf: PortForwarding) -> bool:
    """Remove the finalizer once no node still reports forwarded ports.

    Returns True when removal has to wait and the request should be requeued.
    """
    requeue = False

    def attempt() -> None:
        nonlocal requeue
        try:
            latest = client.get(PortForwarding, _key_of(pf))
        except NotFoundError:
            return
        if latest.metadata.deletion_timestamp is None or not latest.metadata.has_finalizer(FINALIZER_NAME):
            return
        if any(node_status.forwarded_ports for node_status in pf.status.node_port_forwarding_status):
            requeue = True
            _log.info("forwarded ports still active, keeping finalizer")
            return
        latest.metadata.remove_finalizer(FINALIZER_NAME)
        client.update(latest)

    retry_on_conflict(attempt)
    return requeue


class StatusUpdater:
    """Writes PortForwarding status through a client, retrying on conflicts."""

    def __init__(self, client: _Client) -> None:
        self._client = client

    def patch_node_forwarded_status(self, pf: PortForwarding, node_name: str, ports: list[ForwardedPort]) -> None:
        """Replace the forwarded ports recorded for ``node_name``."""

        def attempt() -> None:
            latest = self._client.get(PortForwarding, _key_of(pf))
            statuses = latest.status.node_port_forwarding_status
            node_status = next((item for item in statuses if item.node_name == node_name), None)
            if node_status is not None:
                node_status.forwarded_ports = list(ports)
            else:
                statuses.append(NodePortForwardingStatus(node_name=node_name, forwarded_ports=list(ports)))
            self._client.update_status(latest)
            _log.debug("patched node status nodeName=%s forwardedPorts=%s", node_name, ports)

        retry_on_conflict(attempt)

    def update_condition(self, pf: PortForwarding, condition: Condition) -> None:
        """Set ``condition`` on the stored PortForwarding, writing only when it changes."""

        def attempt() -> None:
            latest = copy.deepcopy(self._client.get(PortForwarding, _key_of(pf)))
            if set_status_condition(latest.status.conditions, condition):
                self._client.update_status(latest)

        retry_on_conflict(attempt)