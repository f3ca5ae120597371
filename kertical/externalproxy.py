"""Builders for the Service, EndpointSlices and Ingress that an ExternalProxy owns."""

from __future__ import annotations

import copy
import ipaddress
import logging
from typing import Any, Callable, Optional, Protocol, TypeVar, Union

from kertical.resources import (
    ADDRESS_TYPE_IPV4,
    ADDRESS_TYPE_IPV6,
    EXTERNAL_PROXY_REVISION_ANNOTATION_KEY,
    LABEL_MANAGED_BY,
    LABEL_SERVICE_NAME,
    Endpoint,
    EndpointConditions,
    EndpointSlice,
    HTTPIngressPath,
    Ingress,
    IngressBackend,
    IngressRule,
    IngressSpec,
    NamespacedName,
    ObjectMeta,
    Service,
    ServiceBackendPort,
    ServiceSpec,
    retry_on_conflict,
)
from kertical.v1alpha1 import (
    EXTERNAL_PROXY_KIND,
    ExternalProxy,
    ExternalProxyBackend,
    ExternalProxyIngressBackend,
    ExternalProxyStatus,
)

KIND = EXTERNAL_PROXY_KIND

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddressFilter = Callable[[str], Optional[IPAddress]]

_log = logging.getLogger(__name__)

T = TypeVar("T")


class _Client(Protocol):
    def get(self, resource_type: type, key: NamespacedName) -> Any: ...

    def update_status(self, obj: Any) -> None: ...


def new_service(instance: ExternalProxy) -> Service:
    """Build the Service described by the proxy's service section."""
    spec = instance.spec.service
    service = Service(
        metadata=ObjectMeta(
            name=spec.name,
            namespace=instance.metadata.namespace,
            labels=dict(spec.labels),
            annotations=dict(spec.annotations),
        ),
        spec=ServiceSpec(type=spec.type, ports=list(spec.ports)),
    )
    return inject_revision(instance, service)


def service_key(instance: ExternalProxy) -> NamespacedName:
    """Key of the Service associated with the proxy."""
    return NamespacedName(namespace=instance.metadata.namespace, name=instance.spec.service.name)


def new_endpoint_slices(instance: ExternalProxy, controller_name: str) -> list[EndpointSlice]:
    """Build one IPv4 and one IPv6 EndpointSlice per backend, omitting empty ones."""
    slices: list[EndpointSlice] = []
    for index, backend in enumerate(instance.spec.backends):
        prefix = f"{instance.spec.service.name}-be{index}"
        candidates = (
            (new_endpoint_slice_from_backend(prefix + "v4", backend, filter_ipv4), ADDRESS_TYPE_IPV4),
            (new_endpoint_slice_from_backend(prefix + "v6", backend, filter_ipv6), ADDRESS_TYPE_IPV6),
        )
        for endpoint_slice, address_type in candidates:
            if endpoint_slice.endpoints:
                endpoint_slice.address_type = address_type
                slices.append(inject_revision(instance, endpoint_slice))

    for endpoint_slice in slices:
        endpoint_slice.metadata.namespace = instance.metadata.namespace
        endpoint_slice.metadata.labels = {
            LABEL_MANAGED_BY: controller_name,
            LABEL_SERVICE_NAME: instance.spec.service.name,
        }
    return slices


def new_endpoint_slice_from_backend(
    name: str, backend: ExternalProxyBackend, address_filter: AddressFilter
) -> EndpointSlice:
    """Build an EndpointSlice from the backend addresses accepted by ``address_filter``."""
    endpoints = [
        Endpoint(addresses=[str(ip)], conditions=EndpointConditions(ready=True))
        for ip in (address_filter(address.ip) for address in backend.addresses)
        if ip is not None
    ]
    return EndpointSlice(
        metadata=ObjectMeta(name=name),
        endpoints=endpoints,
        ports=[copy.copy(port) for port in backend.ports],
    )


def new_ingress(instance: ExternalProxy) -> Ingress:
    """Build the Ingress described by the proxy's ingress section."""
    spec = instance.spec.ingress
    if spec is None:
        raise ValueError("the ExternalProxy has no ingress configuration")

    service_name = instance.spec.service.name

    def to_backend(backend: Optional[ExternalProxyIngressBackend]) -> IngressBackend:
        if backend is None:
            raise ValueError("ingress path has no backend")
        return IngressBackend(
            service_name=service_name,
            port=ServiceBackendPort(name=backend.port.name, number=backend.port.number),
        )

    rules = [
        IngressRule(
            host=rule.host,
            paths=[
                HTTPIngressPath(path=path.path, path_type=path.path_type, backend=to_backend(path.backend))
                for path in (rule.http.paths if rule.http is not None else [])
            ],
        )
        for rule in spec.rules
    ]

    ingress = Ingress(
        metadata=ObjectMeta(
            name=spec.name,
            namespace=instance.metadata.namespace,
            labels=dict(spec.labels),
            annotations=dict(spec.annotations),
        ),
        spec=IngressSpec(
            ingress_class_name=spec.ingress_class_name,
            default_backend=to_backend(spec.default_backend) if spec.default_backend is not None else None,
            tls=[copy.deepcopy(tls) for tls in spec.tls],
            rules=rules,
        ),
    )
    return inject_revision(instance, ingress)


def inject_revision(instance: ExternalProxy, target: T) -> T:
    """Record the proxy's generation as the revision annotation on ``target``."""
    meta: ObjectMeta = target.metadata  # type: ignore[attr-defined]
    if meta.annotations is None:
        meta.annotations = {}
    meta.annotations[EXTERNAL_PROXY_REVISION_ANNOTATION_KEY] = str(instance.metadata.generation)
    return target


def should_reconcile_resource(instance: ExternalProxy, obj: Any) -> bool:
    """Whether ``obj`` was built from a generation other than the proxy's current one."""
    revision = (obj.metadata.annotations or {}).get(EXTERNAL_PROXY_REVISION_ANNOTATION_KEY)
    return revision != str(instance.metadata.generation)


def _parse_ip(text: str) -> Optional[IPAddress]:
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def filter_ipv4(address: str) -> Optional[ipaddress.IPv4Address]:
    """The address as IPv4, including IPv4-mapped IPv6 forms; None otherwise."""
    ip = _parse_ip(address)
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    if isinstance(ip, ipaddress.IPv6Address):
        return ip.ipv4_mapped
    return None


def filter_ipv6(address: str) -> Optional[ipaddress.IPv6Address]:
    """The address if it is a genuine IPv6 address; None otherwise."""
    ip = _parse_ip(address)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is None:
        return ip
    return None


class StatusUpdater:
    """Writes ExternalProxy status through a client, retrying on conflicts."""

    def __init__(self, client: _Client) -> None:
        self._client = client

    def update_status(self, proxy: ExternalProxy, new_status: ExternalProxyStatus) -> None:
        """Replace the status of the latest stored version of ``proxy``."""
        _log.info(
            "updating external proxy status ready=%s serviceName=%s",
            new_status.ready,
            new_status.service_name,
        )
        key = NamespacedName(namespace=proxy.metadata.namespace, name=proxy.metadata.name)

        def attempt() -> None:
            latest = self._client.get(ExternalProxy, key)
            latest.status = copy.deepcopy(new_status)
            self._client.update_status(latest)

        retry_on_conflict(attempt)