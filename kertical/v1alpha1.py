"""Resource types of the networking.kertical.com/v1alpha1 API group."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional

from kertical.resources import (
    API_VERSION,
    Condition,
    EndpointPort,
    IngressTLS,
    IntOrString,
    ObjectMeta,
    OwnerReference,
    ServicePort,
)

EXTERNAL_PROXY_KIND = "ExternalProxy"
PORT_FORWARDING_KIND = "PortForwarding"
PORT_FORWARDING_CONDITION_READY = "Ready"


def _drop_empty(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value not in (None, "", 0, [], {})}


def _format_time(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def _owner_to_dict(ref: OwnerReference) -> dict[str, Any]:
    data = {
        "apiVersion": ref.api_version,
        "kind": ref.kind,
        "name": ref.name,
        "uid": ref.uid,
        "controller": ref.controller,
        "blockOwnerDeletion": ref.block_owner_deletion,
    }
    return {key: value for key, value in data.items() if value is not None}


def _owner_from_dict(data: dict[str, Any]) -> OwnerReference:
    return OwnerReference(
        api_version=data.get("apiVersion", ""),
        kind=data.get("kind", ""),
        name=data.get("name", ""),
        uid=data.get("uid", ""),
        controller=data.get("controller"),
        block_owner_deletion=data.get("blockOwnerDeletion"),
    )


def _meta_to_dict(meta: ObjectMeta) -> dict[str, Any]:
    return _drop_empty(
        {
            "name": meta.name,
            "namespace": meta.namespace,
            "uid": meta.uid,
            "resourceVersion": meta.resource_version,
            "generation": meta.generation,
            "labels": dict(meta.labels),
            "annotations": dict(meta.annotations),
            "finalizers": list(meta.finalizers),
            "ownerReferences": [_owner_to_dict(ref) for ref in meta.owner_references],
            "creationTimestamp": _format_time(meta.creation_timestamp),
            "deletionTimestamp": _format_time(meta.deletion_timestamp),
        }
    )


def _meta_from_dict(data: dict[str, Any]) -> ObjectMeta:
    return ObjectMeta(
        name=data.get("name", ""),
        namespace=data.get("namespace", ""),
        uid=data.get("uid", ""),
        resource_version=data.get("resourceVersion", ""),
        generation=data.get("generation", 0),
        labels=dict(data.get("labels") or {}),
        annotations=dict(data.get("annotations") or {}),
        finalizers=list(data.get("finalizers") or []),
        owner_references=[_owner_from_dict(ref) for ref in data.get("ownerReferences") or []],
        creation_timestamp=_parse_time(data.get("creationTimestamp")),
        deletion_timestamp=_parse_time(data.get("deletionTimestamp")),
    )


def _service_port_to_dict(port: ServicePort) -> dict[str, Any]:
    return _drop_empty(
        {
            "name": port.name,
            "protocol": port.protocol,
            "port": port.port,
            "targetPort": port.target_port.value,
            "nodePort": port.node_port,
        }
    )


def _service_port_from_dict(data: dict[str, Any]) -> ServicePort:
    return ServicePort(
        name=data.get("name", ""),
        protocol=data.get("protocol", "TCP"),
        port=data.get("port", 0),
        target_port=IntOrString(data.get("targetPort", 0)),
        node_port=data.get("nodePort", 0),
    )


def _endpoint_port_to_dict(port: EndpointPort) -> dict[str, Any]:
    data = {"name": port.name, "protocol": port.protocol, "port": port.port, "appProtocol": port.app_protocol}
    return {key: value for key, value in data.items() if value is not None}


def _endpoint_port_from_dict(data: dict[str, Any]) -> EndpointPort:
    return EndpointPort(
        name=data.get("name"),
        protocol=data.get("protocol"),
        port=data.get("port"),
        app_protocol=data.get("appProtocol"),
    )


def _tls_to_dict(tls: IngressTLS) -> dict[str, Any]:
    return _drop_empty({"hosts": list(tls.hosts), "secretName": tls.secret_name})


def _tls_from_dict(data: dict[str, Any]) -> IngressTLS:
    return IngressTLS(hosts=list(data.get("hosts") or []), secret_name=data.get("secretName", ""))


def _condition_to_dict(condition: Condition) -> dict[str, Any]:
    return {
        "type": condition.type,
        "status": condition.status,
        "observedGeneration": condition.observed_generation,
        "lastTransitionTime": _format_time(condition.last_transition_time),
        "reason": condition.reason,
        "message": condition.message,
    }


def _condition_from_dict(data: dict[str, Any]) -> Condition:
    return Condition(
        type=data.get("type", ""),
        status=data.get("status", "Unknown"),
        reason=data.get("reason", ""),
        message=data.get("message", ""),
        observed_generation=data.get("observedGeneration", 0),
        last_transition_time=_parse_time(data.get("lastTransitionTime")),
    )


def _check_type(data: dict[str, Any], kind: str) -> None:
    api_version = data.get("apiVersion", API_VERSION)
    found_kind = data.get("kind", kind)
    if api_version != API_VERSION or found_kind != kind:
        raise ValueError(f"expected {API_VERSION} {kind}, got {api_version} {found_kind}")


@dataclass
class ExternalProxyBackendAddress:
    """A single backend IP address."""

    ip: str

    def _to_dict(self) -> dict[str, Any]:
        return {"ip": self.ip}

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyBackendAddress:
        return cls(ip=data.get("ip", ""))


@dataclass
class ExternalProxyBackend:
    """Backend addresses and the ports they offer."""

    addresses: list[ExternalProxyBackendAddress] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "addresses": [address._to_dict() for address in self.addresses],
            "ports": [_endpoint_port_to_dict(port) for port in self.ports],
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyBackend:
        return cls(
            addresses=[ExternalProxyBackendAddress._from_dict(item) for item in data.get("addresses") or []],
            ports=[_endpoint_port_from_dict(item) for item in data.get("ports") or []],
        )


@dataclass
class ExternalProxyService:
    """Metadata, type and ports of the Service generated for a proxy."""

    name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    type: str = ""
    ports: list[ServicePort] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        data = _drop_empty(
            {
                "metadata": _drop_empty(
                    {"name": self.name, "labels": dict(self.labels), "annotations": dict(self.annotations)}
                ),
                "type": self.type,
            }
        )
        data["ports"] = [_service_port_to_dict(port) for port in self.ports]
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyService:
        meta = data.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            labels=dict(meta.get("labels") or {}),
            annotations=dict(meta.get("annotations") or {}),
            type=data.get("type", ""),
            ports=[_service_port_from_dict(item) for item in data.get("ports") or []],
        )


@dataclass
class ExternalProxyServiceBackendPort:
    """A Service port referenced by name or by number."""

    name: str = ""
    number: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return _drop_empty({"name": self.name, "number": self.number})

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyServiceBackendPort:
        return cls(name=data.get("name", ""), number=data.get("number", 0))


@dataclass
class ExternalProxyIngressBackend:
    """The proxied Service port that receives Ingress traffic."""

    port: ExternalProxyServiceBackendPort = field(default_factory=ExternalProxyServiceBackendPort)

    def _to_dict(self) -> dict[str, Any]:
        return _drop_empty({"port": self.port._to_dict()})

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyIngressBackend:
        return cls(port=ExternalProxyServiceBackendPort._from_dict(data.get("port") or {}))


@dataclass
class ExternalProxyIngressHttpPath:
    """A path and the backend its requests are forwarded to."""

    path: str = ""
    path_type: Optional[str] = None
    backend: Optional[ExternalProxyIngressBackend] = None

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = _drop_empty({"path": self.path})
        if self.path_type is not None:
            data["pathType"] = self.path_type
        if self.backend is not None:
            data["backend"] = self.backend._to_dict()
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyIngressHttpPath:
        backend = data.get("backend")
        return cls(
            path=data.get("path", ""),
            path_type=data.get("pathType"),
            backend=ExternalProxyIngressBackend._from_dict(backend) if backend is not None else None,
        )


@dataclass
class ExternalProxyIngressHttpRuleValue:
    """HTTP paths of an Ingress rule."""

    paths: list[ExternalProxyIngressHttpPath] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        return {"paths": [path._to_dict() for path in self.paths]}

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyIngressHttpRuleValue:
        return cls(paths=[ExternalProxyIngressHttpPath._from_dict(item) for item in data.get("paths") or []])


@dataclass
class ExternalProxyIngressRule:
    """A host and the HTTP paths served under it."""

    host: str = ""
    http: Optional[ExternalProxyIngressHttpRuleValue] = None

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = _drop_empty({"host": self.host})
        if self.http is not None:
            data["http"] = self.http._to_dict()
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyIngressRule:
        http = data.get("http")
        return cls(
            host=data.get("host", ""),
            http=ExternalProxyIngressHttpRuleValue._from_dict(http) if http is not None else None,
        )


@dataclass
class ExternalProxyIngress:
    """How the proxied Service is reached over HTTP(S)."""

    name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    ingress_class_name: Optional[str] = None
    default_backend: Optional[ExternalProxyIngressBackend] = None
    tls: list[IngressTLS] = field(default_factory=list)
    rules: list[ExternalProxyIngressRule] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        data = _drop_empty(
            {
                "metadata": _drop_empty(
                    {"name": self.name, "labels": dict(self.labels), "annotations": dict(self.annotations)}
                ),
                "tls": [_tls_to_dict(item) for item in self.tls],
                "rules": [rule._to_dict() for rule in self.rules],
            }
        )
        if self.ingress_class_name is not None:
            data["ingressClassName"] = self.ingress_class_name
        if self.default_backend is not None:
            data["defaultBackend"] = self.default_backend._to_dict()
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyIngress:
        meta = data.get("metadata") or {}
        default_backend = data.get("defaultBackend")
        return cls(
            name=meta.get("name", ""),
            labels=dict(meta.get("labels") or {}),
            annotations=dict(meta.get("annotations") or {}),
            ingress_class_name=data.get("ingressClassName"),
            default_backend=(
                ExternalProxyIngressBackend._from_dict(default_backend) if default_backend is not None else None
            ),
            tls=[_tls_from_dict(item) for item in data.get("tls") or []],
            rules=[ExternalProxyIngressRule._from_dict(item) for item in data.get("rules") or []],
        )


@dataclass
class ExternalProxySpec:
    """Desired state of an ExternalProxy."""

    backends: list[ExternalProxyBackend] = field(default_factory=list)
    service: ExternalProxyService = field(default_factory=ExternalProxyService)
    ingress: Optional[ExternalProxyIngress] = None

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "backends": [backend._to_dict() for backend in self.backends],
            "service": self.service._to_dict(),
        }
        if self.ingress is not None:
            data["ingress"] = self.ingress._to_dict()
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxySpec:
        ingress = data.get("ingress")
        return cls(
            backends=[ExternalProxyBackend._from_dict(item) for item in data.get("backends") or []],
            service=ExternalProxyService._from_dict(data.get("service") or {}),
            ingress=ExternalProxyIngress._from_dict(ingress) if ingress is not None else None,
        )


@dataclass
class ExternalProxyStatus:
    """Observed state of an ExternalProxy."""

    ready: bool = False
    service_name: str = ""
    observed_generation: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "serviceName": self.service_name,
            "observedGeneration": self.observed_generation,
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ExternalProxyStatus:
        return cls(
            ready=bool(data.get("ready", False)),
            service_name=data.get("serviceName", ""),
            observed_generation=data.get("observedGeneration", 0),
        )


@dataclass
class ExternalProxy:
    """Proxies traffic to addresses outside the cluster through a Service and an optional Ingress."""

    kind: ClassVar[str] = EXTERNAL_PROXY_KIND

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ExternalProxySpec = field(default_factory=ExternalProxySpec)
    status: ExternalProxyStatus = field(default_factory=ExternalProxyStatus)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": self.kind,
            "metadata": _meta_to_dict(self.metadata),
            "spec": self.spec._to_dict(),
            "status": self.status._to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExternalProxy:
        _check_type(data, cls.kind)
        return cls(
            metadata=_meta_from_dict(data.get("metadata") or {}),
            spec=ExternalProxySpec._from_dict(data.get("spec") or {}),
            status=ExternalProxyStatus._from_dict(data.get("status") or {}),
        )


@dataclass
class PortForwardingPort:
    """Maps a Service port (by number or name) to a port on the host."""

    target: IntOrString
    host_port: Optional[int] = None

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"target": self.target.value}
        if self.host_port is not None:
            data["hostPort"] = self.host_port
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PortForwardingPort:
        return cls(target=IntOrString(data.get("target", 0)), host_port=data.get("hostPort"))


@dataclass
class PortForwardingSpec:
    """Desired state of a PortForwarding."""

    service_ref: str = ""
    ports: list[PortForwardingPort] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"serviceRef": {"name": self.service_ref}}
        if self.ports:
            data["ports"] = [port._to_dict() for port in self.ports]
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PortForwardingSpec:
        return cls(
            service_ref=(data.get("serviceRef") or {}).get("name", ""),
            ports=[PortForwardingPort._from_dict(item) for item in data.get("ports") or []],
        )


class PortForwardingState(str, Enum):
    """State of a single forwarded port."""

    READY = "Ready"
    CONFLICT = "Conflict"
    REJECTED = "Rejected"
    RESIDUAL = "Residual"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


@dataclass
class ForwardedPort:
    """Status of one port forwarding rule."""

    protocol: str = ""
    source_port: IntOrString = IntOrString(0)
    target_hosts: list[str] = field(default_factory=list)
    target_port: int = 0
    state: PortForwardingState = PortForwardingState.UNKNOWN

    def _to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "sourcePort": self.source_port.value,
            "targetHosts": list(self.target_hosts),
            "targetPort": self.target_port,
            "state": self.state.value,
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ForwardedPort:
        state = data.get("state")
        return cls(
            protocol=data.get("protocol", ""),
            source_port=IntOrString(data.get("sourcePort", 0)),
            target_hosts=list(data.get("targetHosts") or []),
            target_port=data.get("targetPort", 0),
            state=PortForwardingState(state) if state else PortForwardingState.UNKNOWN,
        )


@dataclass
class NodePortForwardingStatus:
    """Forwarded ports on one node."""

    node_name: str
    forwarded_ports: list[ForwardedPort] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"nodeName": self.node_name}
        if self.forwarded_ports:
            data["forwardingStatus"] = [port._to_dict() for port in self.forwarded_ports]
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> NodePortForwardingStatus:
        return cls(
            node_name=data.get("nodeName", ""),
            forwarded_ports=[ForwardedPort._from_dict(item) for item in data.get("forwardingStatus") or []],
        )


@dataclass
class PortForwardingStatus:
    """Observed state of a PortForwarding."""

    conditions: list[Condition] = field(default_factory=list)
    node_port_forwarding_status: list[NodePortForwardingStatus] = field(default_factory=list)

    def _to_dict(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "conditions": [_condition_to_dict(item) for item in self.conditions],
                "nodePortForwardingStatus": [item._to_dict() for item in self.node_port_forwarding_status],
            }
        )

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PortForwardingStatus:
        return cls(
            conditions=[_condition_from_dict(item) for item in data.get("conditions") or []],
            node_port_forwarding_status=[
                NodePortForwardingStatus._from_dict(item) for item in data.get("nodePortForwardingStatus") or []
            ],
        )


@dataclass
class PortForwarding:
    """Exposes ports of a Service on the host of every node."""

    kind: ClassVar[str] = PORT_FORWARDING_KIND

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PortForwardingSpec = field(default_factory=PortForwardingSpec)
    status: PortForwardingStatus = field(default_factory=PortForwardingStatus)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": self.kind,
            "metadata": _meta_to_dict(self.metadata),
            "spec": self.spec._to_dict(),
            "status": self.status._to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PortForwarding:
        _check_type(data, cls.kind)
        return cls(
            metadata=_meta_from_dict(data.get("metadata") or {}),
            spec=PortForwardingSpec._from_dict(data.get("spec") or {}),
            status=PortForwardingStatus._from_dict(data.get("status") or {}),
        )