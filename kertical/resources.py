"""Core object model shared by the networking controllers."""

from __future__ import annotations

import dataclasses
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar, Union

GROUP = "networking.kertical.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

# Annotation declaring the ExternalProxy revision a dependent resource was built from.
EXTERNAL_PROXY_REVISION_ANNOTATION_KEY = "networking.kertical.com/external-proxy-revision"

PROTOCOL_TCP = "TCP"
PROTOCOL_UDP = "UDP"
PROTOCOL_SCTP = "SCTP"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
SERVICE_TYPE_NODE_PORT = "NodePort"
SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"
CLUSTER_IP_NONE = "None"

ADDRESS_TYPE_IPV4 = "IPv4"
ADDRESS_TYPE_IPV6 = "IPv6"

LABEL_MANAGED_BY = "endpointslice.kubernetes.io/managed-by"
LABEL_SERVICE_NAME = "kubernetes.io/service-name"

PATH_TYPE_EXACT = "Exact"
PATH_TYPE_PREFIX = "Prefix"
PATH_TYPE_IMPLEMENTATION_SPECIFIC = "ImplementationSpecific"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

_RETRY_DELAY = 0.01
_INTEGER = re.compile(r"[+-]?[0-9]+")

T = TypeVar("T")


class NotFoundError(LookupError):
    """The requested object does not exist."""


class ConflictError(RuntimeError):
    """The object was modified concurrently; the write should be retried."""


@dataclass(frozen=True)
class IntOrString:
    """A value that holds either an integer or a string."""

    value: Union[int, str] = 0

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, str)):
            raise TypeError(f"IntOrString holds an int or a str, not {type(self.value).__name__}")

    @property
    def is_int(self) -> bool:
        return isinstance(self.value, int)

    @property
    def int_val(self) -> int:
        return self.value if isinstance(self.value, int) else 0

    @property
    def str_val(self) -> str:
        return self.value if isinstance(self.value, str) else ""

    def int_value(self) -> int:
        """The integer value, parsing strings; an unparsable string gives 0."""
        if isinstance(self.value, int):
            return self.value
        if _INTEGER.fullmatch(self.value):
            return int(self.value)
        return 0

    def __str__(self) -> str:
        return str(self.value)


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None

    def has_finalizer(self, name: str) -> bool:
        return name in self.finalizers

    def add_finalizer(self, name: str) -> bool:
        """Add the finalizer if missing; return whether it was added."""
        if name in self.finalizers:
            return False
        self.finalizers.append(name)
        return True

    def remove_finalizer(self, name: str) -> bool:
        """Remove every occurrence of the finalizer; return whether any was removed."""
        kept = [item for item in self.finalizers if item != name]
        removed = len(kept) != len(self.finalizers)
        self.finalizers = kept
        return removed


@dataclass(frozen=True)
class NamespacedName:
    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Condition:
    type: str
    status: str = CONDITION_UNKNOWN
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[datetime] = None


@dataclass
class ServicePort:
    name: str = ""
    protocol: str = PROTOCOL_TCP
    port: int = 0
    target_port: IntOrString = IntOrString(0)
    node_port: int = 0


@dataclass
class ServiceSpec:
    type: str = ""
    cluster_ip: str = ""
    ports: list[ServicePort] = field(default_factory=list)


@dataclass
class Service:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ServiceSpec = field(default_factory=ServiceSpec)


@dataclass
class EndpointPort:
    name: Optional[str] = None
    protocol: Optional[str] = None
    port: Optional[int] = None
    app_protocol: Optional[str] = None


@dataclass
class EndpointConditions:
    ready: Optional[bool] = None
    serving: Optional[bool] = None
    terminating: Optional[bool] = None


@dataclass
class Endpoint:
    addresses: list[str] = field(default_factory=list)
    conditions: EndpointConditions = field(default_factory=EndpointConditions)


@dataclass
class EndpointSlice:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    address_type: str = ""
    endpoints: list[Endpoint] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)


@dataclass
class ServiceBackendPort:
    name: str = ""
    number: int = 0


@dataclass
class IngressBackend:
    service_name: str = ""
    port: ServiceBackendPort = field(default_factory=ServiceBackendPort)


@dataclass
class HTTPIngressPath:
    path: str = ""
    path_type: Optional[str] = None
    backend: IngressBackend = field(default_factory=IngressBackend)


@dataclass
class IngressRule:
    host: str = ""
    paths: list[HTTPIngressPath] = field(default_factory=list)


@dataclass
class IngressTLS:
    hosts: list[str] = field(default_factory=list)
    secret_name: str = ""


@dataclass
class IngressSpec:
    ingress_class_name: Optional[str] = None
    default_backend: Optional[IngressBackend] = None
    tls: list[IngressTLS] = field(default_factory=list)
    rules: list[IngressRule] = field(default_factory=list)


@dataclass
class Ingress:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: IngressSpec = field(default_factory=IngressSpec)


def get_controller_of(meta: ObjectMeta) -> Optional[OwnerReference]:
    """Return the owner reference marked as controller, if any."""
    return next((ref for ref in meta.owner_references if ref.controller), None)


def _group_of(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


def _same_object(a: OwnerReference, b: OwnerReference) -> bool:
    return _group_of(a.api_version) == _group_of(b.api_version) and a.kind == b.kind and a.name == b.name


def set_controller_reference(owner, obj, api_version: str, kind: str) -> None:
    """Make ``owner`` (of the given api version and kind) the controller of ``obj``.

    Raises ValueError when the owner lives in another namespace or when the
    object is already controlled by something else.
    """
    owner_meta: ObjectMeta = owner.metadata
    meta: ObjectMeta = obj.metadata
    if owner_meta.namespace and owner_meta.namespace != meta.namespace:
        raise ValueError(
            f"cross-namespace owner references are disallowed, owner's namespace "
            f"{owner_meta.namespace}, obj's namespace {meta.namespace}"
        )

    reference = OwnerReference(
        api_version=api_version,
        kind=kind,
        name=owner_meta.name,
        uid=owner_meta.uid,
        controller=True,
        block_owner_deletion=True,
    )
    existing = get_controller_of(meta)
    if existing is not None and not _same_object(existing, reference):
        raise ValueError(f"object {meta.name} is already owned by another {existing.kind} controller {existing.name}")

    for position, current in enumerate(meta.owner_references):
        if _same_object(current, reference):
            meta.owner_references[position] = reference
            return
    meta.owner_references.append(reference)


def retry_on_conflict(fn: Callable[[], T], attempts: int = 5) -> T:
    """Call ``fn`` until it stops raising ConflictError, at most ``attempts`` times."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(attempts):
        try:
            return fn()
        except ConflictError:
            if attempt == attempts - 1:
                raise
            time.sleep(_RETRY_DELAY)
    raise AssertionError("unreachable")


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def set_status_condition(conditions: list[Condition], condition: Condition) -> bool:
    """Insert or update ``condition`` in ``conditions``; return whether anything changed."""
    existing = next((item for item in conditions if item.type == condition.type), None)
    if existing is None:
        added = dataclasses.replace(condition)
        if added.last_transition_time is None:
            added.last_transition_time = _now()
        conditions.append(added)
        return True

    changed = False
    if existing.status != condition.status:
        existing.status = condition.status
        existing.last_transition_time = condition.last_transition_time or _now()
        changed = True
    if existing.reason != condition.reason:
        existing.reason = condition.reason
        changed = True
    if existing.message != condition.message:
        existing.message = condition.message
        changed = True
    if existing.observed_generation != condition.observed_generation:
        existing.observed_generation = condition.observed_generation
        changed = True
    return changed