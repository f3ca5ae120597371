import copy

import pytest

from kertical.externalproxy import (
    StatusUpdater,
    filter_ipv4,
    filter_ipv6,
    inject_revision,
    new_endpoint_slice_from_backend,
    new_endpoint_slices,
    new_ingress,
    new_service,
    service_key,
    should_reconcile_resource,
)
from kertical.resources import (
    ADDRESS_TYPE_IPV4,
    ADDRESS_TYPE_IPV6,
    EXTERNAL_PROXY_REVISION_ANNOTATION_KEY,
    LABEL_MANAGED_BY,
    LABEL_SERVICE_NAME,
    PATH_TYPE_PREFIX,
    ConflictError,
    EndpointPort,
    NamespacedName,
    NotFoundError,
    ServicePort,
)
from kertical.v1alpha1 import (
    ExternalProxy,
    ExternalProxyBackend,
    ExternalProxyBackendAddress,
    ExternalProxyIngress,
    ExternalProxyIngressBackend,
    ExternalProxyIngressHttpPath,
    ExternalProxyIngressHttpRuleValue,
    ExternalProxyIngressRule,
    ExternalProxyService,
    ExternalProxyServiceBackendPort,
    ExternalProxySpec,
    ExternalProxyStatus,
)
from kertical.resources import ObjectMeta

CONTROLLER = "kertical-manager"


def make_proxy(generation=3):
    return ExternalProxy(
        metadata=ObjectMeta(name="test-externalproxy", namespace="default", generation=generation),
        spec=ExternalProxySpec(
            backends=[
                ExternalProxyBackend(
                    addresses=[
                        ExternalProxyBackendAddress(ip="10.0.0.1"),
                        ExternalProxyBackendAddress(ip="fc00::f090:27ff:fee2:420a"),
                    ],
                    ports=[EndpointPort(name="http", port=8080)],
                ),
                ExternalProxyBackend(
                    addresses=[ExternalProxyBackendAddress(ip="10.0.0.2")],
                    ports=[EndpointPort(name="https", port=8443)],
                ),
            ],
            service=ExternalProxyService(
                name="test-externalproxy",
                labels={"app": "proxy"},
                annotations={"team": "net"},
                type="ClusterIP",
                ports=[ServicePort(name="http", port=8080)],
            ),
            ingress=ExternalProxyIngress(
                name="test-ingress",
                default_backend=ExternalProxyIngressBackend(port=ExternalProxyServiceBackendPort(number=8443)),
                rules=[
                    ExternalProxyIngressRule(
                        host="test.kertical.com",
                        http=ExternalProxyIngressHttpRuleValue(
                            paths=[
                                ExternalProxyIngressHttpPath(
                                    path="/",
                                    path_type=PATH_TYPE_PREFIX,
                                    backend=ExternalProxyIngressBackend(
                                        port=ExternalProxyServiceBackendPort(name="http")
                                    ),
                                )
                            ]
                        ),
                    )
                ],
            ),
        ),
    )


def test_filter_ipv4():
    assert str(filter_ipv4("10.0.0.1")) == "10.0.0.1"
    assert str(filter_ipv4("::ffff:10.0.0.1")) == "10.0.0.1"
    assert filter_ipv4("fc00::1") is None
    assert filter_ipv4("not-an-ip") is None


def test_filter_ipv6():
    assert str(filter_ipv6("fc00::f090:27ff:fee2:420a")) == "fc00::f090:27ff:fee2:420a"
    assert filter_ipv6("10.0.0.1") is None
    assert filter_ipv6("::ffff:10.0.0.1") is None
    assert filter_ipv6("not-an-ip") is None


def test_new_service_copies_spec():
    proxy = make_proxy()
    service = new_service(proxy)
    assert service.metadata.name == "test-externalproxy"
    assert service.metadata.namespace == "default"
    assert service.spec.type == "ClusterIP"
    assert service.spec.ports == proxy.spec.service.ports
    assert service.metadata.labels == {"app": "proxy"}
    assert service.metadata.annotations["team"] == "net"
    assert service.metadata.annotations[EXTERNAL_PROXY_REVISION_ANNOTATION_KEY] == "3"
    # the proxy's own annotations are untouched
    assert EXTERNAL_PROXY_REVISION_ANNOTATION_KEY not in proxy.spec.service.annotations


def test_service_key():
    assert service_key(make_proxy()) == NamespacedName(namespace="default", name="test-externalproxy")


def test_new_endpoint_slices_split_by_family():
    proxy = make_proxy()
    slices = new_endpoint_slices(proxy, CONTROLLER)
    names = [item.metadata.name for item in slices]
    assert names == ["test-externalproxy-be0v4", "test-externalproxy-be0v6", "test-externalproxy-be1v4"]
    assert [item.address_type for item in slices] == [ADDRESS_TYPE_IPV4, ADDRESS_TYPE_IPV6, ADDRESS_TYPE_IPV4]
    assert slices[0].endpoints[0].addresses == ["10.0.0.1"]
    assert slices[1].endpoints[0].addresses == ["fc00::f090:27ff:fee2:420a"]
    assert slices[2].ports == [EndpointPort(name="https", port=8443)]
    for item in slices:
        assert item.metadata.namespace == "default"
        assert item.metadata.labels == {LABEL_MANAGED_BY: CONTROLLER, LABEL_SERVICE_NAME: "test-externalproxy"}
        assert not should_reconcile_resource(proxy, item)
        assert all(endpoint.conditions.ready is True for endpoint in item.endpoints)


def test_new_endpoint_slice_from_backend_filters_addresses():
    backend = make_proxy().spec.backends[0]
    endpoint_slice = new_endpoint_slice_from_backend("slice", backend, filter_ipv6)
    assert endpoint_slice.metadata.name == "slice"
    assert [e.addresses for e in endpoint_slice.endpoints] == [["fc00::f090:27ff:fee2:420a"]]
    assert endpoint_slice.ports == backend.ports
    assert endpoint_slice.ports[0] is not backend.ports[0]


def test_new_endpoint_slices_without_matching_addresses():
    proxy = make_proxy()
    proxy.spec.backends = [ExternalProxyBackend(addresses=[ExternalProxyBackendAddress(ip="bogus")])]
    assert new_endpoint_slices(proxy, CONTROLLER) == []


def test_new_ingress():
    proxy = make_proxy()
    ingress = new_ingress(proxy)
    assert ingress.metadata.name == "test-ingress"
    assert ingress.metadata.namespace == "default"
    assert ingress.spec.default_backend.service_name == "test-externalproxy"
    assert ingress.spec.default_backend.port.number == 8443
    rule = ingress.spec.rules[0]
    assert rule.host == "test.kertical.com"
    assert rule.paths[0].path == "/"
    assert rule.paths[0].path_type == PATH_TYPE_PREFIX
    assert rule.paths[0].backend.service_name == "test-externalproxy"
    assert rule.paths[0].backend.port.name == "http"
    assert not should_reconcile_resource(proxy, ingress)


def test_new_ingress_requires_configuration():
    proxy = make_proxy()
    proxy.spec.ingress = None
    with pytest.raises(ValueError):
        new_ingress(proxy)


def test_new_ingress_path_without_backend():
    proxy = make_proxy()
    proxy.spec.ingress.rules[0].http.paths[0].backend = None
    with pytest.raises(ValueError):
        new_ingress(proxy)


def test_should_reconcile_after_generation_change():
    proxy = make_proxy(generation=1)
    service = inject_revision(proxy, new_service(proxy))
    assert not should_reconcile_resource(proxy, service)
    proxy.metadata.generation = 2
    assert should_reconcile_resource(proxy, service)
    service.metadata.annotations.clear()
    proxy.metadata.generation = 1
    assert should_reconcile_resource(proxy, service)


class FakeClient:
    def __init__(self, objects, conflicts=0):
        self.objects = {NamespacedName(o.metadata.namespace, o.metadata.name): o for o in objects}
        self.conflicts = conflicts
        self.updates = 0

    def get(self, resource_type, key):
        if key not in self.objects:
            raise NotFoundError(str(key))
        return copy.deepcopy(self.objects[key])

    def update_status(self, obj):
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("conflict")
        self.updates += 1
        self.objects[NamespacedName(obj.metadata.namespace, obj.metadata.name)] = obj


def test_status_updater_retries_conflicts():
    proxy = make_proxy()
    client = FakeClient([proxy], conflicts=2)
    status = ExternalProxyStatus(ready=True, service_name="test-externalproxy", observed_generation=3)
    StatusUpdater(client).update_status(proxy, status)
    stored = client.objects[NamespacedName("default", "test-externalproxy")]
    assert stored.status == status
    assert stored.status is not status
    assert client.updates == 1


def test_status_updater_missing_object():
    client = FakeClient([])
    with pytest.raises(NotFoundError):
        StatusUpdater(client).update_status(make_proxy(), ExternalProxyStatus())