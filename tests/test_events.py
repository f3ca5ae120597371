from datetime import datetime, timezone

from kertical.events import Nothing, Referenced, gvk_resolver, resolve_controller_ref
from kertical.resources import EndpointSlice, NamespacedName, ObjectMeta, OwnerReference, Service


class RecordingQueue:
    def __init__(self):
        self.items = []

    def add(self, request):
        self.items.append(request)


def find_nothing(obj):
    return iter(())


def make_service(name="svc", owners=(), deleting=False):
    return Service(
        metadata=ObjectMeta(
            name=name,
            namespace="default",
            owner_references=list(owners),
            deletion_timestamp=datetime.now(timezone.utc) if deleting else None,
        )
    )


def test_referenced_with_empty_resolver_queues_nothing():
    handler = Referenced(find_nothing, Service)
    queue = RecordingQueue()
    handler.create(make_service(), queue)
    handler.update(make_service(), make_service(), queue)
    handler.delete(make_service(), queue)
    assert queue.items == []


def test_referenced_queues_resolved_requests_in_order():
    requests = [NamespacedName("default", "a"), NamespacedName("default", "b")]
    handler = Referenced(lambda obj: iter(requests), Service)
    queue = RecordingQueue()
    handler.create(make_service(), queue)
    assert queue.items == requests


def test_referenced_update_resolves_new_object():
    seen = []

    def resolver(obj):
        seen.append(obj.metadata.name)
        return iter([NamespacedName(obj.metadata.namespace, obj.metadata.name)])

    queue = RecordingQueue()
    Referenced(resolver, Service).update(make_service("old"), make_service("new"), queue)
    assert seen == ["new"]
    assert queue.items == [NamespacedName("default", "new")]


def test_referenced_create_of_deleting_object_goes_through_delete():
    queue = RecordingQueue()
    handler = Referenced(lambda obj: [NamespacedName("default", "x")], Service)
    handler.create(EndpointSlice(metadata=ObjectMeta(name="es", deletion_timestamp=datetime.now(timezone.utc))), queue)
    assert queue.items == []
    handler.create(make_service(deleting=True), queue)
    assert queue.items == [NamespacedName("default", "x")]


def test_referenced_delete_skips_other_types():
    queue = RecordingQueue()
    Referenced(lambda obj: [NamespacedName("default", "x")], Service).delete(EndpointSlice(), queue)
    assert queue.items == []


def test_referenced_generic_is_ignored():
    queue = RecordingQueue()
    Referenced(lambda obj: [NamespacedName("default", "x")], Service).generic(make_service(), queue)
    assert queue.items == []


def test_nothing_ignores_everything():
    queue = RecordingQueue()
    handler = Nothing()
    handler.create(make_service(), queue)
    handler.update(make_service(), make_service(), queue)
    handler.delete(make_service(), queue)
    handler.generic(make_service(), queue)
    assert queue.items == []


def test_resolve_controller_ref_matches_controller():
    owner = OwnerReference(api_version="apps/v1", kind="Deployment", name="web", controller=True)
    assert resolve_controller_ref(make_service(owners=[owner]), "apps/v1", "Deployment") == NamespacedName(
        "default", "web"
    )


def test_resolve_controller_ref_rejects_mismatches():
    owner = OwnerReference(api_version="apps/v1", kind="Deployment", name="web", controller=True)
    service = make_service(owners=[owner])
    assert resolve_controller_ref(service, "apps/v1", "StatefulSet") is None
    assert resolve_controller_ref(service, "apps/v2", "Deployment") is None
    plain_owner = OwnerReference(api_version="apps/v1", kind="Deployment", name="web")
    assert resolve_controller_ref(make_service(owners=[plain_owner]), "apps/v1", "Deployment") is None
    assert resolve_controller_ref(make_service(), "apps/v1", "Deployment") is None


def test_gvk_resolver():
    resolver = gvk_resolver("apps/v1", "Deployment")
    owner = OwnerReference(api_version="apps/v1", kind="Deployment", name="web", controller=True)
    assert resolver(make_service(owners=[owner])) == NamespacedName("default", "web")
    assert resolver(make_service()) is None