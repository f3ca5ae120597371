"""Event handlers that turn watched objects into reconcile requests."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Protocol

from kertical.resources import NamespacedName, get_controller_of

_log = logging.getLogger(__name__)

ControllerRefResolver = Callable[[Any], Optional[NamespacedName]]
ReferenceResolver = Callable[[Any], Optional[Iterable[NamespacedName]]]


class _Queue(Protocol):
    def add(self, request: NamespacedName) -> None: ...


class Nothing:
    """An event handler that ignores every event."""

    def create(self, obj: Any, queue: _Queue) -> None:
        """Ignore a creation."""

    def update(self, old: Any, new: Any, queue: _Queue) -> None:
        """Ignore an update."""

    def delete(self, obj: Any, queue: _Queue) -> None:
        """Ignore a deletion."""

    def generic(self, obj: Any, queue: _Queue) -> None:
        """Ignore a generic event."""


class Referenced(Nothing):
    """Queues every request the resolver finds for objects referenced by other resources."""

    def __init__(self, resolver: ReferenceResolver, resource_type: type = object) -> None:
        self._resolver = resolver
        self._resource_type = resource_type

    def create(self, obj: Any, queue: _Queue) -> None:
        if obj.metadata.deletion_timestamp is not None:
            self.delete(obj, queue)
            return
        self._resolve(obj, queue)

    def update(self, old: Any, new: Any, queue: _Queue) -> None:
        if new.metadata.deletion_timestamp is not None:
            self.delete(new, queue)
            return
        self._resolve(new, queue)

    def delete(self, obj: Any, queue: _Queue) -> None:
        if not isinstance(obj, self._resource_type):
            _log.error("skipping deletion event for unexpected object %r", obj)
            return
        _log.info("deleted object %s/%s", obj.metadata.namespace, obj.metadata.name)
        self._resolve(obj, queue)

    def _resolve(self, obj: Any, queue: _Queue) -> None:
        for request in self._resolver(obj) or ():
            queue.add(request)


def resolve_controller_ref(obj: Any, api_version: str, kind: str) -> Optional[NamespacedName]:
    """The request for the controller of ``obj`` if it has the given api version and kind."""
    owner = get_controller_of(obj.metadata)
    if owner is not None and owner.api_version == api_version and owner.kind == kind:
        return NamespacedName(namespace=obj.metadata.namespace, name=owner.name)
    return None


def gvk_resolver(api_version: str, kind: str) -> ControllerRefResolver:
    """A resolver mapping objects to their controller of the given api version and kind."""

    def resolve(obj: Any) -> Optional[NamespacedName]:
        return resolve_controller_ref(obj, api_version, kind)

    return resolve