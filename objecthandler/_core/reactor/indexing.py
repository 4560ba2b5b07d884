"""
The reverse index of ``ObjectHandler`` instances by their target objects.

When a target object changes, all instances referring to it must be
reconciled. Listing all instances and filtering them would be O(N) per event;
instead, an in-memory index maps every target identity to the instances'
identities, and is maintained incrementally from the instances' watch-stream.

The target identity is ``(group, version, kind, namespace, name)``, where
the namespace is defaulted to the instance's own one if not set explicitly.
The same defaulting happens when the index is built and when it is queried.
"""
import logging
from collections.abc import Mapping
from typing import Any

from objecthandler._cogs.structs import objecthandlers, references

logger = logging.getLogger(__name__)

# A separator that cannot appear in K8s names, so that ("ab", "c") != ("a", "bc").
KEY_SEPARATOR = '\x00'

IndexKey = str
ClusterKey = tuple[references.GroupVersionKind, str]


def make_key(
        gvk: references.GroupVersionKind,
        namespace: str | None,
        name: str,
) -> IndexKey:
    return KEY_SEPARATOR.join([gvk.group, gvk.version, gvk.kind, namespace or '', name])


class ReferenceIndex:
    """
    Target identity to a set of instance identities.

    Every instance is indexed under exactly one target identity. A reverse map
    keeps the current target of every instance, so that the re-indexing of
    a changed instance does not scan the whole index.

    A secondary map by kind & name (without the namespace) serves the lookups
    for the cluster-scoped targets, for which the defaulted namespace of the
    instance is meaningless.
    """

    def __init__(self) -> None:
        super().__init__()
        self._by_key: dict[IndexKey, set[references.ObjectName]] = {}
        self._by_name: dict[ClusterKey, set[references.ObjectName]] = {}
        self._targets: dict[references.ObjectName, tuple[IndexKey, ClusterKey]] = {}

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, identity: references.ObjectName) -> bool:
        return identity in self._targets

    def index(self, body: Mapping[str, Any]) -> IndexKey:
        """ The target identity of an instance; raises if the reference is malformed. """
        for_object = objecthandlers.get_for_object(body)
        identity = objecthandlers.get_identity(body)
        namespace = for_object.resolve_namespace(identity.namespace)
        return make_key(for_object.gvk, namespace, for_object.name)

    def replace(self, body: Mapping[str, Any]) -> None:
        """ Index a new instance, or re-index a changed one. """
        identity = objecthandlers.get_identity(body)
        try:
            key = self.index(body)
            for_object = objecthandlers.get_for_object(body)
        except objecthandlers.InvalidReferenceError as e:
            logger.debug(f"Not indexing {identity}: {e}")
            self.forget(identity)
            return

        cluster_key: ClusterKey = (for_object.gvk, for_object.name)
        if self._targets.get(identity) == (key, cluster_key):
            return

        self.forget(identity)
        self._by_key.setdefault(key, set()).add(identity)
        self._by_name.setdefault(cluster_key, set()).add(identity)
        self._targets[identity] = (key, cluster_key)

    def discard(self, body: Mapping[str, Any]) -> None:
        """ Remove a deleted instance from the index. """
        self.forget(objecthandlers.get_identity(body))

    def forget(self, identity: references.ObjectName) -> None:
        try:
            key, cluster_key = self._targets.pop(identity)
        except KeyError:
            return
        _discard_from(self._by_key, key, identity)
        _discard_from(self._by_name, cluster_key, identity)

    def lookup(
            self,
            body: Mapping[str, Any],
            *,
            gvk: references.GroupVersionKind | None = None,
            namespaced: bool = True,
    ) -> set[references.ObjectName]:
        """
        Find the instances referring to a target object.

        The kind is taken from the target's body unless given explicitly.
        For cluster-scoped targets, the instances are matched by kind and name only.
        """
        meta = body.get('metadata', {})
        name = meta.get('name', '')
        if gvk is None:
            gvk = references.GroupVersionKind.from_api_version(body.get('apiVersion', ''),
                                                               body.get('kind', ''))
        if namespaced:
            return set(self._by_key.get(make_key(gvk, meta.get('namespace'), name), ()))
        else:
            return set(self._by_name.get((gvk, name), ()))


def _discard_from(
        mapping: dict[Any, set[references.ObjectName]],
        key: Any,
        identity: references.ObjectName,
) -> None:
    identities = mapping.get(key)
    if identities is not None:
        identities.discard(identity)
        if not identities:
            del mapping[key]
