"""
References to resource kinds and to individual objects.

There are two ways to refer to a resource kind, used in different places:

* :class:`GroupVersionKind` -- as written in YAML manifests and in the
  ``spec.forObject`` stanzas: by API group, API version, and kind.
  This is what the users declare, and what the watches are keyed by.
* :class:`Resource` -- as used in the K8s API URLs: by API group, API version,
  and the plural name. It is only known after the cluster discovery.

The conversion from the former to the latter is done in
:mod:`objecthandler._cogs.clients.discovery`.
"""
import dataclasses
import urllib.parse
from collections.abc import Iterator, Mapping
from typing import NamedTuple, NewType, Optional

# A specific really existing addressable namespace (at least, the one assumed to be so).
NamespaceName = NewType('NamespaceName', str)

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = Optional[NamespaceName]


@dataclasses.dataclass(frozen=True)
class GroupVersionKind:
    """
    A canonical identifier of a resource kind, as seen in the manifests.

    For Core v1 API kinds (``v1/Pod``, ``v1/Secret``), the group is ``""``.
    """
    group: str
    version: str
    kind: str

    def __str__(self) -> str:
        return f'{self.kind}.{self.version}.{self.group}'.rstrip('.')

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        group, _, version = api_version.rpartition('/')
        return cls(group=group, version=version, kind=kind)


class ObjectName(NamedTuple):
    """ An identity of a namespaced object, used as a key in the queues. """
    namespace: str
    name: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.name}'


@dataclasses.dataclass(frozen=True, eq=False, repr=False)
class Resource:
    """
    A reference to a very specific custom or built-in resource kind.

    It is used to form the K8s API URLs. Generally, K8s API only needs
    an API group, an API version, and a plural name of the resource.
    All other names are remembered for logging and informational purposes.
    """

    group: str
    """
    The resource's API group; e.g. ``"templates.kluctl.io"``, ``"apps"``.
    For Core v1 API resources, an empty string: ``""``.
    """

    version: str
    """
    The resource's API version; e.g. ``"v1"``, ``"v1alpha1"``, etc.
    """

    plural: str
    """
    The resource's plural name; e.g. ``"deployments"``, ``"objecthandlers"``.
    """

    kind: str | None = None
    """
    The resource's kind (as in YAML files); e.g. ``"Deployment"``.
    """

    namespaced: bool | None = None
    """
    Whether the resource is namespaced (``True``) or cluster-scoped (``False``).
    """

    subresources: frozenset[str] = frozenset()
    """
    The resource's subresources, if defined; e.g. ``{"status", "scale"}``.
    """

    def __hash__(self) -> int:
        return hash((self.group, self.version, self.plural))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Resource):
            self_tuple = (self.group, self.version, self.plural)
            other_tuple = (other.group, other.version, other.plural)
            return self_tuple == other_tuple
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}'.strip('.')

    def __iter__(self) -> Iterator[str]:
        return iter((self.group, self.version, self.plural))

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    @property
    def gvk(self) -> GroupVersionKind:
        if self.kind is None:
            raise ValueError(f"The resource {self!r} has no kind to make a GVK.")
        return GroupVersionKind(group=self.group, version=self.version, kind=self.kind)

    def get_version_url(self, *, server: str | None = None) -> str:
        """ Build a URL of the group-version's discovery endpoint. """
        path = f'/apis/{self.group}/{self.version}' if self.group else f'/api/{self.version}'
        return path if server is None else server.rstrip('/') + path

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: Namespace = None,
            name: str | None = None,
            subresource: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build a URL to be used with K8s API.

        If the namespace is not set, a cluster-wide URL is returned.
        For cluster-scoped resources, the namespace is ignored.

        If the name is not set, the URL for the resource list is returned.
        Otherwise (if set), the URL for the individual resource is returned.

        If subresource is set, that subresource's URL is returned,
        regardless of whether such a subresource is known or not.

        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        if subresource is not None and name is None:
            raise ValueError("Subresources can be used only with specific resources by their name.")
        if not self.namespaced and namespace is not None:
            raise ValueError("Specific namespaces are not supported for cluster-scoped resources.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        parts: list[str | None] = [
            self.get_version_url(),
            'namespaces' if self.namespaced and namespace is not None else None,
            namespace if self.namespaced and namespace is not None else None,
            self.plural,
            name,
            subresource,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')


SECRETS = GroupVersionKind(group='', version='v1', kind='Secret')
