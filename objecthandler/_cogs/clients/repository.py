"""
A facade to the cluster's objects, addressed by their kinds and names.

The reconciler, the watch registry, and the handlers only know the kinds
as declared in the manifests (group-version-kind). The facade resolves them
into the API resources (with the cluster discovery) and calls the lower-level
API functions with the operator's settings.

The facade is also the seam for tests: a fake repository with the same
methods can replace the real one without any HTTP mocking.
"""
import base64
import binascii
import logging
from collections.abc import AsyncIterator

from objecthandler._cogs.clients import discovery, fetching, patching, watching
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, patches, references

logger = logging.getLogger(__name__)


class SecretNotFoundError(Exception):
    """ Raised when a referenced secret or its key is absent or unreadable. """


class ObjectRepository:

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            namespace: references.Namespace = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.namespace = namespace  # for watching only; `None` is cluster-wide.

    async def resolve(
            self,
            gvk: references.GroupVersionKind,
            *,
            logger: typedefs.Logger = logger,
    ) -> references.Resource:
        return await discovery.discover(gvk, settings=self.settings, logger=logger)

    async def get(
            self,
            kind: references.GroupVersionKind | references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
            logger: typedefs.Logger = logger,
    ) -> bodies.RawBody | None:
        """ Read an object; ``None`` if it is absent. The kinds are resolved if needed. """
        if isinstance(kind, references.Resource):
            resource = kind
        else:
            resource = await self.resolve(kind, logger=logger)
        return await fetching.read_obj(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            logger=logger,
        )

    async def patch_status(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
            patch: patches.Patch,
            logger: typedefs.Logger = logger,
    ) -> bodies.RawBody | None:
        return await patching.patch_obj(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            patch=patch,
            logger=logger,
        )

    def watch(
            self,
            resource: references.Resource,
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]:
        return watching.infinite_watch(
            settings=self.settings,
            resource=resource,
            namespace=self.namespace if resource.namespaced else None,
        )

    async def read_secret(
            self,
            *,
            namespace: str,
            name: str,
            key: str,
            logger: typedefs.Logger = logger,
    ) -> str:
        """ Read and decode a single value of a secret. """
        body = await self.get(references.SECRETS, namespace=namespace, name=name, logger=logger)
        if body is None:
            raise SecretNotFoundError(f"Secret {namespace}/{name} not found.")
        data = body.get('data') or {}  # type: ignore[typeddict-item]
        if key not in data:
            raise SecretNotFoundError(f"Secret {namespace}/{name} has no key {key!r}.")
        try:
            return base64.b64decode(data[key]).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretNotFoundError(f"Secret {namespace}/{name} has a malformed key {key!r}.") from e
