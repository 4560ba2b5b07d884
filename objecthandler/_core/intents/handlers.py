"""
The handler strategies and their registry.

A handler specification in ``spec.handlers`` only declares what to do.
A strategy is the code doing it: e.g. commenting on a merge request.
Strategies are built per reconciliation pass from the specification's config
(resolving the referenced secrets on the way), and then invoked against the
target object with the handler's mutable status record.

The strategies must be idempotent: they are invoked on every pass,
and should only change the external systems when the state has changed.
"""
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeVar

from objecthandler._cogs.clients import errors, repository as repositories
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, objecthandlers

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = 'token'


class Handler(Protocol):
    async def handle(
            self,
            *,
            repository: repositories.ObjectRepository,
            target: bodies.RawBody,
            status: objecthandlers.HandlerStatus,
            logger: typedefs.Logger,
    ) -> None:
        ...


class HandlerBuilder(Protocol):
    def __call__(
            self,
            config: Mapping[str, Any],
            *,
            namespace: str,
            repository: repositories.ObjectRepository,
            settings: configuration.OperatorSettings,
            logger: typedefs.Logger,
    ) -> Awaitable[Handler]:
        ...


_B = TypeVar('_B', bound=HandlerBuilder)


class HandlerRegistry:
    """
    The builders of the strategies, one per handler kind.
    """

    def __init__(self) -> None:
        super().__init__()
        self._builders: dict[objecthandlers.HandlerKind, HandlerBuilder] = {}

    def __contains__(self, kind: objecthandlers.HandlerKind) -> bool:
        return kind in self._builders

    def register(self, kind: objecthandlers.HandlerKind) -> Callable[[_B], _B]:
        def decorator(builder: _B) -> _B:
            if kind in self._builders:
                raise ValueError(f"A builder for {kind} is already registered.")
            self._builders[kind] = builder
            return builder
        return decorator

    async def build(
            self,
            spec: objecthandlers.HandlerSpec,
            *,
            namespace: str,
            repository: repositories.ObjectRepository,
            settings: configuration.OperatorSettings,
            logger: typedefs.Logger,
    ) -> Handler:
        try:
            builder = self._builders[spec.kind]
        except KeyError:
            raise objecthandlers.HandlerConfigError(f"Unsupported handler: {spec.kind}.") from None
        return await builder(spec.config, namespace=namespace, repository=repository,
                             settings=settings, logger=logger)


# The registry populated by the built-in kits on import.
default_registry = HandlerRegistry()


async def resolve_secret(
        ref: Any,
        *,
        namespace: str,
        repository: repositories.ObjectRepository,
        logger: typedefs.Logger,
) -> str:
    """
    Read the value referenced as ``{secretName: ..., key: ...}``.

    The secret is always looked up in the namespace of the ``ObjectHandler``:
    the instances cannot reach the secrets of other namespaces.
    """
    if not isinstance(ref, Mapping) or not ref.get('secretName'):
        raise objecthandlers.HandlerConfigError("The secret reference has no secretName.")
    name = ref['secretName']
    key = ref.get('key') or DEFAULT_SECRET_KEY
    try:
        return await repository.read_secret(namespace=namespace, name=name, key=key, logger=logger)
    except (repositories.SecretNotFoundError, errors.APIError) as e:
        raise objecthandlers.HandlerConfigError(f"Cannot resolve the secret {name!r}: {e}") from e
