"""
The data model of the ``ObjectHandler`` custom resource.

The resource is kept as a raw dict (as it comes from the API), and these
functions interpret its ``spec`` into typed structures, validating it
on the way. The ``status`` is kept as raw dicts, so that it can be patched.

A sample resource::

    apiVersion: templates.kluctl.io/v1alpha1
    kind: ObjectHandler
    metadata:
      name: report-app
      namespace: default
    spec:
      interval: 1m
      forObject:
        group: apps
        version: v1
        kind: Deployment
        name: app
      handlers:
        - pullRequestComment:
            gitlab:
              project: group/project
              mergeRequestId: 123
              tokenRef:
                secretName: gitlab-token
"""
import dataclasses
import enum
import hashlib
import json
from collections.abc import Mapping, Sequence
from typing import Any

from typing_extensions import TypedDict

from objecthandler._cogs.helpers import durations
from objecthandler._cogs.structs import references

# The hex digits of the content hash kept in the handler keys.
KEY_DIGEST_LENGTH = 16


class InvalidReferenceError(ValueError):
    """ Raised when ``spec.forObject`` cannot be interpreted. """


class HandlerConfigError(Exception):
    """ Raised when a handler is misconfigured: no/ambiguous kind, unresolved secrets. """


class HandlerKind(str, enum.Enum):
    """ The mutually exclusive fields of a handler specification. """
    PULL_REQUEST_COMMENT = 'pullRequestComment'
    PULL_REQUEST_APPROVE = 'pullRequestApprove'

    def __str__(self) -> str:
        return str(self.value)


class HandlerStatus(TypedDict, total=False):
    key: str
    error: str


@dataclasses.dataclass(frozen=True)
class ForObject:
    """ A reference to the target object, as declared in ``spec.forObject``. """
    group: str
    version: str
    kind: str
    name: str
    namespace: str | None = None

    @property
    def gvk(self) -> references.GroupVersionKind:
        return references.GroupVersionKind(group=self.group, version=self.version, kind=self.kind)

    def resolve_namespace(self, default: str) -> str:
        """ The target's namespace: explicitly overridden, or the instance's own one. """
        return self.namespace or default

    @classmethod
    def from_spec(cls, raw: Any) -> "ForObject":
        if not isinstance(raw, Mapping):
            raise InvalidReferenceError("spec.forObject must be an object.")
        for field in ['version', 'kind', 'name']:
            if not raw.get(field) or not isinstance(raw.get(field), str):
                raise InvalidReferenceError(f"spec.forObject.{field} is required.")
        return cls(
            group=raw.get('group') or '',
            version=raw['version'],
            kind=raw['kind'],
            name=raw['name'],
            namespace=raw.get('namespace') or None,
        )


@dataclasses.dataclass(frozen=True)
class HandlerSpec:
    """
    A single handler specification: exactly one handler kind and its config.

    The raw content is kept for the key derivation: all fields are relevant
    to the handler's identity, including those unknown to this operator.
    """
    kind: HandlerKind
    config: Mapping[str, Any]
    raw: Mapping[str, Any]

    @property
    def key(self) -> str:
        return build_key(self.raw, kind=self.kind)


def build_key(raw: Mapping[str, Any], *, kind: HandlerKind) -> str:
    """
    Derive a stable key of a handler specification from its content.

    The content is serialised canonically (sorted keys, fixed separators),
    so the field ordering in the source documents does not affect the key.
    """
    canonical = json.dumps(raw, sort_keys=True, separators=(',', ':'), ensure_ascii=True)
    digest = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return f'{kind.value}-{digest[:KEY_DIGEST_LENGTH]}'


def parse_handler(raw: Any) -> HandlerSpec:
    """
    Interpret one item of ``spec.handlers`` as a tagged variant.

    Exactly one of the handler-kind fields must be set: zero or many
    are a configuration error of the whole resource, not of this handler.
    """
    if not isinstance(raw, Mapping):
        raise HandlerConfigError(f"Handler specification must be an object, got {raw!r}.")
    kinds = [kind for kind in HandlerKind if raw.get(kind.value) is not None]
    if not kinds:
        raise HandlerConfigError("No handler specified.")
    if len(kinds) > 1:
        names = ', '.join(kind.value for kind in kinds)
        raise HandlerConfigError(f"Ambiguous handler specified: {names}.")
    kind = kinds[0]
    config = raw[kind.value]
    if not isinstance(config, Mapping):
        raise HandlerConfigError(f"Handler {kind.value} must be an object.")
    return HandlerSpec(kind=kind, config=config, raw=raw)


def parse_handlers(raw: Any) -> Sequence[HandlerSpec]:
    if raw is None:
        return []
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise HandlerConfigError("spec.handlers must be a list.")
    return [parse_handler(item) for item in raw]


def get_for_object(body: Mapping[str, Any]) -> ForObject:
    return ForObject.from_spec(body.get('spec', {}).get('forObject'))


def get_interval(body: Mapping[str, Any], *, default: float) -> float:
    """ The reconciliation interval in seconds; raises ``ValueError`` if malformed. """
    raw = body.get('spec', {}).get('interval')
    return default if raw is None else durations.parse_duration(raw)


def get_identity(body: Mapping[str, Any]) -> references.ObjectName:
    meta = body.get('metadata', {})
    return references.ObjectName(namespace=meta.get('namespace', ''), name=meta.get('name', ''))
