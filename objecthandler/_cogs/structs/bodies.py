"""
All the structures coming from/to the Kubernetes API.

Everything marked "raw" is plain unwrapped unprocessed data as JSON-decoded
from the Kubernetes API, usually as retrieved in watching or fetching calls.
"Input" is a parsed JSON as is, while "event" is an "input" without "errors".

For strict type-checking, they are detailed to the per-field level
as used by the operator. The objects can have arbitrary fields at runtime,
which are not declared in the type definitions at type-checking time:
the target objects are of arbitrary kinds and are treated as opaque mappings.
"""
from collections.abc import Mapping
from typing import Any, Union

from typing_extensions import Literal, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

# ``None`` is used for the listing, when the pseudo-watch-stream is simulated.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    generation: int
    labels: Labels
    annotations: Annotations
    resourceVersion: str
    deletionTimestamp: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


# As passed to the operator after processing the errors and special cases.
class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class ObjectReference(TypedDict, total=False):
    apiVersion: str
    kind: str
    namespace: str | None
    name: str
    uid: str


def build_object_reference(body: Mapping[str, Any]) -> ObjectReference:
    """
    Construct an object reference for logging.

    Keep in mind that some fields can be absent: e.g. ``namespace``
    for cluster resources, or e.g. ``apiVersion`` for ``kind: Node``, etc.
    """
    meta = body.get('metadata', {})
    ref = dict(
        apiVersion=body.get('apiVersion'),
        kind=body.get('kind'),
        name=meta.get('name'),
        uid=meta.get('uid'),
        namespace=meta.get('namespace'),
    )
    return ObjectReference(**{key: val for key, val in ref.items() if val})  # type: ignore
