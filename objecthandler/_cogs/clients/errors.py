"""
The errors reported by the Kubernetes API.

The reconciliation treats some of them specially: e.g. a missing target
(HTTP 404) becomes a ``NotFound`` condition, a deleted ``ObjectHandler``
is forgotten, and the server-side errors (HTTP 5xx) are retried by the client.
To distinguish them without looking into the HTTP details, every error
status has its own class here, with the API's own explanation attached:
the ``Status`` object from the response, if the server has sent one.

The networking errors (connectivity, SSL, timeouts) are not wrapped: they
come from aiohttp as they are. The aiohttp's own response error is chained
as the cause of the raised API error.
"""
import collections.abc
import json
from collections.abc import Collection

import aiohttp
from typing_extensions import Literal, TypedDict


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


class RawStatus(TypedDict):
    """ The ``Status`` object of ``meta/v1``, as sent with the failed responses. """
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):

    def __init__(
            self,
            payload: RawStatus | None,
            *,
            status: int,
    ) -> None:
        message = payload.get('message') if payload else None
        super().__init__(message or f"HTTP {status}", payload)
        self._status = status
        self._payload = payload

    def __str__(self) -> str:
        return self.message or f"API error with HTTP status {self._status}"

    @property
    def status(self) -> int:
        return self._status

    @property
    def code(self) -> int | None:
        return self._payload.get('code') if self._payload else None

    @property
    def message(self) -> str | None:
        return self._payload.get('message') if self._payload else None

    @property
    def details(self) -> RawStatusDetails | None:
        return self._payload.get('details') if self._payload else None


class APIClientError(APIError):
    """ HTTP 4xx: repeating the same request would not help. """


class APIServerError(APIError):
    """ HTTP 5xx: the request can succeed if repeated later. """


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass


class APIConflictError(APIClientError):
    pass


SPECIFIC_ERRORS: dict[int, type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
}


def get_error_class(status: int) -> type[APIError]:
    default = APIClientError if status < 500 else APIServerError
    return SPECIFIC_ERRORS.get(status, default)


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Raise the API error matching the response's status, if it is a failure.
    """
    if response.status < 400:
        return

    # The body must be read now: raising below releases the response.
    payload: RawStatus | None
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        payload = None

    # Only the Status objects are kept: other bodies might contain the objects' data (e.g. secrets).
    if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
        payload = None

    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(payload, status=response.status) from e
