"""
The watch-streams of the served instances and of the referenced targets.

Every stream starts with a listing of the existing objects: each of them is
yielded as an event without a type, so that the already existing instances
(or the instances of the already existing targets) are queued for a pass
the same way as the newly changed ones. The listing is followed by a marker
and by the server's change events since the listed resource version.

The servers close the change-streams every few minutes; they are reopened
from the last seen resource version. Once that version is expired on
the server ("410 Gone"), the stream starts over with a new listing.
Nothing ends the outermost stream except the fatal errors and the cancellation
of the task that consumes it (e.g. on the operator's exit).
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from typing import cast

import aiohttp

from objecthandler._cogs.clients import api, errors, fetching
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS_CODE = 429
HTTP_GONE_CODE = 410
DEFAULT_RETRY_DELAY_SECONDS = 1
SUPPORTED_EVENT_TYPES = frozenset({'ADDED', 'MODIFIED', 'DELETED'})

# The network failures that only end the current request, not the whole stream.
DISCONNECTION_ERRORS = (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError,
                        asyncio.TimeoutError)


class WatchingError(Exception):
    """
    Raised when the server reports an error in the change-stream other than "410 Gone".
    """


class Bookmark(enum.Enum):
    """ The markers yielded by the streams in addition to the objects' events. """
    LISTED = enum.auto()  # all existing objects are yielded; the changes follow.


def _describe(resource: references.Resource, namespace: references.Namespace) -> str:
    where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
    return f"{resource} {where}"


async def infinite_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        _iterations: int | None = None,  # limits the restarts in tests; unlimited by default.
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    Stream the events of one resource kind until cancelled.

    Every restart (e.g. due to an expired resource version) begins with
    a new listing, so the consumers see the existing objects again.
    The throttling of the API ("429 Too Many Requests") delays the restart
    as long as the server asks; other API errors escape to the consumer.
    """
    what = _describe(resource, namespace)
    logger.debug(f"Starting the watch-stream for {what}.")
    try:
        while _iterations is None or _iterations > 0:
            if _iterations is not None:
                _iterations -= 1
            try:
                async for raw_event in continuous_watch(settings=settings, resource=resource,
                                                        namespace=namespace):
                    yield raw_event
            except errors.APIClientError as e:
                if e.code != HTTP_TOO_MANY_REQUESTS_CODE:
                    raise
                delay = (e.details or {}).get('retryAfterSeconds') or DEFAULT_RETRY_DELAY_SECONDS
                logger.warning(f"The API is throttling the watch-stream for {what}; "
                               f"retrying in {delay} seconds. Details: {e}")
                await asyncio.sleep(delay)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {what}.")


async def continuous_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    List the objects, then follow their changes until the resource version expires.
    """
    try:
        objs, resource_version = await fetching.list_objs(
            logger=logger,
            settings=settings,
            resource=resource,
            namespace=namespace,
        )
        for obj in objs:
            yield {'type': None, 'object': obj}
    except DISCONNECTION_ERRORS:
        return  # the caller restarts with a new listing.

    yield Bookmark.LISTED

    # Each request is closed by the server after its timeout; the stream is resumed
    # from the last seen resource version for as long as the server accepts it.
    while True:
        async for raw_input in watch_objs(settings=settings, resource=resource,
                                          namespace=namespace, since=resource_version):
            raw_type = raw_input['type']
            raw_object = raw_input['object']

            if raw_type == 'ERROR':
                if cast(bodies.RawError, raw_object)['code'] == HTTP_GONE_CODE:
                    logger.debug(f"Restarting the watch-stream for {_describe(resource, namespace)}.")
                    return
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            if raw_type not in SUPPORTED_EVENT_TYPES:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            body = cast(bodies.RawBody, raw_object)
            resource_version = body.get('metadata', {}).get('resourceVersion', resource_version)
            yield cast(bodies.RawEvent, raw_input)


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        since: str | None = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Make one streaming request for the changes of a resource kind.

    The cluster-wide URL is used both for the cluster-scoped kinds
    and for the namespaced kinds when no namespace is given.
    The disconnects end the request silently.
    """
    params: dict[str, str] = {'watch': 'true'}
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = settings.watching.connect_timeout
    if connect_timeout is None:
        connect_timeout = settings.networking.connect_timeout
    if connect_timeout is None:
        connect_timeout = settings.networking.request_timeout

    url = resource.get_url(namespace=namespace if resource.namespaced else None, params=params)
    timeout = aiohttp.ClientTimeout(total=settings.watching.client_timeout,
                                    sock_connect=connect_timeout)
    try:
        async for raw_input in api.stream(url=url, logger=logger, settings=settings,
                                          timeout=timeout):
            yield raw_input
    except DISCONNECTION_ERRORS:
        pass
