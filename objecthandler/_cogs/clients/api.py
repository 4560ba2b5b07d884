"""
The low-level HTTP calls to the Kubernetes API, shared by all the clients.

The calls go through the session of the current API context (the credentials
of the login); the relative URLs are resolved against its server.
Only the transient failures are retried: the connection errors, the timeouts,
and the server-side errors (HTTP 5xx). The client-side errors (HTTP 4xx),
such as a deleted ``ObjectHandler`` or a missing target, are raised at once:
the reconciliation handles them, and repeating the request would not help.
"""
import asyncio
import collections.abc
import itertools
import json
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

import aiohttp

from objecthandler._cogs.clients import auth, errors
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs

RETRYABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


def _get_backoffs(settings: configuration.OperatorSettings) -> tuple[Iterable[float], int | None]:
    backoffs = settings.networking.error_backoffs
    if not isinstance(backoffs, collections.abc.Iterable):
        backoffs = [backoffs]
    attempts = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    return backoffs, attempts


@auth.authenticated
async def request(
        method: str,
        url: str,  # absolute, or relative to the server's root.
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        context: auth.APIContext | None = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Send a request and return the unread response, retrying on transient errors.
    """
    if context is None:
        raise RuntimeError("API context is not injected by the decorator.")

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    what = f"{method.upper()} {url}"
    backoffs, attempts = _get_backoffs(settings)
    backoff: float | None
    for attempt, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        idx = f"#{attempt}/{attempts}" if attempts is not None else f"#{attempt}"
        if attempt > 1:
            logger.debug(f"Request attempt {idx}: {what}")
        try:
            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)  # the body stays unread for the caller.
        except RETRYABLE_ERRORS as e:
            if backoff is None:
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoff)
        else:
            if attempt > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("No request attempts were made.")  # unreachable: the last one raises.


async def _request_json(
        method: str,
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> Any:
    response = await request(method, url, payload=payload, headers=headers, timeout=timeout,
                             settings=settings, logger=logger)
    async with response:
        return await response.json()


async def get(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('get', url, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def patch(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('patch', url, payload=payload, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def stream(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """ Yield the JSON documents of a line-delimited response (e.g. of a watch-request). """
    response = await request('get', url, headers=headers, timeout=timeout,
                             settings=settings, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Split the response's content into non-empty lines.

    The aiohttp's own line iteration is limited to 128 KB per line.
    The watched objects (e.g. big ConfigMaps or CRDs as targets) can be
    several megabytes long, so the lines are split from the raw chunks here.
    """
    buffer = b''
    async for chunk in content.iter_chunked(chunk_size):
        buffer += chunk
        del chunk  # release the memory of big objects as soon as possible.

        lines = buffer.split(b'\n')
        buffer = lines.pop()  # the incomplete tail, if any.
        for line in lines:
            if line:
                yield line
        del lines

    if buffer:
        yield buffer
