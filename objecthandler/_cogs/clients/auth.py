"""
The authenticated API context of the running operator.

The context holds one HTTP session made from the credentials of the login
(see :mod:`objecthandler._core.intents.piggybacking`) and the per-session
caches, such as the discovered kinds of the targets. It is stored in
a context variable when the operator starts, so that all the tasks spawned
from there (the watchers, the workers) use the same session without
passing it through every call.
"""
import asyncio
import base64
import contextlib
import functools
import os
import ssl
import tempfile
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, TypeVar, cast

import aiohttp

from objecthandler._cogs.helpers import versions
from objecthandler._cogs.structs import credentials, references

context_var: ContextVar["APIContext"] = ContextVar('context_var')

_F = TypeVar('_F', bound=Callable[..., Any])


def authenticated(fn: _F) -> _F:
    """
    Inject the operator's API context as the ``context`` kwarg, unless passed explicitly.
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if kwargs.get('context') is None:
            try:
                kwargs['context'] = context_var.get()
            except LookupError:
                raise RuntimeError("The API context is not set. Is the operator logged in?")
        return await fn(*args, **kwargs)

    return cast(_F, wrapper)


class APIContext:
    """
    The session to the cluster's API and the caches bound to it.

    The whole operator runs in one event loop, so one session serves all its tasks.
    """

    session: aiohttp.ClientSession
    server: str
    default_namespace: str | None

    def __init__(
            self,
            info: credentials.ConnectionInfo,
    ) -> None:
        super().__init__()
        self.session = self.make_aiohttp_session(info)
        self.session.headers['User-Agent'] = f'objecthandler/{versions.version or "unknown"}'
        self.server = info.server
        self.default_namespace = info.default_namespace

        # The kinds per group-version, as served by the discovery endpoints.
        # The targets can be of any kind, so they are discovered lazily on first use.
        self.discovered: dict[str, dict[str, references.Resource]] = {}
        self.discovery_lock = asyncio.Lock()

    def make_aiohttp_session(self, info: credentials.ConnectionInfo) -> aiohttp.ClientSession:
        auth: aiohttp.BasicAuth | None = None
        if info.username and info.password:
            auth = aiohttp.BasicAuth(info.username, info.password)

        return aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=make_ssl_context(info)),
            headers=make_auth_headers(info),
            auth=auth,
        )

    async def close(self) -> None:
        await self.session.close()


def make_auth_headers(info: credentials.ConnectionInfo) -> dict[str, str]:
    if info.scheme:
        value = f'{info.scheme} {info.token}' if info.token else info.scheme
        return {'Authorization': value}
    elif info.token:
        return {'Authorization': f'Bearer {info.token}'}
    else:
        return {}


def make_ssl_context(info: credentials.ConnectionInfo) -> ssl.SSLContext:
    """
    Build the SSL context for the cluster's CA and the client certificate, if any.

    The certificate and the key given as data (e.g. embedded in a kubeconfig)
    are written to temporary files for the time of loading, since the SSL
    contexts accept only the files for them. No files are written otherwise:
    the operator's filesystem can be read-only.
    """
    with contextlib.ExitStack() as stack:

        def as_path(path: str | None, data: str | bytes | None) -> str | None:
            if path:
                return path
            if data:
                file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
                file.write(decode_to_pem(data).encode('ascii'))
                return file.name
            return None

        cert_path = as_path(info.certificate_path, info.certificate_data)
        pkey_path = as_path(info.private_key_path, info.private_key_data)
        context = ssl.create_default_context(
            purpose=ssl.Purpose.SERVER_AUTH,
            cafile=os.path.expanduser(info.ca_path) if info.ca_path else None,
            cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
        )
        if cert_path and pkey_path:
            context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)

    if info.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def decode_to_pem(data: str | bytes) -> str:
    """ Accept the PEM text as is, or decode it from base64 (as in kubeconfigs). """
    if isinstance(data, str) and data.startswith('-----BEGIN '):
        return data
    elif isinstance(data, bytes) and data.startswith(b'-----BEGIN '):
        return data.decode('ascii')
    else:
        return base64.b64decode(data).decode('ascii')
