import asyncio
import copy
import inspect
import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from objecthandler._cogs.clients import auth
from objecthandler._cogs.clients.discovery import ResourceDiscoveryError
from objecthandler._cogs.clients.repository import SecretNotFoundError
from objecthandler._cogs.configs.configuration import OperatorSettings
from objecthandler._cogs.structs.credentials import ConnectionInfo
from objecthandler._cogs.structs.objecthandlers import HandlerKind
from objecthandler._cogs.structs.references import GroupVersionKind, Resource
from objecthandler._core.intents import handlers
from objecthandler._core.intents.handlers import HandlerRegistry


# Make all tests in this directory and below asyncio-compatible by default.
# Due to how pytest-async checks for these markers, they should be added as early as possible.
@pytest.hookimpl(hookwrapper=True)
def pytest_pycollect_makeitem(collector, name, obj):
    if collector.funcnamefilter(name) and inspect.iscoroutinefunction(obj):
        pytest.mark.asyncio(obj)
    yield


@pytest.fixture(autouse=True)
def _caplog_all_levels(caplog):
    caplog.set_level(0)


@pytest.fixture()
def settings():
    settings = OperatorSettings()
    settings.networking.error_backoffs = []
    settings.reconciling.error_backoffs = [1, 2, 5]
    settings.watching.reconnect_backoff = 0
    settings.queueing.exit_timeout = 0.1
    return settings


#
# Mocks for Kubernetes API clients (any of them). Reasons:
# 1. We do not test the clients, we test the layers on top of them,
#    so everything low-level should be mocked and assumed to be functional.
# 2. No external calls must be made under any circumstances.
#    The unit-tests must be fully isolated from the environment.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def api_context(hostname):
    context = auth.APIContext(ConnectionInfo(server=f'https://{hostname}'))
    try:
        yield context
    finally:
        await context.close()


@pytest.fixture()
def enforced_context(api_context, mocker):
    """
    Patch the API context for all the API calls, regardless of the current task.

    The context variable itself is not set: the async fixtures and the tests
    can run in different copies of the contexts, depending on the tooling.
    """
    fake_var = MagicMock(get=MagicMock(return_value=api_context))
    mocker.patch.object(auth, 'context_var', fake_var)
    return api_context


@pytest.fixture()
def resp_mocker(enforced_context, aresponses):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The value of the fixture is a function, which return a coroutine mock.
    That coroutine mock should be passed to `aresponses.add` as a response
    callback function. When called, it calls the mock defined by the function's
    arguments (specifically, return_value or side_effects).

    The payloads of the requests (if any) are remembered in ``.payloads``.

    Sample usage::

        def test_me(resp_mocker):
            response = aiohttp.web.json_response({'a': 'b'})
            callback = resp_mocker(return_value=response)
            aresponses.add(hostname, '/path/', 'get', callback)
            do_something()
            assert callback.called
            assert callback.call_count == 1
    """
    def resp_maker(*args, **kwargs):
        actual_response = MagicMock(*args, **kwargs)
        payloads = []

        async def resp_mock_effect(request):
            text = await request.text()
            try:
                payloads.append(json.loads(text) if text else None)
            except json.JSONDecodeError:
                payloads.append(text)

            # Every response object can be sent only once.
            # Re-create it on every call via the mock's own side effects/return value.
            return actual_response()

        mock = AsyncMock(side_effect=resp_mock_effect)
        mock.payloads = payloads
        return mock
    return resp_maker


#
# An in-memory repository of objects, for the tests above the API clients.
#

def _merge(target, patch):
    for key, val in patch.items():
        if val is None:
            target.pop(key, None)
        elif isinstance(val, dict) and isinstance(target.get(key), dict):
            _merge(target[key], val)
        else:
            target[key] = val


class FakeRepository:
    """
    The same methods as in :class:`ObjectRepository`, but with no API calls.

    The watch-streams are endless; the events can be injected into them
    with :meth:`emit`.
    """

    def __init__(self):
        super().__init__()
        self.resources = {}
        self.objects = {}
        self.secrets = {}
        self.patches = []
        self.resolved = []
        self.watched = []
        self.streams = {}

    def add_kind(self, gvk, *, plural=None, namespaced=True):
        resource = Resource(group=gvk.group, version=gvk.version, kind=gvk.kind,
                            plural=plural or f'{gvk.kind.lower()}s',
                            namespaced=namespaced, subresources=frozenset({'status'}))
        self.resources[gvk] = resource
        return resource

    def add(self, body, *, namespaced=True):
        gvk = GroupVersionKind.from_api_version(body['apiVersion'], body['kind'])
        if gvk not in self.resources:
            self.add_kind(gvk, namespaced=namespaced)
        namespace = body['metadata'].get('namespace') if namespaced else None
        self.objects[(gvk, namespace, body['metadata']['name'])] = copy.deepcopy(body)

    def remove(self, body, *, namespaced=True):
        gvk = GroupVersionKind.from_api_version(body['apiVersion'], body['kind'])
        namespace = body['metadata'].get('namespace') if namespaced else None
        self.objects.pop((gvk, namespace, body['metadata']['name']), None)

    def stored(self, gvk, namespace, name):
        return self.objects.get((gvk, namespace, name))

    def add_secret(self, *, namespace, name, data):
        self.secrets[(namespace, name)] = dict(data)

    def emit(self, gvk, raw_event):
        self.streams.setdefault(gvk, asyncio.Queue()).put_nowait(raw_event)

    async def resolve(self, gvk, *, logger=None):
        self.resolved.append(gvk)
        await asyncio.sleep(0)  # let the racing coroutines interleave here.
        try:
            return self.resources[gvk]
        except KeyError:
            raise ResourceDiscoveryError(f"Kind {gvk} is not served by the cluster.") from None

    async def get(self, kind, *, namespace, name, logger=None):
        resource = kind if isinstance(kind, Resource) else await self.resolve(kind)
        body = self.objects.get((resource.gvk, namespace, name))
        return copy.deepcopy(body) if body is not None else None

    async def patch_status(self, resource, *, namespace, name, patch, logger=None):
        self.patches.append(copy.deepcopy(dict(patch)))
        body = self.objects.get((resource.gvk, namespace, name))
        if body is None:
            return None
        _merge(body, copy.deepcopy(dict(patch)))
        return copy.deepcopy(body)

    def watch(self, resource):
        self.watched.append(resource)
        return self._stream(resource.gvk)

    async def _stream(self, gvk):
        queue = self.streams.setdefault(gvk, asyncio.Queue())
        while True:
            yield await queue.get()

    async def read_secret(self, *, namespace, name, key, logger=None):
        data = self.secrets.get((namespace, name))
        if data is None:
            raise SecretNotFoundError(f"Secret {namespace}/{name} not found.")
        if key not in data:
            raise SecretNotFoundError(f"Secret {namespace}/{name} has no key {key!r}.")
        return data[key]


@pytest.fixture()
def repository():
    return FakeRepository()


@pytest.fixture()
def registry():
    return HandlerRegistry()


@pytest.fixture()
def make_instance():
    """ A factory of ``ObjectHandler`` bodies with the sensible defaults. """
    def make(name='handler1', namespace='ns1', *, target='app', target_namespace=None,
             kind='Deployment', group='apps', version='v1',
             handlers=None, interval=None, status=None, generation=None):
        for_object = dict(group=group, version=version, kind=kind, name=target)
        if target_namespace is not None:
            for_object['namespace'] = target_namespace
        body = {
            'apiVersion': 'templates.kluctl.io/v1alpha1',
            'kind': 'ObjectHandler',
            'metadata': {'namespace': namespace, 'name': name},
            'spec': {'forObject': for_object, 'handlers': list(handlers or [])},
        }
        if interval is not None:
            body['spec']['interval'] = interval
        if status is not None:
            body['status'] = status
        if generation is not None:
            body['metadata']['generation'] = generation
        return body
    return make


@pytest.fixture()
def make_target():
    """ A factory of the target objects (deployments by default). """
    def make(name='app', namespace='ns1', *, api_version='apps/v1', kind='Deployment',
             conditions=None):
        meta = {'name': name}
        if namespace is not None:
            meta['namespace'] = namespace
        body = {'apiVersion': api_version, 'kind': kind, 'metadata': meta}
        if conditions is not None:
            body['status'] = {'conditions': list(conditions)}
        return body
    return make


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn


#
# Fake handler strategies, for the tests of the pipeline and above it.
#

class FakeHandler:
    """ Does what its config says: fails, hangs, times out on its own, or just records the call. """

    def __init__(self, config, calls):
        super().__init__()
        self.config = config
        self.calls = calls

    async def handle(self, *, repository, target, status, logger):
        self.calls.append(self.config.get('name'))
        if self.config.get('sleep'):
            await asyncio.sleep(self.config['sleep'])
        if self.config.get('fail'):
            raise RuntimeError(self.config['fail'])
        if self.config.get('expire'):
            raise asyncio.TimeoutError(self.config['expire'])


@pytest.fixture()
def calls():
    return []


@pytest.fixture()
def fake_registry(registry, calls):

    async def build(config, *, namespace, repository, settings, logger):
        if config.get('secret'):
            await handlers.resolve_secret(config['secret'], namespace=namespace,
                                          repository=repository, logger=logger)
        return FakeHandler(config, calls)

    registry.register(HandlerKind.PULL_REQUEST_COMMENT)(build)
    registry.register(HandlerKind.PULL_REQUEST_APPROVE)(build)
    return registry
