import asyncio
import logging

import pytest

from objecthandler._cogs.aiokits import aiotasks
from objecthandler._cogs.clients import auth
from objecthandler._cogs.structs.credentials import ConnectionInfo
from objecthandler._cogs.structs.references import GroupVersionKind
from objecthandler._core.intents import piggybacking
from objecthandler._core.reactor import indexing, queueing, reconciling, running, watches

logger = logging.getLogger(__name__)

DEPLOYMENT = GroupVersionKind(group='apps', version='v1', kind='Deployment')


@pytest.fixture()
def components(settings, repository, registry):
    index = indexing.ReferenceIndex()
    queue = queueing.ReconcileQueue(error_backoffs=settings.reconciling.error_backoffs)
    registry_of_watches = watches.WatchRegistry(repository=repository, index=index, queue=queue)
    reconciler = reconciling.Reconciler(settings=settings, repository=repository, index=index,
                                        queue=queue, watches=registry_of_watches,
                                        registry=registry)
    return running.Components(settings=settings, repository=repository, index=index, queue=queue,
                              watches=registry_of_watches, reconciler=reconciler)


@pytest.fixture()
def resource(settings):
    return reconciling.make_resource(settings)


async def _until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


def _ready_status(repository, resource):
    body = repository.stored(resource.gvk, 'ns1', 'handler1') or {}
    items = body.get('status', {}).get('conditions', [])
    return items[0]['status'] if items else None


async def test_instances_are_reconciled_on_events(components, repository, resource,
                                                  make_instance, make_target):
    instance = make_instance()
    repository.add(instance)
    repository.add(make_target())
    stop_flag = asyncio.Event()

    tasks = running.spawn_tasks(components, stop_flag=stop_flag)
    repository.emit(resource.gvk, {'type': 'ADDED', 'object': instance})
    await _until(lambda: _ready_status(repository, resource) == 'True')

    assert components.watches.watched == {DEPLOYMENT}
    assert resource in repository.watched

    stop_flag.set()
    await running.run_tasks(tasks, components=components)

    assert all(task.done() for task in tasks)
    assert components.queue.closed
    assert components.watches.watched == set()


async def test_targets_events_trigger_the_reconciliation(components, repository, resource,
                                                         make_instance, make_target):
    instance = make_instance()
    repository.add(instance)
    repository.add_kind(DEPLOYMENT)
    stop_flag = asyncio.Event()

    tasks = running.spawn_tasks(components, stop_flag=stop_flag)
    try:
        repository.emit(resource.gvk, {'type': 'ADDED', 'object': instance})
        await _until(lambda: _ready_status(repository, resource) == 'False')

        target = make_target()
        repository.add(target)
        repository.emit(DEPLOYMENT, {'type': 'ADDED', 'object': target})
        await _until(lambda: _ready_status(repository, resource) == 'True')
    finally:
        stop_flag.set()
        await running.run_tasks(tasks, components=components)


async def test_workers_are_spawned_as_configured(components, settings):
    settings.queueing.worker_limit = 3
    stop_flag = asyncio.Event()
    stop_flag.set()

    tasks = running.spawn_tasks(components, stop_flag=stop_flag)
    names = sorted(task.get_name() for task in tasks)
    await running.run_tasks(tasks, components=components)

    assert names == ['stop-flag checker', 'watcher of instances',
                     'worker #0', 'worker #1', 'worker #2']


async def test_failures_of_tasks_are_reraised(components, assert_logs):
    async def failing():
        raise ValueError("boo!")

    async def eternal():
        await asyncio.Event().wait()

    tasks = [
        aiotasks.create_guarded_task(name="failing task", coro=failing(), logger=logger),
        aiotasks.create_guarded_task(name="eternal task", coro=eternal(), logger=logger),
    ]
    with pytest.raises(ValueError, match=r"boo!"):
        await running.run_tasks(tasks, components=components)

    assert all(task.done() for task in tasks)
    assert tasks[1].cancelled()
    assert_logs([r"Failing task has failed: boo!"])


async def test_operator_logs_in_and_stops(mocker, components, hostname):
    login = mocker.patch.object(piggybacking, 'login',
                                return_value=ConnectionInfo(server=f'https://{hostname}'))
    build = mocker.patch.object(running.Components, 'build', return_value=components)
    contexts = []

    def spawn(components, *, stop_flag):
        contexts.append(auth.context_var.get())
        stop_flag.set()
        return [aiotasks.create_guarded_task(name="stop-flag checker", finishable=True,
                                             coro=stop_flag.wait())]

    mocker.patch.object(running, 'spawn_tasks', side_effect=spawn)

    await running.operator(settings=components.settings, namespace='ns1')

    assert login.called
    assert build.call_args[1]['namespace'] == 'ns1'
    assert len(contexts) == 1
    assert isinstance(contexts[0], auth.APIContext)
    assert contexts[0].session.closed
    with pytest.raises(LookupError):
        auth.context_var.get()


async def test_cluster_wide_serving_is_warned_when_implicit(mocker, components, hostname,
                                                            assert_logs):
    mocker.patch.object(piggybacking, 'login',
                        return_value=ConnectionInfo(server=f'https://{hostname}'))
    mocker.patch.object(running.Components, 'build', return_value=components)
    stop_flag = asyncio.Event()
    stop_flag.set()

    await running.operator(settings=components.settings, stop_flag=stop_flag)

    assert_logs([r"Neither --namespace nor --all-namespaces is specified"])
