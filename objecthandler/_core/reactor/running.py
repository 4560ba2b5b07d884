import asyncio
import contextlib
import dataclasses
import logging
import signal
from collections.abc import Collection, Iterator

from objecthandler._cogs.aiokits import aiotasks
from objecthandler._cogs.clients import auth, repository as repositories
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.structs import bodies, objecthandlers, references
from objecthandler._core.intents import handlers, piggybacking
from objecthandler._core.reactor import indexing, queueing, reconciling, watches

logger = logging.getLogger(__name__)


def run(
        *,
        settings: configuration.OperatorSettings | None = None,
        namespace: references.Namespace = None,
        clusterwide: bool = False,
        registry: handlers.HandlerRegistry | None = None,
        stop_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole operator synchronously.

    This function should be used to run an operator in normal sync mode.
    """
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(operator(
            settings=settings,
            namespace=namespace,
            clusterwide=clusterwide,
            registry=registry,
            stop_flag=stop_flag,
        ))


async def operator(
        *,
        settings: configuration.OperatorSettings | None = None,
        namespace: references.Namespace = None,
        clusterwide: bool = False,
        registry: handlers.HandlerRegistry | None = None,
        stop_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole operator asynchronously.

    This function should be used to run an operator in an asyncio event-loop
    if the operator is orchestrated explicitly and manually.
    """
    settings = settings if settings is not None else configuration.OperatorSettings()
    registry = registry if registry is not None else handlers.default_registry
    stop_flag = stop_flag if stop_flag is not None else asyncio.Event()

    if namespace is None and not clusterwide:
        logger.warning("Neither --namespace nor --all-namespaces is specified; "
                       "serving the whole cluster.")

    info = piggybacking.login(logger=logger)
    context = auth.APIContext(info)
    context_token = auth.context_var.set(context)
    try:
        with _stopping_signals(stop_flag):
            components = Components.build(settings=settings, namespace=namespace, registry=registry)
            tasks = spawn_tasks(components, stop_flag=stop_flag)
            await run_tasks(tasks, components=components)
    finally:
        auth.context_var.reset(context_token)
        await context.close()


@dataclasses.dataclass(frozen=True)
class Components:
    """ The operator's long-living state, shared by all its tasks. """
    settings: configuration.OperatorSettings
    repository: repositories.ObjectRepository
    index: indexing.ReferenceIndex
    queue: queueing.ReconcileQueue
    watches: watches.WatchRegistry
    reconciler: reconciling.Reconciler

    @classmethod
    def build(
            cls,
            *,
            settings: configuration.OperatorSettings,
            namespace: references.Namespace,
            registry: handlers.HandlerRegistry,
    ) -> "Components":
        repository = repositories.ObjectRepository(settings=settings, namespace=namespace)
        index = indexing.ReferenceIndex()
        queue = queueing.ReconcileQueue(error_backoffs=settings.reconciling.error_backoffs)
        registry_of_watches = watches.WatchRegistry(repository=repository, index=index, queue=queue)
        reconciler = reconciling.Reconciler(
            settings=settings,
            repository=repository,
            index=index,
            queue=queue,
            watches=registry_of_watches,
            registry=registry,
        )
        return cls(settings=settings, repository=repository, index=index, queue=queue,
                   watches=registry_of_watches, reconciler=reconciler)


class InstanceMapper:
    """
    Map the events of the ``ObjectHandler`` instances to their own keys.

    The reference index is maintained here too, so that the events
    of the targets find the instances even before they are reconciled.
    """

    def __init__(self, *, index: indexing.ReferenceIndex, queue: queueing.ReconcileQueue) -> None:
        super().__init__()
        self.index = index
        self.queue = queue

    async def __call__(self, *, raw_event: bodies.RawEvent) -> None:
        body = raw_event['object']
        if raw_event['type'] == 'DELETED':
            self.index.discard(body)
        else:
            self.index.replace(body)
        self.queue.add(objecthandlers.get_identity(body))


def spawn_tasks(
        components: Components,
        *,
        stop_flag: asyncio.Event,
) -> Collection[aiotasks.Task]:
    """
    Spawn all the tasks needed to run the operator.

    The tasks are not awaited here; see :func:`run_tasks`.
    The watchers of the target kinds are spawned later, on demand.
    """
    settings = components.settings
    resource = reconciling.make_resource(settings)
    tasks: list[aiotasks.Task] = []

    tasks.append(aiotasks.create_guarded_task(
        name="stop-flag checker", finishable=True, logger=logger,
        coro=stop_flag.wait()))

    tasks.append(aiotasks.create_guarded_task(
        name="watcher of instances", logger=logger,
        coro=queueing.watcher(
            resource=resource,
            stream=components.repository.watch(resource),
            processor=InstanceMapper(index=components.index, queue=components.queue),
        )))

    for idx in range(max(1, settings.queueing.worker_limit)):
        tasks.append(aiotasks.create_guarded_task(
            name=f"worker #{idx}", finishable=True, logger=logger,
            coro=queueing.worker(queue=components.queue, processor=components.reconciler)))

    return tasks


async def run_tasks(
        tasks: Collection[aiotasks.Task],
        *,
        components: Components,
) -> None:
    """
    Run the tasks until one of them exits or fails, then stop all of them.

    The running reconciliations are allowed to finish within the exit timeout.
    The failures of the tasks are re-raised once everything is stopped.
    """
    try:
        done, pending = await aiotasks.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Stop feeding the workers, and let them finish the reconciliations in progress.
        components.queue.close()
        await components.watches.close()
        _, pending = await aiotasks.wait(
            {task for task in tasks if not task.done()},
            timeout=components.settings.queueing.exit_timeout)
        await aiotasks.stop(pending, title="operator", logger=logger, cancelled=True)

    await aiotasks.reraise(done)


@contextlib.contextmanager
def _stopping_signals(stop_flag: asyncio.Event) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in [signal.SIGINT, signal.SIGTERM]:
        try:
            loop.add_signal_handler(signum, stop_flag.set)
        except (NotImplementedError, RuntimeError, ValueError):
            pass  # e.g. on Windows or not in the main thread: only the stop-flag works.
        else:
            installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
