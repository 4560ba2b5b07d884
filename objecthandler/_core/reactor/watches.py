"""
The registry of the dynamically started watch-streams of the target kinds.

The kinds of the targets are not known in advance: any ``ObjectHandler``
can refer to any kind. So, the kinds are watched lazily, when the first
instance referring to a kind is reconciled, and then forever.

Every kind is watched at most once, no matter how many workers try to
ensure the watching of the same kind at the same time: the check and the
start of the watch-stream happen under the same lock. The kind is marked
as watched only if the watching has started successfully, so that the failed
attempts (e.g. an unknown kind) are repeated by the next reconciliations.
Once closed, the registry starts no new watch-streams: the late reconciliations
of the stopping operator are ignored.
"""
import asyncio
import logging
from collections.abc import Collection

from objecthandler._cogs.aiokits import aiotasks
from objecthandler._cogs.clients import repository as repositories
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, references
from objecthandler._core.reactor import indexing, queueing

logger = logging.getLogger(__name__)


class WatchRegistry:

    def __init__(
            self,
            *,
            repository: repositories.ObjectRepository,
            index: indexing.ReferenceIndex,
            queue: queueing.ReconcileQueue,
    ) -> None:
        super().__init__()
        self._repository = repository
        self._index = index
        self._queue = queue
        self._lock = asyncio.Lock()
        self._tasks: dict[references.GroupVersionKind, aiotasks.Task] = {}
        self._closed = False

    @property
    def watched(self) -> Collection[references.GroupVersionKind]:
        return frozenset(self._tasks)

    async def ensure_watch(
            self,
            gvk: references.GroupVersionKind,
            *,
            logger: typedefs.Logger = logger,
    ) -> None:
        if self._closed or gvk in self._tasks:
            return

        async with self._lock:
            if self._closed or gvk in self._tasks:
                return

            resource = await self._repository.resolve(gvk, logger=logger)
            if self._closed:  # closed while resolving.
                return
            processor = EventMapper(gvk=gvk, resource=resource, index=self._index, queue=self._queue)
            task = aiotasks.create_guarded_task(
                name=f"watcher for {gvk}",
                logger=logging.getLogger(__name__),
                coro=queueing.watcher(
                    resource=resource,
                    stream=self._repository.watch(resource),
                    processor=processor,
                ),
            )
            task.add_done_callback(lambda t: self._forget(gvk, t))
            self._tasks[gvk] = task
            logger.info(f"Started watching {gvk}.")

    async def close(self) -> None:
        """ Stop all the watch-streams. The registry is not usable afterwards. """
        self._closed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        await aiotasks.stop(tasks, title="watcher", logger=logger, cancelled=True, quiet=True)

    def _forget(self, gvk: references.GroupVersionKind, task: aiotasks.Task) -> None:
        # A failed watch-stream is restarted by the next reconciliation referring to it.
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Watching {gvk} has stopped; restarting it on demand.")
        if self._tasks.get(gvk) is task:
            del self._tasks[gvk]


class EventMapper:
    """
    Map the events of the target objects to the instances referring to them.
    """

    def __init__(
            self,
            *,
            gvk: references.GroupVersionKind,
            resource: references.Resource,
            index: indexing.ReferenceIndex,
            queue: queueing.ReconcileQueue,
    ) -> None:
        super().__init__()
        self.gvk = gvk
        self.resource = resource
        self.index = index
        self.queue = queue

    async def __call__(self, *, raw_event: bodies.RawEvent) -> None:
        body = raw_event['object']
        namespaced = self.resource.namespaced is not False and bool(
            body.get('metadata', {}).get('namespace'))
        for key in self.index.lookup(body, gvk=self.gvk, namespaced=namespaced):
            self.queue.add(key)
