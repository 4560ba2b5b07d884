"""
The reconciliation queue, its workers, and the watchers feeding it.

Every watched resource kind is streamed in a separate asyncio task
in a never-ending loop (the watcher). Its events are converted by a processor
to the identities of the ``ObjectHandler`` instances to reconcile, which are
put into the single reconciliation queue.

The queue is consumed by a limited pool of workers. The queue de-duplicates
the keys: many events for the same instance lead to one reconciliation.
The same instance is never reconciled by two workers at the same time:
the keys re-added while being reconciled are deferred until it is done.

The requeues (by interval or after failures) are delayed additions
of the same keys: only the earliest pending one is kept for every key.
"""
import asyncio
import collections
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Protocol

from objecthandler._cogs.clients import watching
from objecthandler._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

QueueKey = references.ObjectName


class WatchStreamProcessor(Protocol):
    async def __call__(
            self,
            *,
            raw_event: bodies.RawEvent,
    ) -> None:
        ...


class ReconcileProcessor(Protocol):
    async def __call__(
            self,
            key: QueueKey,
    ) -> float | None:  # the requeue delay, if any.
        ...


class ReconcileQueue:
    """
    A de-duplicating work queue with delayed additions and failure backoffs.
    """

    def __init__(
            self,
            *,
            error_backoffs: Iterable[float] = (),
    ) -> None:
        super().__init__()
        self._error_backoffs = list(error_backoffs)
        self._queue: collections.deque[QueueKey] = collections.deque()
        self._dirty: set[QueueKey] = set()
        self._processing: set[QueueKey] = set()
        self._timers: dict[QueueKey, asyncio.TimerHandle] = {}
        self._due: dict[QueueKey, float] = {}
        self._failures: dict[QueueKey, int] = {}
        self._wakeup = asyncio.Event()
        self._closed = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, key: QueueKey) -> None:
        """ Queue the key now, unless it is already queued (then, it is a no-op). """
        if self._closed or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._wakeup.set()

    def add_after(self, key: QueueKey, delay: float) -> None:
        """ Queue the key later. Of all pending delayed additions, the earliest one wins. """
        if self._closed:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._due.get(key)
        if existing is not None and existing <= when:
            return

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._due[key] = when
        self._timers[key] = loop.call_at(when, self._fire, key)

    def add_rate_limited(self, key: QueueKey) -> float:
        """ Queue the key after the next delay of the failure backoffs; return the delay. """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        backoffs = self._error_backoffs or [0]
        delay = backoffs[min(failures, len(backoffs) - 1)]
        self.add_after(key, delay)
        return delay

    def due(self, key: QueueKey) -> float | None:
        """ The loop time when the key is going to be queued, if scheduled. """
        return self._due.get(key)

    def failures(self, key: QueueKey) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: QueueKey) -> None:
        """ Cancel the delayed additions of the key and reset its failure backoff. """
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._due.pop(key, None)
        self._failures.pop(key, None)

    async def get(self) -> QueueKey | None:
        """ Wait for the next key to process; ``None`` if the queue is closed. """
        while not self._queue:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._closed:
            return None
        key = self._queue.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: QueueKey) -> None:
        """ Mark the key as processed; re-queue it if it was re-added meanwhile. """
        self._processing.discard(key)
        if key in self._dirty and not self._closed:
            self._queue.append(key)
            self._wakeup.set()

    def close(self) -> None:
        """ Stop delivering the keys: the workers waiting for them will exit. """
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._due.clear()
        self._wakeup.set()

    def _fire(self, key: QueueKey) -> None:
        self._timers.pop(key, None)
        self._due.pop(key, None)
        self.add(key)


async def worker(
        *,
        queue: ReconcileQueue,
        processor: ReconcileProcessor,
) -> None:
    """
    A single worker of the reconciliation queue, running in its own task.

    On success, the key's failure backoff is reset and the key is requeued
    after the delay the processor asks for (if any). On failure, the key
    is requeued after the next delay of the failure backoffs.
    """
    while True:
        key = await queue.get()
        if key is None:
            break
        try:
            delay = await processor(key)
        except Exception as e:
            backoff = queue.add_rate_limited(key)
            logger.exception(f"Reconciliation of {key} has failed; retrying in {backoff}s: {e}")
        else:
            queue.forget(key)
            if delay is not None:
                queue.add_after(key, delay)
        finally:
            queue.done(key)


async def watcher(
        *,
        resource: references.Resource,
        stream: AsyncIterator[watching.Bookmark | bodies.RawEvent],
        processor: WatchStreamProcessor,
) -> None:
    """
    Consume a watch-stream and feed every event to the processor.

    The processor is expected to be fast: it only maps the events to the keys
    of the reconciliation queue. Its failures are logged, and the stream goes on:
    one malformed object must not stop the watching of the whole resource kind.
    """
    async for raw_event in stream:

        # The listing is over (even if it was empty); this is only worth logging.
        if raw_event is watching.Bookmark.LISTED:
            logger.debug(f"The initial listing of {resource!r} is over.")
            continue
        if isinstance(raw_event, watching.Bookmark):
            continue

        try:
            await processor(raw_event=raw_event)
        except Exception as e:
            logger.exception(f"Failed to process an event of {resource!r}: {e}")
