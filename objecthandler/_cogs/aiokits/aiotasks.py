"""
Helpers for orchestrating asyncio tasks.

The operator consists of a few long-living tasks: the instances' watcher,
the watchers of the target kinds (started on demand), and the workers of
the reconciliation queue. All of them are expected to run until cancelled,
so their unexpected exits and failures are logged as soon as they happen,
not only when the operator is stopping and collects their results.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from objecthandler._cogs.helpers import typedefs

# The tasks are generic only for the type-checkers, not at runtime.
if TYPE_CHECKING:
    Task = asyncio.Task[Any]
else:
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    Run a task's coroutine and log how it has ended.

    The failures are logged and re-raised to the task's owner.
    The normal exits are warned about, unless the task is finishable
    (e.g. the workers, which exit when the queue is closed).
    """
    title = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    """ Start a named task with its ending logged; see :func:`guard`. """
    return asyncio.create_task(
        guard(coro, name, finishable=finishable, logger=logger),
        name=name,
    )


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    """ Same as :func:`asyncio.wait`, but also accepts no tasks at all. """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout, return_when=return_when)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until all of them have exited.

    There is no timeout here: the tasks are cancelled, and they should react.
    If the stopping itself is cancelled (e.g. on the second Ctrl+C),
    the still running tasks are left behind and reported.
    In the quiet mode, the normal stopping is not logged.
    """
    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{title.capitalize()} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    how = 'cancelling' if cancelled else 'finishing'
    try:
        done, pending = await wait(tasks)
    except asyncio.CancelledError:
        pending = {task for task in tasks if not task.done()}
        if logger is not None:
            logger.debug(f"{title.capitalize()} tasks are interrupted while {how}; "
                         f"tasks left: {pending!r}")
        raise

    if logger is not None and not quiet:
        logger.debug(f"{title.capitalize()} tasks are stopped: {how} normally.")
    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """ Raise the first failure of the finished tasks, if any; ignore the cancellations. """
    for task in tasks:
        if not task.cancelled():
            task.result()
