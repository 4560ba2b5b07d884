"""
Execution of the handlers of one ``ObjectHandler`` against its target.

All handler specifications are validated before anything is executed:
a malformed list is a configuration error of the whole resource.
Then, the handlers are built and invoked one by one, in the declared order.

A failure of one handler's execution does not prevent other handlers
from running: the error is stored in that handler's status record,
and collected for the combined outcome. Failures to build a handler
(e.g. unresolvable secrets) are configuration errors: they abort the pass
without pruning, so that the records of the not-yet-visited handlers survive.
"""
import asyncio
import dataclasses
from collections.abc import Mapping, MutableSequence, Sequence
from typing import Any

from objecthandler._cogs.clients import repository as repositories
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies, objecthandlers
from objecthandler._core.intents import handlers


@dataclasses.dataclass(frozen=True)
class HandlerError:
    key: str
    message: str

    def __str__(self) -> str:
        return f"{self.key}: {self.message}"


class HandlersFailedError(Exception):
    """ Some of the handlers have failed in one pass; the message combines all. """

    def __init__(self, errors: Sequence[HandlerError]) -> None:
        super().__init__('; '.join(str(error) for error in errors))
        self.errors = list(errors)


@dataclasses.dataclass(frozen=True)
class PipelineOutcome:
    errors: Sequence[HandlerError]
    pruned: Sequence[str]  # the keys of the removed status records

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise HandlersFailedError(self.errors)


def locate_status(
        statuses: MutableSequence[objecthandlers.HandlerStatus],
        key: str,
) -> objecthandlers.HandlerStatus:
    """ Find the status record of a handler, or create it if absent. """
    for status in statuses:
        if status.get('key') == key:
            return status
    status = objecthandlers.HandlerStatus(key=key)
    statuses.append(status)
    return status


def prune_statuses(
        statuses: MutableSequence[objecthandlers.HandlerStatus],
        keys: set[str],
) -> list[str]:
    """ Remove the records of the handlers which are not in ``spec.handlers`` anymore. """
    pruned = [status.get('key', '') for status in statuses if status.get('key') not in keys]
    statuses[:] = [status for status in statuses if status.get('key') in keys]
    return pruned


async def run_handlers(
        *,
        body: Mapping[str, Any],
        target: bodies.RawBody,
        statuses: MutableSequence[objecthandlers.HandlerStatus],
        repository: repositories.ObjectRepository,
        registry: handlers.HandlerRegistry,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> PipelineOutcome:
    """
    Run all handlers of an ``ObjectHandler`` instance, mutating the statuses in place.

    Raises :class:`HandlerConfigError` on misconfigured handlers. The execution
    failures are not raised, but returned in the outcome.
    """
    specs = objecthandlers.parse_handlers(body.get('spec', {}).get('handlers'))
    namespace = body.get('metadata', {}).get('namespace', '')

    loop = asyncio.get_running_loop()
    visited: set[str] = set()
    errors: list[HandlerError] = []
    for spec in specs:
        handler = await registry.build(spec, namespace=namespace, repository=repository,
                                       settings=settings, logger=logger)

        key = spec.key
        visited.add(key)
        status = locate_status(statuses, key)
        timeout = settings.reconciling.handler_timeout
        started = loop.time()
        try:
            await asyncio.wait_for(
                handler.handle(repository=repository, target=target, status=status, logger=logger),
                timeout=timeout,
            )
        except Exception as e:
            # The handlers' own timeouts (e.g. of HTTP requests) are regular failures.
            if (isinstance(e, asyncio.TimeoutError) and timeout is not None and
                    loop.time() - started >= timeout):
                message = f"Handler timed out after {timeout}s."
                logger.error(f"Handler {key} has failed: {message}")
            else:
                message = str(e) or repr(e)
                logger.exception(f"Handler {key} has failed: {message}")
            status['error'] = message
            errors.append(HandlerError(key=key, message=message))
        else:
            logger.debug(f"Handler {key} succeeded.")
            status['error'] = ''

    pruned = prune_statuses(statuses, visited)
    if pruned:
        logger.debug(f"Pruned the statuses of the removed handlers: {pruned!r}")
    return PipelineOutcome(errors=errors, pruned=pruned)
