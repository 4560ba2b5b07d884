"""
The reconciliation of one ``ObjectHandler`` instance, triggered by its key.

A reconciliation pass is idempotent and level-based: it does not matter
what has triggered it (the instance's own change, its target's change, or
a scheduled requeue), it always does the same:

* Fetch the instance; if it is gone, forget it and stop.
* Ensure that the target's kind is watched, and fetch the target.
* Run the handlers against the target (see :mod:`objecthandler._core.actions.pipeline`).
* Reflect the outcome in the ``Ready`` condition and the per-handler statuses.
* Persist the status as one merge-patch against the status as it was fetched.
* Ask to be requeued after the instance's interval (unless it is zero).

The errors of the target fetching and of the handlers are reflected
in the status, and are not escalated. The errors of persisting the status
are escalated to the queue's worker, which retries with backoffs.
"""
import asyncio
import copy
import logging
from typing import Any

import aiohttp

from objecthandler._cogs.clients import discovery, errors, repository as repositories
from objecthandler._cogs.configs import configuration
from objecthandler._cogs.structs import bodies, conditions, objecthandlers, patches, references
from objecthandler._core.actions import loggers, pipeline
from objecthandler._core.intents import handlers
from objecthandler._core.reactor import indexing, queueing, watches

logger = logging.getLogger(__name__)

REASON_SUCCESS = 'Success'
REASON_ERROR = 'Error'
REASON_NOT_FOUND = 'NotFound'


class TargetNotFoundError(Exception):
    """ Raised when the object referenced in ``spec.forObject`` is absent. """


# The errors of one pass that are reflected in the status instead of being escalated.
PASS_ERRORS = (
    TargetNotFoundError,
    objecthandlers.InvalidReferenceError,
    objecthandlers.HandlerConfigError,
    pipeline.HandlersFailedError,
    discovery.ResourceDiscoveryError,
    errors.APIError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


def make_resource(settings: configuration.OperatorSettings) -> references.Resource:
    """ The served custom resource: known in advance, no discovery needed. """
    return references.Resource(
        group=settings.resource.group,
        version=settings.resource.version,
        plural=settings.resource.plural,
        kind=settings.resource.kind,
        namespaced=True,
        subresources=frozenset({'status'}),
    )


class Reconciler:

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            repository: repositories.ObjectRepository,
            index: indexing.ReferenceIndex,
            queue: queueing.ReconcileQueue,
            watches: watches.WatchRegistry,
            registry: handlers.HandlerRegistry,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.repository = repository
        self.index = index
        self.queue = queue
        self.watches = watches
        self.registry = registry
        self.resource = make_resource(settings)

    async def __call__(self, key: references.ObjectName) -> float | None:
        return await self.reconcile(key)

    async def reconcile(self, key: references.ObjectName) -> float | None:
        """
        Reconcile one instance; return the delay to requeue it, or ``None`` if not needed.
        """
        body = await self.repository.get(self.resource, namespace=key.namespace, name=key.name)
        if body is None:
            logger.debug(f"{self.settings.resource.kind} {key} is gone; forgetting it.")
            self.queue.forget(key)
            self.index.forget(key)
            return None

        self.index.replace(body)
        object_logger = loggers.ObjectLogger(body=body)

        # Copy-on-read, merge-on-write: the status as fetched is the patch's base.
        old_status: dict[str, Any] = copy.deepcopy(dict(body.get('status') or {}))
        new_status: dict[str, Any] = copy.deepcopy(old_status)
        statuses: list[Any] = list(new_status.get('handlerStatus') or [])
        new_status['handlerStatus'] = statuses

        interval_error: str | None = None
        try:
            interval = objecthandlers.get_interval(
                body, default=self.settings.reconciling.default_interval)
        except ValueError as e:
            interval_error = f"Invalid spec.interval: {e}"
            interval = self.settings.reconciling.default_interval

        condition: conditions.Condition
        try:
            target = await self._fetch_target(body, logger=object_logger)
            outcome = await pipeline.run_handlers(
                body=body,
                target=target,
                statuses=statuses,
                repository=self.repository,
                registry=self.registry,
                settings=self.settings,
                logger=object_logger,
            )
            outcome.raise_for_errors()
        except TargetNotFoundError as e:
            object_logger.warning(str(e))
            condition = self._make_condition(body, 'False', REASON_NOT_FOUND, str(e))
        except PASS_ERRORS as e:
            object_logger.error(f"Reconciliation has failed: {e}")
            condition = self._make_condition(body, 'False', REASON_ERROR, str(e) or repr(e))
        else:
            if interval_error is not None:
                condition = self._make_condition(body, 'False', REASON_ERROR, interval_error)
            else:
                condition = self._make_condition(body, 'True', REASON_SUCCESS, REASON_SUCCESS)

        conditions_list = list(new_status.get('conditions') or [])
        conditions.set_condition(conditions_list, condition)
        new_status['conditions'] = conditions_list
        if not statuses:
            del new_status['handlerStatus']

        patch = patches.make_status_patch(old_status, new_status)
        if patch:
            object_logger.debug(f"Patching the status with: {patch!r}")
            patched = await self.repository.patch_status(
                self.resource, namespace=key.namespace, name=key.name,
                patch=patch, logger=object_logger)
            if patched is None:
                object_logger.debug("The object is gone while reconciling; forgetting it.")
                self.queue.forget(key)
                self.index.forget(key)
                return None

        # A zero interval disables the periodic requeueing: only the events trigger the passes.
        return interval if interval > 0 else None

    async def _fetch_target(
            self,
            body: bodies.RawBody,
            *,
            logger: loggers.ObjectLogger,
    ) -> bodies.RawBody:
        for_object = objecthandlers.get_for_object(body)
        gvk = for_object.gvk
        await self.watches.ensure_watch(gvk, logger=logger)

        resource = await self.repository.resolve(gvk, logger=logger)
        identity = objecthandlers.get_identity(body)
        namespace = for_object.resolve_namespace(identity.namespace) if resource.namespaced else None
        target = await self.repository.get(resource, namespace=namespace, name=for_object.name,
                                           logger=logger)
        if target is None:
            where = f"{namespace}/{for_object.name}" if namespace else for_object.name
            raise TargetNotFoundError(f"{for_object.kind} {where} not found.")
        return target

    def _make_condition(
            self,
            body: bodies.RawBody,
            status: conditions.ConditionStatus,
            reason: str,
            message: str,
    ) -> conditions.Condition:
        condition = conditions.Condition(
            type=self.settings.reconciling.condition_type,
            status=status,
            reason=reason,
            message=message,
        )
        generation = body.get('metadata', {}).get('generation')
        if generation is not None:
            condition['observedGeneration'] = generation
        return condition
