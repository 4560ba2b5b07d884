"""
The main module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the operator's top-level interface,
# as it is seen by the embedding code and the tests. So, we export the names.

from objecthandler._cogs.configs.configuration import (
    OperatorSettings,
)
from objecthandler._cogs.helpers.typedefs import (
    Logger,
)
from objecthandler._cogs.helpers.versions import (
    version as __version__,
)
from objecthandler._cogs.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
)
from objecthandler._cogs.clients.discovery import (
    ResourceDiscoveryError,
)
from objecthandler._cogs.clients.repository import (
    ObjectRepository,
)
from objecthandler._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from objecthandler._cogs.structs.objecthandlers import (
    HandlerKind,
    HandlerSpec,
    HandlerStatus,
    HandlerConfigError,
    InvalidReferenceError,
    ForObject,
)
from objecthandler._cogs.structs.references import (
    GroupVersionKind,
    ObjectName,
    Resource,
)
from objecthandler._core.actions.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from objecthandler._core.actions.pipeline import (
    HandlersFailedError,
    PipelineOutcome,
    run_handlers,
)
from objecthandler._core.intents.handlers import (
    Handler,
    HandlerRegistry,
    default_registry,
)
from objecthandler._core.reactor.indexing import (
    ReferenceIndex,
)
from objecthandler._core.reactor.queueing import (
    ReconcileQueue,
)
from objecthandler._core.reactor.reconciling import (
    Reconciler,
    TargetNotFoundError,
)
from objecthandler._core.reactor.running import (
    run,
    operator,
    spawn_tasks,
)
from objecthandler._core.reactor.watches import (
    WatchRegistry,
)
from objecthandler._kits import (
    gitlab,  # registers the built-in handlers in the default registry
)

__all__ = [
    'OperatorSettings',
    'Logger',
    'APIError',
    'APIClientError',
    'APIServerError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIConflictError',
    'ResourceDiscoveryError',
    'ObjectRepository',
    'LoginError',
    'ConnectionInfo',
    'HandlerKind',
    'HandlerSpec',
    'HandlerStatus',
    'HandlerConfigError',
    'InvalidReferenceError',
    'ForObject',
    'GroupVersionKind',
    'ObjectName',
    'Resource',
    'configure',
    'LogFormat',
    'ObjectLogger',
    'HandlersFailedError',
    'PipelineOutcome',
    'run_handlers',
    'Handler',
    'HandlerRegistry',
    'default_registry',
    'ReferenceIndex',
    'ReconcileQueue',
    'Reconciler',
    'TargetNotFoundError',
    'run',
    'operator',
    'spawn_tasks',
    'WatchRegistry',
    'gitlab',
]
