"""
All configuration flags, options, settings to fine-tune the operator.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).
The CLI options override some of them; see :mod:`objecthandler.cli`.
"""
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the regular API calls, i.e. excluding the watch-streams.
    A hung API server must not block a worker indefinitely.
    """

    connect_timeout: float | None = None
    """
    A timeout for the initial connection establishment of the API calls.
    If not set, the ``request_timeout`` limits the whole request only.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5, 8)
    """
    Backoff intervals in case of networking errors and server-side errors (5xx).

    Every next retry waits for the next value. When the values are over,
    the request fails and the error is escalated to the caller.
    To disable the retries, set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """


@dataclasses.dataclass
class QueueingSettings:
    """
    Settings for the reconciliation queue and its workers.
    """

    worker_limit: int = 4
    """
    How many reconciliations can run simultaneously (for different objects).
    The same object is never reconciled by two workers at the same time.
    """

    exit_timeout: float = 2.0
    """
    How long to wait for the running reconciliations to finish at exit
    before they are cancelled.
    """


@dataclasses.dataclass
class ReconcilingSettings:

    default_interval: float = 30
    """
    How often (in seconds) an object is re-reconciled if it does not say so
    in its ``spec.interval``, or if the interval is malformed.
    """

    handler_timeout: float | None = 60
    """
    For how long (in seconds) a single handler can run before it is considered
    failed. Hung external systems must not block the workers indefinitely.
    """

    error_backoffs: Iterable[float] = (1, 2, 5, 10, 30, 60, 120, 300)
    """
    Backoff intervals for re-reconciliation after failed passes, e.g. when the
    status cannot be persisted. Every further error of the same object leads
    to the next, bigger delay; the last value repeats; a success resets it.
    """

    condition_type: str = 'Ready'
    """
    The type of the status condition that reflects the reconciliation outcome.
    """


@dataclasses.dataclass
class ResourceSettings:
    """
    The custom resource served by this operator.
    """
    group: str = 'templates.kluctl.io'
    version: str = 'v1alpha1'
    plural: str = 'objecthandlers'
    kind: str = 'ObjectHandler'


@dataclasses.dataclass
class OperatorSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    reconciling: ReconcilingSettings = dataclasses.field(default_factory=ReconcilingSettings)
    resource: ResourceSettings = dataclasses.field(default_factory=ResourceSettings)
