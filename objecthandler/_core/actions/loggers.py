"""
The logging of the reconciliation passes, and the logging setup of the operator.

The messages of a pass (including those of its handlers) are logged
via :class:`ObjectLogger`, which attaches the reference of the reconciled
``ObjectHandler`` to every record as ``k8s_ref``. The formatters render it
as a ``[namespace/name]`` prefix in the text formats, or as a separate field
of the JSON records, so that the log collectors can filter by the instance.
"""
import copy
import enum
import logging
from collections.abc import Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, TextIO

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from objecthandler._cogs.helpers import typedefs
from objecthandler._cogs.structs import bodies

logger = logging.getLogger('objecthandler.objects')

DEFAULT_JSON_REFKEY = 'object'

# The JSON severities by the highest level they cover; anything above is fatal.
SEVERITIES = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]

# The libraries that are too chatty for anything but the debug mode.
NOISY_LOGGERS = ['asyncio']


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # a marker only; the JSON records have no format string.


def get_severity(levelno: int) -> str:
    for threshold, severity in SEVERITIES:
        if levelno <= threshold:
            return severity
    return 'fatal'


def render_prefix(ref: Mapping[str, Any]) -> str:
    namespace = ref.get('namespace', '')
    name = ref.get('name', '')
    return f"[{namespace}/{name}]" if namespace else f"[{name}]"


class ObjectFormatter(logging.Formatter):
    """ The base of the operator's own formatters, to recognise them. """


class ObjectTextFormatter(ObjectFormatter, logging.Formatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    """
    JSON records with the instance's reference and the severity as fields.
    """

    def __init__(
            self,
            *args: Any,
            refkey: str | None = None,
            **kwargs: Any,
    ) -> None:
        # The reference goes under its own key, never as the raw attribute.
        kwargs['reserved_attrs'] = set(kwargs.get('reserved_attrs', RESERVED_ATTRS)) | {'k8s_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self._refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, object],
            record: logging.LogRecord,
            message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if hasattr(record, 'k8s_ref'):
            log_record[self._refkey] = getattr(record, 'k8s_ref')
        log_record.setdefault('severity', get_severity(record.levelno))


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, 'k8s_ref'):
            record = copy.copy(record)  # other handlers must see the original message.
            record.msg = f"{render_prefix(getattr(record, 'k8s_ref'))} {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


class ObjectLogger(typedefs.LoggerAdapter):
    """
    The logger of one reconciliation pass of an ``ObjectHandler`` instance.

    It is made from the instance's body at the start of the pass and is given
    to the handlers, so their messages are attributed to that instance too.
    """

    def __init__(self, *, body: Mapping[str, Any]) -> None:
        super().__init__(logger, dict(k8s_ref=bodies.build_object_reference(body)))

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # The per-call extras are added to the reference, not replacing it.
        kwargs["extra"] = dict(self.extra or {}) | kwargs.get('extra', {})
        return msg, kwargs


# Marks the handlers installed by `configure`, so that the repeated calls replace them
# (e.g. in the CLI tests, where the old handlers point to the closed output streams).
if TYPE_CHECKING:
    class _OperatorStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _OperatorStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    formatter = make_formatter(log_format=log_format, log_prefix=log_prefix, log_refkey=log_refkey)
    handler = _OperatorStreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _OperatorStreamHandler)]
    root.addHandler(handler)
    root.setLevel('DEBUG' if debug or verbose else 'WARNING' if quiet else 'INFO')

    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.propagate = bool(debug)
        if not debug:
            noisy.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ObjectFormatter:
    """
    Pick the formatter for the CLI options.

    The prefixes are on by default for the text formats only: in JSON,
    the reference is already a field of its own.
    """
    if log_prefix is None:
        log_prefix = log_format is not LogFormat.JSON

    match log_format:
        case LogFormat.JSON:
            json_cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
            return json_cls(refkey=log_refkey)
        case LogFormat() | str():
            fmt = log_format.value if isinstance(log_format, LogFormat) else log_format
            text_cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
            return text_cls(fmt)
        case _:
            raise ValueError(f"Unsupported log format: {log_format!r}")
