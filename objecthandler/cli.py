import functools
from collections.abc import Callable
from typing import Any

import click

from objecthandler._cogs.configs import configuration
from objecthandler._cogs.helpers import durations, versions
from objecthandler._core.actions import loggers
from objecthandler._core.reactor import running


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


class DurationParamType(click.ParamType):
    name = 'duration'

    def convert(self, value: Any, param: Any, ctx: Any) -> float:
        if isinstance(value, float):
            return value
        try:
            return durations.parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(version=versions.version or 'unknown', prog_name='objecthandler')
@click.group(name='objecthandler', context_settings=dict(
    auto_envvar_prefix='OBJECTHANDLER',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('-n', '--namespace', type=str)
@click.option('--workers', type=click.IntRange(min=1))
@click.option('--interval', type=DurationParamType(),
              help="The default reconciliation interval, e.g. 30s or 5m.")
@click.option('--handler-timeout', type=DurationParamType(),
              help="The time limit of a single handler's execution.")
def run(
        namespace: str | None,
        clusterwide: bool,
        workers: int | None,
        interval: float | None,
        handler_timeout: float | None,
) -> None:
    """ Start the operator and reconcile the ObjectHandlers until stopped. """
    if namespace and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")

    settings = configuration.OperatorSettings()
    if workers is not None:
        settings.queueing.worker_limit = workers
    if interval is not None:
        settings.reconciling.default_interval = interval
    if handler_timeout is not None:
        settings.reconciling.handler_timeout = handler_timeout

    return running.run(
        settings=settings,
        namespace=namespace or None,
        clusterwide=clusterwide,
    )
