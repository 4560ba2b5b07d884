import pytest

from objecthandler._cogs.configs.configuration import OperatorSettings


@pytest.mark.parametrize('kwarg, value, options, envvars', [
    ('namespace', None, [], {}),
    ('namespace', 'ns', ['-n', 'ns'], {}),
    ('namespace', 'ns', ['--namespace=ns'], {}),
    ('namespace', 'ns', [], {'OBJECTHANDLER_RUN_NAMESPACE': 'ns'}),

    ('clusterwide', False, [], {}),
    ('clusterwide', True, ['-A'], {}),
    ('clusterwide', True, ['--all-namespaces'], {}),
], ids=[
    'default-namespace', 'opt-short-n', 'opt-long-namespace', 'env-namespace',
    'default-clusterwide', 'opt-short-A', 'opt-long-all-namespaces',
])
def test_options_passed_to_realrun(invoke, options, envvars, kwarg, value, real_run):
    result = invoke(['run'] + options, env=envvars)
    assert result.exit_code == 0, result.output
    assert real_run.called
    assert real_run.call_args[1][kwarg] == value


def test_namespace_conflicts_with_clusterwide(invoke, real_run):
    result = invoke(['run', '-n', 'ns', '-A'])
    assert result.exit_code == 2
    assert 'Either --namespace or --all-namespaces' in result.output
    assert not real_run.called


def test_defaults_are_kept(invoke, real_run):
    result = invoke(['run'])
    assert result.exit_code == 0, result.output

    settings = real_run.call_args[1]['settings']
    defaults = OperatorSettings()
    assert isinstance(settings, OperatorSettings)
    assert settings.queueing.worker_limit == defaults.queueing.worker_limit
    assert settings.reconciling.default_interval == defaults.reconciling.default_interval
    assert settings.reconciling.handler_timeout == defaults.reconciling.handler_timeout


@pytest.mark.parametrize('options, attrs, value', [
    (['--workers', '8'], ('queueing', 'worker_limit'), 8),
    (['--interval', '5m'], ('reconciling', 'default_interval'), 300.0),
    (['--interval', '1m30s'], ('reconciling', 'default_interval'), 90.0),
    (['--handler-timeout', '250ms'], ('reconciling', 'handler_timeout'), 0.25),
])
def test_options_override_settings(invoke, real_run, options, attrs, value):
    result = invoke(['run'] + options)
    assert result.exit_code == 0, result.output

    section, name = attrs
    settings = real_run.call_args[1]['settings']
    assert getattr(getattr(settings, section), name) == value


@pytest.mark.parametrize('options', [
    ['--interval', 'soon'],
    ['--interval', '10'],
    ['--handler-timeout', ''],
    ['--workers', '0'],
])
def test_invalid_options(invoke, real_run, options):
    result = invoke(['run'] + options)
    assert result.exit_code == 2
    assert not real_run.called
