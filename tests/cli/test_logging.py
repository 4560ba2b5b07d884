import logging

import pytest

from objecthandler._core.actions.loggers import ObjectFormatter, ObjectJsonFormatter, \
                                                ObjectPrefixingTextFormatter


def _own_formatters():
    return [handler.formatter for handler in logging.getLogger().handlers
            if isinstance(handler.formatter, ObjectFormatter)]


@pytest.mark.parametrize('options, envvars, expected_level', [
    ([], {}, logging.INFO),
    (['--verbose'], {}, logging.DEBUG),
    (['-v'], {}, logging.DEBUG),
    (['--debug'], {}, logging.DEBUG),
    (['-d'], {}, logging.DEBUG),
    (['--quiet'], {}, logging.WARNING),
    (['-q'], {}, logging.WARNING),
    ([], {'OBJECTHANDLER_RUN_VERBOSE': 'true'}, logging.DEBUG),
])
def test_verbosity(invoke, real_run, options, envvars, expected_level):
    result = invoke(['run'] + options, env=envvars)
    assert result.exit_code == 0, result.output
    assert logging.getLogger().level == expected_level


def test_text_format_by_default(invoke, real_run):
    result = invoke(['run'])
    assert result.exit_code == 0, result.output
    assert [type(f) for f in _own_formatters()] == [ObjectPrefixingTextFormatter]


def test_json_format(invoke, real_run):
    result = invoke(['run', '--log-format=json', '--log-refkey=ref'])
    assert result.exit_code == 0, result.output

    formatters = _own_formatters()
    assert [type(f) for f in formatters] == [ObjectJsonFormatter]
    assert formatters[0]._refkey == 'ref'


def test_unknown_format(invoke, real_run):
    result = invoke(['run', '--log-format=xml'])
    assert result.exit_code == 2
    assert not real_run.called
