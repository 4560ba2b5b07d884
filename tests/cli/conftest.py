import functools
import logging

import click.testing
import pytest

from objecthandler.cli import main


@pytest.fixture(autouse=True)
def _restore_root_logger():
    # The CLI configures the root logger; keep it intact for other tests.
    logger = logging.getLogger()
    original_level = logger.level
    original_handlers = logger.handlers[:]
    yield
    logger.handlers[:] = original_handlers
    logger.setLevel(original_level)


@pytest.fixture()
def runner():
    return click.testing.CliRunner()


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('objecthandler._core.reactor.running.run')
