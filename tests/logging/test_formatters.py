import json
import logging.handlers

import pytest

from objecthandler._core.actions.loggers import ObjectJsonFormatter, ObjectLogger, \
                                                ObjectPrefixingJsonFormatter, \
                                                ObjectPrefixingTextFormatter, ObjectTextFormatter

NS_BODY = {
    'kind': 'ObjectHandler',
    'apiVersion': 'templates.kluctl.io/v1alpha1',
    'metadata': {'uid': 'uid1', 'name': 'name1', 'namespace': 'namespace1'},
}
CLUSTER_BODY = {
    'kind': 'ClusterRole',
    'apiVersion': 'rbac.authorization.k8s.io/v1',
    'metadata': {'uid': 'uid1', 'name': 'name1'},
}


def _make_record(body):
    handler = logging.handlers.BufferingHandler(capacity=100)
    logger = ObjectLogger(body=body)
    logger.logger.addHandler(handler)
    try:
        logger.info("hello")
    finally:
        logger.logger.removeHandler(handler)
    return handler.buffer[0]


@pytest.fixture()
def ns_record():
    return _make_record(NS_BODY)


@pytest.fixture()
def cluster_record():
    return _make_record(CLUSTER_BODY)


def test_prefixing_text_formatter_adds_prefixes_when_namespaced(ns_record):
    formatter = ObjectPrefixingTextFormatter()
    assert formatter.format(ns_record) == '[namespace1/name1] hello'


def test_prefixing_text_formatter_adds_prefixes_when_cluster(cluster_record):
    formatter = ObjectPrefixingTextFormatter()
    assert formatter.format(cluster_record) == '[name1] hello'


def test_prefixing_keeps_the_original_record(ns_record):
    ObjectPrefixingTextFormatter().format(ns_record)
    assert ns_record.msg == 'hello'


def test_prefixing_json_formatter_adds_prefixes(ns_record):
    formatter = ObjectPrefixingJsonFormatter()
    decoded = json.loads(formatter.format(ns_record))
    assert decoded['message'] == '[namespace1/name1] hello'


def test_regular_text_formatter_omits_prefixes(ns_record):
    formatter = ObjectTextFormatter()
    assert formatter.format(ns_record) == 'hello'


def test_regular_json_formatter_omits_prefixes(ns_record):
    formatter = ObjectJsonFormatter()
    decoded = json.loads(formatter.format(ns_record))
    assert decoded['message'] == 'hello'
    assert 'k8s_ref' not in decoded
    assert 'timestamp' in decoded


@pytest.mark.parametrize('cls', [ObjectJsonFormatter, ObjectPrefixingJsonFormatter])
@pytest.mark.parametrize('levelno, expected_severity', [
    (0, 'debug'),
    (logging.DEBUG, 'debug'),
    (logging.DEBUG + 1, 'info'),
    (logging.INFO, 'info'),
    (logging.INFO + 1, 'warn'),
    (logging.WARNING, 'warn'),
    (logging.WARNING + 1, 'error'),
    (logging.ERROR, 'error'),
    (logging.ERROR + 1, 'fatal'),
    (logging.FATAL, 'fatal'),
    (999, 'fatal'),
])
def test_json_formatters_add_severity(ns_record, cls, levelno, expected_severity):
    ns_record.levelno = levelno
    ns_record.levelname = 'must-be-irrelevant'
    decoded = json.loads(cls().format(ns_record))
    assert decoded['severity'] == expected_severity


@pytest.mark.parametrize('cls', [ObjectJsonFormatter, ObjectPrefixingJsonFormatter])
def test_json_formatters_add_refkey_with_default_key(ns_record, cls):
    decoded = json.loads(cls().format(ns_record))
    assert decoded['object'] == {
        'uid': 'uid1',
        'name': 'name1',
        'namespace': 'namespace1',
        'apiVersion': 'templates.kluctl.io/v1alpha1',
        'kind': 'ObjectHandler',
    }


@pytest.mark.parametrize('cls', [ObjectJsonFormatter, ObjectPrefixingJsonFormatter])
def test_json_formatters_add_refkey_with_custom_key(cluster_record, cls):
    decoded = json.loads(cls(refkey='k8s-obj').format(cluster_record))
    assert 'object' not in decoded
    assert decoded['k8s-obj'] == {
        'uid': 'uid1',
        'name': 'name1',
        'apiVersion': 'rbac.authorization.k8s.io/v1',
        'kind': 'ClusterRole',
    }
