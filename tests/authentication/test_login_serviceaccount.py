import logging

from objecthandler._core.intents.piggybacking import PRIORITY_OF_SERVICE_ACCOUNT, \
                                                     login_with_service_account

logger = logging.getLogger(__name__)


def test_absent_service_account():
    assert login_with_service_account(logger=logger) is None


def test_token_only(service_account_dir):
    (service_account_dir / 'token').write_text('tkn\n')

    info = login_with_service_account(logger=logger)

    assert info is not None
    assert info.server == 'https://kubernetes.default.svc'
    assert info.token == 'tkn'
    assert info.ca_path is None
    assert info.default_namespace is None
    assert info.priority == PRIORITY_OF_SERVICE_ACCOUNT


def test_full_service_account(service_account_dir):
    (service_account_dir / 'token').write_text('tkn')
    (service_account_dir / 'namespace').write_text('ns1\n')
    (service_account_dir / 'ca.crt').write_text('-----BEGIN CERTIFICATE-----')

    info = login_with_service_account(logger=logger)

    assert info is not None
    assert info.token == 'tkn'
    assert info.default_namespace == 'ns1'
    assert info.ca_path == str(service_account_dir / 'ca.crt')


def test_empty_token(service_account_dir):
    (service_account_dir / 'token').write_text('')

    info = login_with_service_account(logger=logger)

    assert info is not None
    assert info.token is None
