import pytest

from objecthandler._core.intents import piggybacking


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """ Neither the real service account nor the real kubeconfig may leak in. """
    monkeypatch.setenv('HOME', str(tmp_path / 'home'))
    monkeypatch.delenv('KUBECONFIG', raising=False)
    monkeypatch.setattr(piggybacking, 'SERVICE_ACCOUNT_DIR', str(tmp_path / 'serviceaccount'))


@pytest.fixture()
def service_account_dir(tmp_path):
    path = tmp_path / 'serviceaccount'
    path.mkdir()
    return path
