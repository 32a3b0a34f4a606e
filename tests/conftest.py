"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from apimanager_operator.test_helpers.helpers import configure_logging

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture(autouse=True)
def restore_logging():
    """Passes reconfigure logging from the APIManager annotations, so put the
    test logging config back after each test
    """
    yield
    configure_logging()
