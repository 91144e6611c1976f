"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from declar8.test_helpers.helpers import configure_logging
from declar8.watch_manager import WatchManagerBase
from declar8.watch_manager.threads import watch

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
def reset_global_watches():
    """Watch managers and watch threads register themselves globally. Each
    test starts without any.
    """
    WatchManagerBase.clear_all()
    watch.watch_threads.clear()
    yield
    WatchManagerBase.clear_all()
    watch.watch_threads.clear()
