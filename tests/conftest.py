# tests/conftest.py
import pytest

from annobroker.adapters.transport import ManualTransport
from annobroker.adapters.ui import StaticReloadPolicy
from annobroker.core import log
from annobroker.core.broker import Broker
from annobroker.core.dispatcher import Dispatcher

@pytest.fixture(scope="session", autouse=True)
def _bootstrap_logging():
    # reads LOG_LEVEL / LOG_JSON / .env
    log.setup()


class RecordingWaiter:
    def __init__(self):
        self.closed = 0

    def close(self):
        self.closed += 1


@pytest.fixture
def dispatcher():
    return Dispatcher(name="test.dispatcher")


@pytest.fixture
def transport():
    return ManualTransport()


@pytest.fixture
def waiter():
    return RecordingWaiter()


@pytest.fixture
def reload_policy():
    return StaticReloadPolicy(accept=False)


@pytest.fixture
def broker(dispatcher, transport, waiter, reload_policy):
    return Broker(dispatcher, transport, url="http://annotation.test/ajax",
                  waiter=waiter, reload_policy=reload_policy, name="test.broker")
