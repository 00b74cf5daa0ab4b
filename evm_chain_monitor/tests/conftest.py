import pytest

from evm_chain_monitor.tests.fakes import FakeRPC, RecordingPersistence


@pytest.fixture
def fake_rpc():
    return FakeRPC()


@pytest.fixture
def persistence():
    return RecordingPersistence()
