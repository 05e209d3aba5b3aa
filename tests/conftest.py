from __future__ import annotations

import pytest
import pytest_asyncio

from fakes import FakeConnector
from figma_communicator import FigmaRelay, set_communicator
from relay_config import RelayConfig


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig(
        url="ws://relay.test:3055",
        default_timeout_ms=1000,
        join_timeout_ms=200,
        connect_max_attempts=1,
        connect_retry_delay=0,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest_asyncio.fixture
async def relay(config: RelayConfig, connector: FakeConnector):
    relay = FigmaRelay(config, connector=connector)
    yield relay
    await relay.close()


@pytest.fixture(autouse=True)
def _reset_global_communicator():
    yield
    set_communicator(None)
