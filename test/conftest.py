from typing import AsyncGenerator

import pytest
import pytest_asyncio
from mock_task_server import MockTaskServer
from realengine_client.models import ClientConfig
from realengine_client.realengine_client import RealEngineClient


@pytest_asyncio.fixture
async def server() -> AsyncGenerator[MockTaskServer, None]:
    """Start and yield a MockTaskServer on a free port."""
    server_instance = MockTaskServer()
    await server_instance.start()
    try:
        yield server_instance
    finally:
        await server_instance.stop()


@pytest.fixture
def config(server) -> ClientConfig:
    """Client configuration pointing at the mock server, with short waits."""
    return ClientConfig(
        token="test-token",
        root_url=server.root_url,
        max_retries=3,
        default_wait_ms=10,
        max_base_wait_ms=50,
    )


@pytest_asyncio.fixture
async def client(config) -> AsyncGenerator[RealEngineClient, None]:
    async with RealEngineClient(config) as client_instance:
        yield client_instance
