"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from ravenlsp.dispatcher import Dispatcher
from ravenlsp.transport.loopback import create_pipe

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest_asyncio.fixture
async def dispatchers() -> AsyncIterator[tuple[Dispatcher, Dispatcher]]:
    """Two started dispatchers connected over a loopback pipe.

    Yields (client, server). Both are closed on teardown.
    """
    client_side, server_side = create_pipe()
    client = Dispatcher(client_side, name="client", request_timeout=5.0)
    server = Dispatcher(server_side, name="server", request_timeout=5.0)
    client.start()
    server.start()

    yield client, server

    await client.close()
    await server.close()
