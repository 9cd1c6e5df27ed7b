"""
Shared test configuration and fixtures.

Network tests run against FakeIrmin on a real in-process aiohttp server,
so requests go through the same transport code as in production.
"""

import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from irmin_fakes import FakeIrmin

from irmin_client import IrminClient

logger = logging.getLogger(__name__)


@pytest.fixture
async def irmin_server():
    """Start a FakeIrmin server and yield (fake, base_url)."""
    fake = FakeIrmin()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    logger.debug(f"fake irmin listening on {server.make_url('/')}")
    try:
        yield fake, str(server.make_url("/"))
    finally:
        fake.release.set()
        await server.close()


@pytest.fixture
async def irmin(irmin_server):
    """(FakeIrmin, IrminClient) pair connected to the test server."""
    fake, base_url = irmin_server
    client = IrminClient(base_url, task_owner="irmin-tester")
    yield fake, client
    await client.close()
