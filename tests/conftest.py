"""Shared fixtures: loopback echo responders and unused ports."""

import os
import socket
import sys

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from echo_server import EchoServer


@pytest_asyncio.fixture
async def echo_server():
    """EchoServer on an ephemeral loopback port, stopped on teardown."""
    server = EchoServer("127.0.0.1", 0)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
