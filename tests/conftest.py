"""
Shared fixtures and in-memory connections for relay tests.
"""
import asyncio

import pytest

from realtime_proxy.config import Settings
from realtime_proxy.relay.connection import PeerClosed


class FakeConnection:
    """
    In-memory stand-in for one side of a session.

    ``feed()``/``hang_up()``/``fail()`` script what the remote end does;
    ``events`` records everything the relay did to this connection in order.
    """

    def __init__(self, remote_address=("127.0.0.1", 50000)):
        self.remote_address = remote_address
        self.events = []
        self._incoming: asyncio.Queue = asyncio.Queue()

    @property
    def sent(self):
        return [e[1] for e in self.events if e[0] == "send"]

    @property
    def closes(self):
        return [e[1:] for e in self.events if e[0] == "close"]

    async def receive(self):
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data):
        if self.closes:
            raise RuntimeError("send on closed connection")
        self.events.append(("send", data))

    async def close(self, code=1000, reason=""):
        self.events.append(("close", code, reason))
        self._incoming.put_nowait(PeerClosed(code, reason))

    def feed(self, data):
        self._incoming.put_nowait(data)

    def hang_up(self, code=1000, reason=""):
        self._incoming.put_nowait(PeerClosed(code, reason))

    def fail(self, exc):
        self._incoming.put_nowait(exc)


class EchoConnection(FakeConnection):
    """Upstream that answers every message with the same payload."""

    async def send(self, data):
        await super().send(data)
        self.feed(data)


class FakeConnector:
    """
    Upstream connector returning a FakeConnection.

    ``hold()`` keeps the handshake pending until ``release()``.
    """

    def __init__(self, connection=None, error=None):
        self.connection = connection if connection is not None else FakeConnection()
        self.error = error
        self.calls = []
        self._released = asyncio.Event()
        self._released.set()

    def hold(self):
        self._released.clear()

    def release(self):
        self._released.set()

    async def __call__(self, settings):
        self.calls.append(settings)
        await self._released.wait()
        if self.error is not None:
            raise self.error
        return self.connection


async def eventually(predicate, timeout: float = 1.0):
    """Wait until ``predicate()`` is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings():
    return Settings(TOKEN="test-token", _env_file=None)
