"""
Pytest Configuration and Fixtures for the rabbit_keeper project.

This module provides an in-memory broker transport so the supervisor and
its facades can be exercised without a running RabbitMQ.
"""

import asyncio
import sys
import logging
from typing import Any, Dict, List, Optional

import pytest

from rabbit_keeper.client.exceptions import ChannelFailure, ConnectFailure
from rabbit_keeper.client.models import ClientConfig, Delivery


class FakeConnection:
    def __init__(self, number: int):
        self.number = number
        self.closed = False
        self.listeners = []
        self.channels = []

    def drop(self, cause: Optional[BaseException] = None):
        """Simulates the broker tearing the connection down, taking its channels with it."""
        self.closed = True
        for listener in list(self.listeners):
            listener(cause)
        for channel in self.channels:
            if not channel.closed:
                channel.drop(cause)


class FakeChannel:
    def __init__(self, connection: FakeConnection):
        self.connection = connection
        self.closed = False
        self.listeners = []
        connection.channels.append(self)

    def drop(self, cause: Optional[BaseException] = None):
        """Simulates the broker closing only this channel."""
        self.closed = True
        for listener in list(self.listeners):
            listener(cause)


class FakeTransport:
    """
    Records every call made to it. The first `connect_failures` connects fail,
    or all of them when `always_fail` is set.
    """
    def __init__(self, connect_failures: int = 0, always_fail: bool = False, channel_failures: int = 0):
        self.connect_failures = connect_failures
        self.always_fail = always_fail
        self.channel_failures = channel_failures
        self.connect_calls: List[float] = []
        self.connections: List[FakeConnection] = []
        self.exchanges: List[Dict[str, Any]] = []
        self.queues: List[Dict[str, Any]] = []
        self.published: List[Dict[str, Any]] = []
        self.subscriptions: List[Dict[str, Any]] = []
        self.closed: List[Any] = []
        self.fail_operations: Optional[Exception] = None

    async def open_connection(self, host, port, username, password, virtual_host):
        self.connect_calls.append(asyncio.get_running_loop().time())
        if self.always_fail or len(self.connect_calls) <= self.connect_failures:
            raise ConnectFailure(f"Connection refused by {host}:{port}")
        connection = FakeConnection(len(self.connections) + 1)
        self.connections.append(connection)
        return connection

    def register_shutdown_listener(self, connection, callback):
        connection.listeners.append(callback)

    def register_channel_close_listener(self, channel, callback):
        channel.listeners.append(callback)

    async def open_channel(self, connection):
        if self.channel_failures > 0:
            self.channel_failures -= 1
            raise ChannelFailure("channel.open refused")
        return FakeChannel(connection)

    async def declare_exchange(self, channel, name, exchange_type, durable, auto_delete, arguments=None):
        self._maybe_fail()
        self.exchanges.append(dict(channel=channel, name=name, type=exchange_type, durable=durable,
                                   auto_delete=auto_delete, arguments=arguments))

    async def declare_queue(self, channel, name, durable, exclusive=False, auto_delete=False, arguments=None):
        self._maybe_fail()
        self.queues.append(dict(channel=channel, name=name, durable=durable, exclusive=exclusive,
                                auto_delete=auto_delete, arguments=arguments))

    async def publish(self, channel, exchange, routing_key, body, properties=None):
        self._maybe_fail()
        self.published.append(dict(channel=channel, exchange=exchange, routing_key=routing_key, body=body))

    async def subscribe(self, channel, queue, on_delivery, auto_ack=True):
        self._maybe_fail()
        tag = f"ctag-{len(self.subscriptions) + 1}"
        self.subscriptions.append(dict(channel=channel, queue=queue, on_delivery=on_delivery,
                                       auto_ack=auto_ack, tag=tag))
        return tag

    async def close_channel(self, channel):
        channel.closed = True
        self.closed.append(channel)

    async def close_connection(self, connection):
        connection.closed = True
        self.closed.append(connection)

    async def deliver(self, queue: str, body: bytes):
        """Pushes a message to the most recent consumer of `queue`."""
        for subscription in reversed(self.subscriptions):
            if subscription["queue"] == queue:
                await subscription["on_delivery"](Delivery(body=body, consumer_tag=subscription["tag"], delivery_tag=1))
                return
        raise AssertionError(f"No consumer registered for {queue}")

    @property
    def current_connection(self) -> FakeConnection:
        return self.connections[-1]

    def _maybe_fail(self):
        if self.fail_operations is not None:
            raise self.fail_operations


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests,
    since tests bypass main.py.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def make_transport():
    """Factory for fake transports with a configurable failure schedule."""
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def log_lines():
    """Collects everything the client writes to its log sink."""
    return []


@pytest.fixture
def config(log_lines):
    return ClientConfig(reconnect_delay=0.01, log_sink=log_lines.append)


@pytest.fixture
def reconnecting_config(log_lines):
    return ClientConfig(auto_reconnect=True, reconnect_delay=0.02, log_sink=log_lines.append)


@pytest.fixture
def wait_until():
    """Returns a coroutine that polls `predicate` until it holds or times out."""
    async def _wait_until(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("Timed out waiting for condition")
            await asyncio.sleep(0.005)
    return _wait_until
