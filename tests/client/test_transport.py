import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import aio_pika

from rabbit_keeper.client.exceptions import ChannelFailure, ConnectFailure
from rabbit_keeper.client.models import Delivery
from rabbit_keeper.client.transport import AioPikaTransport

"""
aio_pika Transport Tests.
The library is patched out; these check that our calls map onto it correctly.
"""


@pytest.mark.asyncio
@patch('rabbit_keeper.client.transport.aio_pika.connect', new_callable=AsyncMock)
async def test_open_connection_passes_credentials(mock_connect):
    connection = MagicMock()
    mock_connect.return_value = connection
    transport = AioPikaTransport(heartbeat=30)

    result = await transport.open_connection("rabbit.local", 5673, "alice", "secret", "/prod")

    assert result is connection
    mock_connect.assert_awaited_once_with(
        host="rabbit.local", port=5673, login="alice", password="secret", virtualhost="/prod", heartbeat=30
    )


@pytest.mark.asyncio
@patch('rabbit_keeper.client.transport.aio_pika.connect', new_callable=AsyncMock)
async def test_open_connection_wraps_errors(mock_connect):
    mock_connect.side_effect = ConnectionRefusedError("refused")

    with pytest.raises(ConnectFailure) as excinfo:
        await AioPikaTransport().open_connection("localhost", 5672, "guest", "guest", "/")

    assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)


@pytest.mark.asyncio
async def test_open_channel_disables_publisher_confirms():
    connection = MagicMock()
    connection.channel = AsyncMock(return_value="channel")

    assert await AioPikaTransport().open_channel(connection) == "channel"
    connection.channel.assert_awaited_once_with(publisher_confirms=False)


@pytest.mark.asyncio
async def test_open_channel_wraps_errors():
    connection = MagicMock()
    connection.channel = AsyncMock(side_effect=RuntimeError("CHANNEL_ERROR"))

    with pytest.raises(ChannelFailure):
        await AioPikaTransport().open_channel(connection)


def test_shutdown_listener_fires_once():
    connection = MagicMock()
    callback = MagicMock()
    AioPikaTransport().register_shutdown_listener(connection, callback)
    on_close = connection.close_callbacks.add.call_args.args[0]

    cause = ConnectionResetError("reset")
    on_close(connection, cause)
    on_close(connection, cause)

    callback.assert_called_once_with(cause)


def test_channel_close_listener_fires_once():
    channel = MagicMock()
    callback = MagicMock()
    AioPikaTransport().register_channel_close_listener(channel, callback)
    on_close = channel.close_callbacks.add.call_args.args[0]

    cause = RuntimeError("PRECONDITION_FAILED")
    on_close(channel, cause)
    on_close(channel, None)

    callback.assert_called_once_with(cause)


@pytest.mark.asyncio
async def test_declare_exchange_and_queue():
    channel = MagicMock()
    channel.declare_exchange = AsyncMock()
    channel.declare_queue = AsyncMock()
    transport = AioPikaTransport()

    await transport.declare_exchange(channel, "events", "topic", durable=True, auto_delete=False)
    await transport.declare_queue(channel, "audit", durable=True, arguments={"x-message-ttl": 1000})

    channel.declare_exchange.assert_awaited_once_with(
        "events", type=aio_pika.ExchangeType.TOPIC, durable=True, auto_delete=False, arguments=None
    )
    channel.declare_queue.assert_awaited_once_with(
        "audit", durable=True, exclusive=False, auto_delete=False, arguments={"x-message-ttl": 1000}
    )


@pytest.mark.asyncio
async def test_publish_to_named_exchange():
    exchange = MagicMock()
    exchange.publish = AsyncMock()
    channel = MagicMock()
    channel.get_exchange = AsyncMock(return_value=exchange)

    await AioPikaTransport().publish(channel, "ex", "key", b"hello")

    channel.get_exchange.assert_awaited_once_with("ex", ensure=False)
    message = exchange.publish.call_args.args[0]
    assert message.body == b"hello"
    assert exchange.publish.call_args.kwargs == {"routing_key": "key"}


@pytest.mark.asyncio
async def test_publish_to_default_exchange():
    channel = MagicMock()
    channel.get_exchange = AsyncMock()
    channel.default_exchange.publish = AsyncMock()

    await AioPikaTransport().publish(channel, "", "jobs", b"work")

    channel.get_exchange.assert_not_awaited()
    channel.default_exchange.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_subscribe_uses_auto_ack_and_converts_deliveries():
    queue = MagicMock()
    queue.consume = AsyncMock(return_value="ctag-1")
    channel = MagicMock()
    channel.get_queue = AsyncMock(return_value=queue)
    on_delivery = AsyncMock()

    tag = await AioPikaTransport().subscribe(channel, "audit", on_delivery)

    assert tag == "ctag-1"
    channel.get_queue.assert_awaited_once_with("audit", ensure=False)
    callback = queue.consume.call_args.args[0]
    assert queue.consume.call_args.kwargs == {"no_ack": True}

    incoming = MagicMock(
        body=b"hi", consumer_tag="ctag-1", delivery_tag=7, exchange="ex", routing_key="key",
        redelivered=False, content_type="text/plain", content_encoding=None, headers={},
        message_id=None, correlation_id=None, reply_to=None,
    )
    await callback(incoming)

    delivery: Delivery = on_delivery.call_args.args[0]
    assert delivery.body == b"hi"
    assert delivery.delivery_tag == 7
    assert delivery.routing_key == "key"
    assert delivery.properties == {"content_type": "text/plain"}


@pytest.mark.asyncio
async def test_close_swallows_secondary_errors():
    channel = MagicMock(is_closed=False)
    channel.close = AsyncMock(side_effect=RuntimeError("already closing"))
    connection = MagicMock(is_closed=False)
    connection.close = AsyncMock()
    transport = AioPikaTransport()

    await transport.close_channel(channel)
    await transport.close_connection(connection)

    connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_skips_already_closed_handles():
    connection = MagicMock(is_closed=True)
    connection.close = AsyncMock()

    await AioPikaTransport().close_connection(connection)

    connection.close.assert_not_awaited()
