"""
Broker Transport.

This module is responsible for:
- Defining the narrow `BrokerTransport` interface the supervisor and facades depend on.
- Implementing it on top of `aio_pika` (AMQP 0-9-1).
- Translating library errors into `ConnectFailure` / `ChannelFailure`.
- Turning `aio_pika` connection and channel close callbacks into one-shot
  shutdown notifications.

The transport never retries anything; reconnection is owned by the supervisor.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage

from rabbit_keeper.client.exceptions import ChannelFailure, ConnectFailure
from rabbit_keeper.client.models import Delivery

logger = logging.getLogger(__name__)

ShutdownCallback = Callable[[Optional[BaseException]], None]
DeliveryCallback = Callable[[Delivery], Awaitable[None]]


class BrokerTransport(Protocol):
    """The operations the connection supervisor needs from a broker client."""

    async def open_connection(self, host: str, port: int, username: str, password: str, virtual_host: str) -> Any: ...

    def register_shutdown_listener(self, connection: Any, callback: ShutdownCallback) -> None: ...

    def register_channel_close_listener(self, channel: Any, callback: ShutdownCallback) -> None: ...

    async def open_channel(self, connection: Any) -> Any: ...

    async def declare_exchange(self, channel: Any, name: str, exchange_type: str, durable: bool,
                               auto_delete: bool, arguments: Optional[Dict[str, Any]] = None) -> None: ...

    async def declare_queue(self, channel: Any, name: str, durable: bool, exclusive: bool = False,
                            auto_delete: bool = False, arguments: Optional[Dict[str, Any]] = None) -> None: ...

    async def publish(self, channel: Any, exchange: str, routing_key: str, body: bytes,
                      properties: Optional[Dict[str, Any]] = None) -> None: ...

    async def subscribe(self, channel: Any, queue: str, on_delivery: DeliveryCallback, auto_ack: bool = True) -> str: ...

    async def close_channel(self, channel: Any) -> None: ...

    async def close_connection(self, connection: Any) -> None: ...


class AioPikaTransport:
    """
    `BrokerTransport` backed by a plain (non-robust) `aio_pika` connection.
    """
    def __init__(self, **connect_kwargs):
        # Passed through to aio_pika.connect (e.g. heartbeat, timeout, ssl)
        self.connect_kwargs = connect_kwargs

    async def open_connection(self, host: str, port: int, username: str, password: str,
                              virtual_host: str) -> AbstractConnection:
        try:
            return await aio_pika.connect(
                host=host,
                port=port,
                login=username,
                password=password,
                virtualhost=virtual_host,
                **self.connect_kwargs,
            )
        except Exception as e:
            raise ConnectFailure(f"Could not connect to {host}:{port}{virtual_host}: {e}") from e

    def register_shutdown_listener(self, connection: AbstractConnection, callback: ShutdownCallback) -> None:
        connection.close_callbacks.add(_fire_once(callback))

    def register_channel_close_listener(self, channel: AbstractChannel, callback: ShutdownCallback) -> None:
        # The broker closes only the channel on errors such as PRECONDITION_FAILED
        channel.close_callbacks.add(_fire_once(callback))

    async def open_channel(self, connection: AbstractConnection) -> AbstractChannel:
        try:
            # Fire-and-forget publishing: no publisher confirms
            return await connection.channel(publisher_confirms=False)
        except Exception as e:
            raise ChannelFailure(f"Could not open channel: {e}") from e

    async def declare_exchange(self, channel: AbstractChannel, name: str, exchange_type: str, durable: bool,
                               auto_delete: bool, arguments: Optional[Dict[str, Any]] = None) -> None:
        await channel.declare_exchange(
            name,
            type=aio_pika.ExchangeType(exchange_type),
            durable=durable,
            auto_delete=auto_delete,
            arguments=arguments,
        )

    async def declare_queue(self, channel: AbstractChannel, name: str, durable: bool, exclusive: bool = False,
                            auto_delete: bool = False, arguments: Optional[Dict[str, Any]] = None) -> None:
        await channel.declare_queue(
            name,
            durable=durable,
            exclusive=exclusive,
            auto_delete=auto_delete,
            arguments=arguments,
        )

    async def publish(self, channel: AbstractChannel, exchange: str, routing_key: str, body: bytes,
                      properties: Optional[Dict[str, Any]] = None) -> None:
        if exchange:
            target = await channel.get_exchange(exchange, ensure=False)
        else:
            target = channel.default_exchange
        await target.publish(aio_pika.Message(body=body, **(properties or {})), routing_key=routing_key)

    async def subscribe(self, channel: AbstractChannel, queue: str, on_delivery: DeliveryCallback,
                        auto_ack: bool = True) -> str:
        amqp_queue = await channel.get_queue(queue, ensure=False)

        async def _on_message(message: AbstractIncomingMessage) -> None:
            await on_delivery(_to_delivery(message))

        return await amqp_queue.consume(_on_message, no_ack=auto_ack)

    async def close_channel(self, channel: AbstractChannel) -> None:
        try:
            if not channel.is_closed:
                await channel.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing channel: {e}")

    async def close_connection(self, connection: AbstractConnection) -> None:
        try:
            if not connection.is_closed:
                await connection.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing connection: {e}")


def _fire_once(callback: ShutdownCallback) -> Callable[..., None]:
    fired = False

    def _on_close(sender: Any, exc: Optional[BaseException] = None) -> None:
        nonlocal fired
        if fired:
            return
        fired = True
        callback(exc)

    return _on_close


def _to_delivery(message: AbstractIncomingMessage) -> Delivery:
    properties = {
        "content_type": message.content_type,
        "content_encoding": message.content_encoding,
        "headers": dict(message.headers or {}),
        "message_id": message.message_id,
        "correlation_id": message.correlation_id,
        "reply_to": message.reply_to,
    }
    return Delivery(
        body=message.body,
        consumer_tag=message.consumer_tag,
        delivery_tag=message.delivery_tag,
        exchange=message.exchange or "",
        routing_key=message.routing_key or "",
        redelivered=bool(message.redelivered),
        properties={k: v for k, v in properties.items() if v},
    )
