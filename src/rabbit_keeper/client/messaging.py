"""
Messaging Facade.

This module is responsible for:
- Publishing messages (fire-and-forget) on the supervisor's current channel.
- Registering auto-ack consumers and routing inbound deliveries, decoded
  as text, to caller-supplied handlers.
- Re-registering those consumers after the supervisor reconnects.

Like the declaration facade it never raises: failures are logged and
reported through the returned `OperationResult`.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Union

from rabbit_keeper.client.exceptions import OperationWithoutChannel
from rabbit_keeper.client.logsink import SinkLoggerAdapter
from rabbit_keeper.client.models import Delivery, OperationResult, Session
from rabbit_keeper.client.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Subscription:
    queue: str
    handler: MessageHandler


class Messaging:
    supervisor: ConnectionSupervisor
    subscriptions: List[Subscription]

    def __init__(self, supervisor: ConnectionSupervisor):
        self.supervisor = supervisor
        self.subscriptions = []
        self.log = SinkLoggerAdapter(logger, supervisor.config.log_sink)
        supervisor.add_reconnect_listener(self._restore_consumers)

    async def send_message(self, exchange: str, routing_key: str, body: Union[str, bytes]) -> OperationResult:
        """
        Publishes one message to `exchange` with `routing_key`.
        String bodies are sent UTF-8 encoded. No delivery confirmation is awaited.
        """
        payload = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        try:
            async with self.supervisor.channel("send_message") as channel:
                await self.supervisor.transport.publish(channel, exchange, routing_key, payload)
        except OperationWithoutChannel as e:
            self.log.warning(f"Cannot send message to exchange '{exchange}': no channel available.")
            return OperationResult("send_message", exchange, e)
        except Exception as e:
            self.log.error(f"Error sending message to exchange '{exchange}': {e}")
            return OperationResult("send_message", exchange, e)

        self.log.debug(f"Message sent to Exchange: {exchange} with Routing Key: {routing_key}. Message: {body!r}")
        return OperationResult("send_message", exchange)

    async def consume_messages(self, queue: str, handler: MessageHandler) -> OperationResult:
        """
        Starts consuming from `queue` with automatic acknowledgment.
        Every message body is decoded as text and passed to `handler`,
        which may be a plain function or a coroutine function.
        """
        subscription = Subscription(queue=queue, handler=handler)
        result = await self._register(subscription)
        if result.ok:
            self.subscriptions.append(subscription)
        return result

    async def _register(self, subscription: Subscription) -> OperationResult:
        queue = subscription.queue

        async def on_delivery(delivery: Delivery) -> None:
            await self._dispatch(subscription, delivery)

        try:
            async with self.supervisor.channel("consume_messages") as channel:
                consumer_tag = await self.supervisor.transport.subscribe(channel, queue, on_delivery, auto_ack=True)
        except OperationWithoutChannel as e:
            self.log.warning(f"Cannot consume from queue '{queue}': no channel available.")
            return OperationResult("consume_messages", queue, e)
        except Exception as e:
            self.log.error(f"Error consuming messages from queue '{queue}': {e}")
            return OperationResult("consume_messages", queue, e)

        self.log.info(f"Consuming messages from queue: {queue} (consumer tag: {consumer_tag})")
        return OperationResult("consume_messages", queue)

    async def _dispatch(self, subscription: Subscription, delivery: Delivery):
        message = delivery.text()
        self.log.debug(f"Received message from queue '{subscription.queue}': {message!r}")
        try:
            outcome: Any = subscription.handler(message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # Auto-ack: the broker already considers this message handled
            self.log.error(f"Handler for queue '{subscription.queue}' failed: {e}")

    async def _restore_consumers(self, session: Session):
        if not self.subscriptions:
            return
        self.log.info(f"Restoring {len(self.subscriptions)} consumer(s) on the new channel (generation {session.generation})")
        for subscription in list(self.subscriptions):
            await self._register(subscription)
