"""
RabbitMQ Client and its Configuration Builder.

`RabbitMQClient` wires a `ConnectionSupervisor` to the declaration and
messaging facades and exposes the client-facing operations.
`ClientBuilder` is optional chaining sugar over `ClientConfig`;
`create_client` is the plain constructor both end up in.
"""
import dataclasses
from typing import Callable, Optional

from rabbit_keeper.client.declarations import ResourceDeclarations
from rabbit_keeper.client.messaging import MessageHandler, Messaging
from rabbit_keeper.client.models import ClientConfig, ConnectionState, OperationResult
from rabbit_keeper.client.supervisor import ConnectionSupervisor
from rabbit_keeper.client.transport import AioPikaTransport, BrokerTransport


class RabbitMQClient:
    """
    A client for RabbitMQ with connection management, exchange and queue
    declaration, publishing, consuming and optional automatic reconnection.

    Construct it with `create_client()` or `ClientBuilder().build()`;
    both await the initial connect.
    """
    def __init__(self, config: ClientConfig, transport: Optional[BrokerTransport] = None):
        self.config = config
        self.supervisor = ConnectionSupervisor(config, transport or AioPikaTransport())
        self.declarations = ResourceDeclarations(self.supervisor)
        self.messaging = Messaging(self.supervisor)

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    @property
    def is_connected(self) -> bool:
        return self.supervisor.is_connected

    async def start(self):
        await self.supervisor.start()

    async def declare_exchange(self, name: str, exchange_type="direct", durable: bool = True,
                               auto_delete: bool = False) -> OperationResult:
        return await self.declarations.declare_exchange(name, exchange_type, durable, auto_delete)

    async def declare_queue_with_ttl(self, name: str, message_ttl_days: int = 0, queue_expires_years: int = 0,
                                     durable: bool = True, auto_delete: bool = False) -> OperationResult:
        return await self.declarations.declare_queue_with_ttl(
            name, message_ttl_days, queue_expires_years, durable, auto_delete
        )

    async def send_message(self, exchange: str, routing_key: str, body) -> OperationResult:
        return await self.messaging.send_message(exchange, routing_key, body)

    async def consume_messages(self, queue: str, handler: MessageHandler) -> OperationResult:
        return await self.messaging.consume_messages(queue, handler)

    async def reconnect(self) -> bool:
        return await self.supervisor.reconnect()

    async def close(self):
        await self.supervisor.close()

    async def __aenter__(self) -> "RabbitMQClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def create_client(config: ClientConfig, transport: Optional[BrokerTransport] = None) -> RabbitMQClient:
    """
    Constructs a client and awaits its initial connect.

    Raises:
        ConnectFailure / ChannelFailure: if the first connect fails and
            auto-reconnect is disabled
    """
    client = RabbitMQClient(config, transport)
    await client.start()
    return client


class ClientBuilder:
    """
    Chained configuration for a `RabbitMQClient`.

        client = await (ClientBuilder()
                        .host("rabbit.local")
                        .enable_auto_reconnect()
                        .reconnect_delay(1.5)
                        .build())
    """
    def __init__(self, config: Optional[ClientConfig] = None):
        self._settings = {}
        if config is not None:
            self._settings = {f.name: getattr(config, f.name) for f in dataclasses.fields(config)}
        self._transport: Optional[BrokerTransport] = None

    def _set(self, **changes) -> "ClientBuilder":
        self._settings.update(changes)
        return self

    def host(self, host: str) -> "ClientBuilder":
        return self._set(host=host)

    def port(self, port: int) -> "ClientBuilder":
        return self._set(port=port)

    def username(self, username: str) -> "ClientBuilder":
        return self._set(username=username)

    def password(self, password: str) -> "ClientBuilder":
        return self._set(password=password)

    def virtual_host(self, virtual_host: str) -> "ClientBuilder":
        return self._set(virtual_host=virtual_host)

    def enable_auto_reconnect(self) -> "ClientBuilder":
        return self._set(auto_reconnect=True)

    def reconnect_delay(self, seconds: float) -> "ClientBuilder":
        return self._set(reconnect_delay=seconds)

    def max_reconnect_attempts(self, attempts: int) -> "ClientBuilder":
        return self._set(max_reconnect_attempts=attempts)

    def log_sink(self, sink: Callable[[str], None]) -> "ClientBuilder":
        return self._set(log_sink=sink)

    def transport(self, transport: BrokerTransport) -> "ClientBuilder":
        self._transport = transport
        return self

    def to_config(self) -> ClientConfig:
        """Validates the collected settings into an immutable `ClientConfig`."""
        return ClientConfig(**self._settings)

    async def build(self) -> RabbitMQClient:
        return await create_client(self.to_config(), self._transport)
