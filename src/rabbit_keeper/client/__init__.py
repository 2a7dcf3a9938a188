"""
Client-side components: the connection supervisor, the declaration and
messaging facades, and the `RabbitMQClient` that ties them together.
"""
from rabbit_keeper.client.exceptions import (
    ChannelFailure,
    ConfigurationError,
    ConnectFailure,
    OperationWithoutChannel,
    RabbitKeeperError,
    ShutdownDetected,
)
from rabbit_keeper.client.models import ClientConfig, ConnectionState, Delivery, OperationResult
from rabbit_keeper.client.rabbitmq import ClientBuilder, RabbitMQClient, create_client

__all__ = [
    "ChannelFailure",
    "ClientBuilder",
    "ClientConfig",
    "ConfigurationError",
    "ConnectFailure",
    "ConnectionState",
    "Delivery",
    "OperationResult",
    "OperationWithoutChannel",
    "RabbitKeeperError",
    "RabbitMQClient",
    "ShutdownDetected",
    "create_client",
]
