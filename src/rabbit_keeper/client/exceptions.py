"""
Error taxonomy of the rabbit_keeper client.
"""
from dataclasses import dataclass
from typing import Optional


class RabbitKeeperError(Exception):
    """Base class for every error raised by rabbit_keeper."""


class ConfigurationError(RabbitKeeperError, ValueError):
    """A client setting is invalid."""


class ConnectFailure(RabbitKeeperError):
    """The broker could not be reached or refused the credentials."""


class ChannelFailure(RabbitKeeperError):
    """A channel could not be opened on an otherwise open connection."""


class OperationWithoutChannel(RabbitKeeperError):
    """A declare/publish/consume was attempted while no channel is open."""

    def __init__(self, operation: str):
        super().__init__(f"No channel available for {operation}")
        self.operation = operation


@dataclass(frozen=True)
class ShutdownDetected:
    """
    Informational record of a broker-initiated shutdown.
    Not raised; it is what starts a reconnect episode.
    """
    cause: Optional[BaseException]
    generation: int

    @property
    def reason(self) -> str:
        return str(self.cause) if self.cause is not None else "connection closed"
