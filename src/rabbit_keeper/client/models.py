"""
Data Models for the Connection Supervisor and its Facades.

Defines the immutable records that flow between the transport,
the supervisor and the client-facing facades.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from rabbit_keeper.client.exceptions import ConfigurationError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5672
DEFAULT_USERNAME = "guest"
DEFAULT_PASSWORD = "guest"
DEFAULT_VIRTUAL_HOST = "/"
DEFAULT_RECONNECT_DELAY = 3.0 # seconds
MAX_RECONNECT_ATTEMPTS = 5


def _discard(message: str) -> None:
    pass


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True, kw_only=True)
class ClientConfig:
    """Immutable connection settings of one client."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    virtual_host: str = DEFAULT_VIRTUAL_HOST
    auto_reconnect: bool = False
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    log_sink: Callable[[str], None] = field(default=_discard, repr=False, compare=False)

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("host must not be empty")
        if not 1 <= int(self.port) <= 65535:
            raise ConfigurationError(f"port out of range: {self.port}")
        if self.reconnect_delay < 0:
            raise ConfigurationError(f"reconnect_delay must be >= 0, got {self.reconnect_delay}")
        if self.max_reconnect_attempts < 1:
            raise ConfigurationError(f"max_reconnect_attempts must be >= 1, got {self.max_reconnect_attempts}")
        if not callable(self.log_sink):
            raise ConfigurationError("log_sink must be callable")

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Session:
    """
    The live connection/channel pair, replaced as a whole on every (re)connect.

    `generation` increases with every successful connect so that shutdown
    signals from a replaced connection can be told apart from current ones.
    """
    connection: Any
    channel: Any
    generation: int


@dataclass(frozen=True, kw_only=True)
class Delivery:
    """A single inbound message as handed over by the transport."""
    body: bytes
    consumer_tag: Optional[str] = None
    delivery_tag: Optional[int] = None
    exchange: str = ""
    routing_key: str = ""
    redelivered: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)

    def text(self) -> str:
        """Decodes the body as UTF-8, replacing undecodable bytes."""
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a declare/publish/consume call.

    Facade operations never raise; callers who need strict behaviour
    call `raise_for_error()` on the returned result.
    """
    operation: str
    target: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "OperationResult":
        if self.error is not None:
            raise self.error
        return self

    def __bool__(self) -> bool:
        return self.ok
