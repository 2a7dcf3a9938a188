"""
Resource Declaration Facade.

Translates declare-exchange and declare-queue-with-TTL requests into
transport calls on the supervisor's current channel. Failures are logged
and returned as an `OperationResult`; nothing is raised to the caller.
"""
import logging
from enum import Enum
from typing import Any, Dict, Union

from rabbit_keeper.client.exceptions import OperationWithoutChannel
from rabbit_keeper.client.logsink import SinkLoggerAdapter
from rabbit_keeper.client.models import OperationResult
from rabbit_keeper.client.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

MILLIS_PER_DAY = 24 * 60 * 60 * 1000
DAYS_PER_YEAR = 365 # fixed year length, no leap-year adjustment

EXCHANGE_TYPES = ("direct", "fanout", "topic", "headers")


def queue_ttl_arguments(message_ttl_days: int = 0, queue_expires_years: int = 0) -> Dict[str, Any]:
    """
    Builds the `x-message-ttl` / `x-expires` queue arguments (milliseconds).
    A zero value leaves the argument out.
    """
    if message_ttl_days < 0 or queue_expires_years < 0:
        raise ValueError(
            f"TTL values must be >= 0 (message_ttl_days={message_ttl_days}, queue_expires_years={queue_expires_years})"
        )
    arguments: Dict[str, Any] = {}
    if message_ttl_days > 0:
        arguments["x-message-ttl"] = int(message_ttl_days) * MILLIS_PER_DAY
    if queue_expires_years > 0:
        arguments["x-expires"] = int(queue_expires_years) * DAYS_PER_YEAR * MILLIS_PER_DAY
    return arguments


class ResourceDeclarations:
    def __init__(self, supervisor: ConnectionSupervisor):
        self.supervisor = supervisor
        self.log = SinkLoggerAdapter(logger, supervisor.config.log_sink)

    async def declare_exchange(self, name: str, exchange_type: Union[str, Enum] = "direct",
                               durable: bool = True, auto_delete: bool = False) -> OperationResult:
        """
        Declares an exchange. Exchange types can be direct, fanout, topic or headers.
        """
        type_name = str(getattr(exchange_type, "value", exchange_type)).lower()
        if type_name not in EXCHANGE_TYPES:
            error = ValueError(f"Unknown exchange type '{exchange_type}'")
            self.log.error(f"Error declaring exchange '{name}': {error}")
            return OperationResult("declare_exchange", name, error)

        try:
            async with self.supervisor.channel("declare_exchange") as channel:
                await self.supervisor.transport.declare_exchange(
                    channel, name, type_name, durable=durable, auto_delete=auto_delete, arguments=None
                )
        except OperationWithoutChannel as e:
            self.log.warning(f"Cannot declare exchange '{name}': no channel available.")
            return OperationResult("declare_exchange", name, e)
        except Exception as e:
            self.log.error(f"Error declaring exchange '{name}': {e}")
            return OperationResult("declare_exchange", name, e)

        self.log.info(f"Exchange declared: {name} (Type: {type_name}, Durable: {durable}, AutoDelete: {auto_delete})")
        return OperationResult("declare_exchange", name)

    async def declare_queue_with_ttl(self, name: str, message_ttl_days: int = 0, queue_expires_years: int = 0,
                                     durable: bool = True, auto_delete: bool = False) -> OperationResult:
        """
        Declares a queue with optional message TTL (days) and queue expiry (years).
        """
        try:
            arguments = queue_ttl_arguments(message_ttl_days, queue_expires_years)
        except ValueError as e:
            self.log.error(f"Error declaring queue '{name}': {e}")
            return OperationResult("declare_queue", name, e)

        try:
            async with self.supervisor.channel("declare_queue") as channel:
                await self.supervisor.transport.declare_queue(
                    channel, name, durable=durable, exclusive=False, auto_delete=auto_delete, arguments=arguments
                )
        except OperationWithoutChannel as e:
            self.log.warning(f"Cannot declare queue '{name}': no channel available.")
            return OperationResult("declare_queue", name, e)
        except Exception as e:
            self.log.error(f"Error declaring queue '{name}': {e}")
            return OperationResult("declare_queue", name, e)

        self.log.info(
            f"Queue declared: {name} (TTL: {message_ttl_days} days, Expires: {queue_expires_years} years, "
            f"Arguments: {arguments}, Durable: {durable}, AutoDelete: {auto_delete})"
        )
        return OperationResult("declare_queue", name)
