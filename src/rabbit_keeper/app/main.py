"""
Main entry point for the rabbit_keeper relay.

This module is responsible for:
- Configuring logging.
- Loading config.yaml and building the client from its `rabbitmq` section.
- Declaring the configured exchanges and queues.
- Consuming every queue marked `consume: true` and logging its messages.
- Closing the client cleanly on SIGINT / SIGTERM.
"""

import asyncio
import logging
import signal

from typing import Any, Dict

from rabbit_keeper.app.config_loader import client_config_from_dict, load_config
from rabbit_keeper.client.rabbitmq import RabbitMQClient, create_client

def setup_logging():
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)

async def declare_topology(client: RabbitMQClient, config: Dict[str, Any]):
    """Declares the exchanges and queues listed in the config."""
    for exchange in config.get('exchanges', []):
        await client.declare_exchange(
            exchange['name'],
            exchange.get('type', 'direct'),
            durable=exchange.get('durable', True),
            auto_delete=exchange.get('auto_delete', False),
        )

    for queue in config.get('queues', []):
        await client.declare_queue_with_ttl(
            queue['name'],
            message_ttl_days=queue.get('message_ttl_days', 0),
            queue_expires_years=queue.get('queue_expires_years', 0),
            durable=queue.get('durable', True),
            auto_delete=queue.get('auto_delete', False),
        )

async def start_consumers(client: RabbitMQClient, config: Dict[str, Any]):
    """Subscribes a logging handler to every queue marked `consume: true`."""
    for queue in config.get('queues', []):
        if not queue.get('consume', False):
            continue
        name = queue['name']

        def log_message(message: str, queue_name: str = name):
            logger.info(f"[{queue_name}] {message}")

        await client.consume_messages(name, log_message)

async def shutdown(signal_name: str, client: RabbitMQClient, stop_event: asyncio.Event):
    """Graceful shutdown handler."""
    logger.info(f"Received exit signal {signal_name}...")
    await client.close()
    stop_event.set()

async def main_application_runner(config_path: str = "config.yaml"):
    setup_logging()
    logger.info("Starting relay...")

    config: Dict[str, Any] = load_config(config_path)
    client = await create_client(client_config_from_dict(config))

    await declare_topology(client, config)
    await start_consumers(client, config)

    # Setup Signal Handlers for OS interrupts
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s.name, client, stop_event))
        )

    logger.info("Relay is fully operational. Press Ctrl+C to exit.")

    try:
        await stop_event.wait()
    except asyncio.CancelledError:
        await client.close()
        raise

def main():
    try:
        asyncio.run(main_application_runner())
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        pass

if __name__ == "__main__":
    main()
