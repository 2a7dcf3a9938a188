"""
Connection Supervisor.

This module contains the `ConnectionSupervisor`, the owner of the single
connection/channel pair of a client. It is responsible for:
- Running the connect / reconnect state machine.
- Registering one-shot shutdown listeners on every connection and channel
  it opens.
- Bridging shutdown notifications (which may arrive on any thread) back
  onto the asyncio event loop via `loop.call_soon_threadsafe`.
- Guaranteeing at most one reconnect episode in flight.
- Handing the current channel to the facades under a lock, so a channel is
  never swapped while an operation is using it.
"""
import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from rabbit_keeper.client.exceptions import ChannelFailure, ConnectFailure, OperationWithoutChannel, ShutdownDetected
from rabbit_keeper.client.logsink import SinkLoggerAdapter
from rabbit_keeper.client.models import ClientConfig, ConnectionState, Session
from rabbit_keeper.client.transport import BrokerTransport

logger = logging.getLogger(__name__)

ReconnectListener = Callable[[Session], Awaitable[None]]


class ConnectionSupervisor:
    config: ClientConfig
    transport: BrokerTransport
    state: ConnectionState
    connect_attempts: int # every open_connection call, initial ones included
    reconnect_attempts: int # attempts made by the most recent reconnect episode
    last_shutdown: Optional[ShutdownDetected]

    _session: Optional[Session]
    _generation: int
    _lock: asyncio.Lock
    _loop: Optional[asyncio.AbstractEventLoop]
    _reconnect_task: Optional[asyncio.Task]
    _pending_shutdown: Optional[ShutdownDetected]
    _reconnect_listeners: List[ReconnectListener]

    """
    Owns the connection/channel pair and keeps it alive.
    """
    def __init__(self, config: ClientConfig, transport: BrokerTransport):
        self.config = config
        self.transport = transport
        self.log = SinkLoggerAdapter(logger, config.log_sink)

        self.state = ConnectionState.DISCONNECTED
        self.connect_attempts = 0
        self.reconnect_attempts = 0
        self.last_shutdown = None

        # Internal state
        self._session = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._loop = None
        self._reconnect_task = None
        self._pending_shutdown = None
        self._reconnect_listeners = []
        self._background: set = set()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._session is not None

    def add_reconnect_listener(self, listener: ReconnectListener):
        """Registers a coroutine function awaited after every successful reconnect."""
        self._reconnect_listeners.append(listener)

    async def start(self):
        """
        Performs the initial connect.

        Raises the transport error if it fails and auto-reconnect is disabled.
        With auto-reconnect enabled the failure starts a reconnect episode,
        which is awaited before returning.
        """
        if self.state is not ConnectionState.DISCONNECTED:
            self.log.warning(f"start() called in state {self.state.value}; ignoring")
            return
        self._loop = asyncio.get_running_loop()
        self.state = ConnectionState.CONNECTING

        try:
            await self._connect()
        except (ConnectFailure, ChannelFailure) as e:
            if not self.config.auto_reconnect:
                self.state = ConnectionState.DISCONNECTED
                self.log.error(f"Failed to connect: {e}")
                raise
            self.log.warning(f"Failed to connect: {e}. Retrying...")
            await self._await_episode(self._start_episode())

    async def reconnect(self) -> bool:
        """
        Explicitly restores a disconnected client by running a new reconnect
        episode (or joining the one in flight). Returns True once connected.
        """
        if self.state is ConnectionState.CLOSED:
            self.log.warning("Cannot reconnect a closed client.")
            return False
        if self.is_connected:
            return True
        if self.state is ConnectionState.CONNECTING:
            self.log.warning("Initial connect still in progress; not starting a reconnect.")
            return False
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return await self._await_episode(self._start_episode())

    async def close(self):
        """
        Releases channel then connection. Idempotent and best-effort:
        in-flight operations are not waited for.
        """
        if self.state is ConnectionState.CLOSED:
            self.log.info("Connection already closed.")
            return
        self.state = ConnectionState.CLOSED

        task = self._reconnect_task
        if task is not None and not task.done():
            task.cancel()

        session, self._session = self._session, None
        if session is not None:
            await self.transport.close_channel(session.channel)
            await self.transport.close_connection(session.connection)
        self.log.info("Connection closed.")

    @asynccontextmanager
    async def channel(self, operation: str) -> AsyncIterator:
        """
        Yields the current channel while holding the session lock.

        Raises:
            OperationWithoutChannel: if the client is not connected
        """
        async with self._lock:
            session = self._session
            if session is None or self.state is not ConnectionState.CONNECTED:
                raise OperationWithoutChannel(operation)
            yield session.channel

    async def _connect(self) -> Optional[Session]:
        """
        Opens a connection and a channel, then installs them as the current session.
        Returns None if the client was closed while connecting.
        """
        self.connect_attempts += 1
        cfg = self.config
        try:
            connection = await self.transport.open_connection(
                cfg.host, cfg.port, cfg.username, cfg.password, cfg.virtual_host
            )
        except ConnectFailure:
            raise
        except Exception as e:
            raise ConnectFailure(str(e)) from e

        try:
            channel = await self.transport.open_channel(connection)
        except Exception as e:
            await self.transport.close_connection(connection)
            if isinstance(e, ChannelFailure):
                raise
            raise ChannelFailure(str(e)) from e

        async with self._lock:
            if self.state is ConnectionState.CLOSED:
                session = None
            else:
                self._generation += 1
                session = Session(connection=connection, channel=channel, generation=self._generation)
                self._session = session
                self.state = ConnectionState.CONNECTED
                on_shutdown = functools.partial(self._on_shutdown, session.generation)
                self.transport.register_shutdown_listener(connection, on_shutdown)
                self.transport.register_channel_close_listener(channel, on_shutdown)

        if session is None:
            self.log.info("Client closed while connecting; releasing the new connection.")
            await self.transport.close_channel(channel)
            await self.transport.close_connection(connection)
            return None

        self.log.info(f"Successfully connected to RabbitMQ at {cfg.address}")
        return session

    def _on_shutdown(self, generation: int, cause: Optional[BaseException]):
        """
        Shutdown listener handed to the transport for both the connection and
        its channel. It can be called from any thread, so it only schedules
        the real handling onto our event loop.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._handle_shutdown, ShutdownDetected(cause=cause, generation=generation))

    def _handle_shutdown(self, signal: ShutdownDetected):
        if self.state is ConnectionState.CLOSED:
            self.log.debug(f"Ignoring shutdown signal after close: {signal.reason}")
            return
        session = self._session
        if session is None or session.generation != signal.generation:
            self.log.debug(f"Ignoring shutdown signal from replaced connection (generation {signal.generation})")
            return
        if self.state is not ConnectionState.CONNECTED:
            self.log.info(f"Connection is already {self.state.value}; ignoring duplicate shutdown signal.")
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            # The running episode installed this session and is still restoring consumers
            self.log.warning(f"Connection lost while finishing a reconnect: {signal.reason}")
            self._pending_shutdown = signal
            return

        self.last_shutdown = signal
        self.log.warning(f"Connection lost due to: {signal.reason}")

        if self.config.auto_reconnect:
            self.log.info("Attempting reconnection...")
            self._start_episode(retire=session)
        else:
            self.state = ConnectionState.DISCONNECTED
            self.log.warning("Automatic reconnect is disabled; connection is permanently lost.")
            self._spawn(self._retire_session(session))

    def _start_episode(self, retire: Optional[Session] = None) -> asyncio.Task:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        self.state = ConnectionState.RECONNECTING
        self._pending_shutdown = None
        task = self._loop.create_task(self._reconnect_episode(retire), name="rabbit-keeper-reconnect")
        task.add_done_callback(self._on_episode_done)
        self._reconnect_task = task
        return task

    def _on_episode_done(self, task: asyncio.Task):
        pending, self._pending_shutdown = self._pending_shutdown, None
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.log.error(f"Reconnect episode failed unexpectedly: {error!r}")
            if self.state is not ConnectionState.CLOSED:
                self.state = ConnectionState.DISCONNECTED
                if self._session is not None:
                    self._spawn(self._retire_session(self._session))
            return
        if pending is not None:
            self._handle_shutdown(pending)

    def _spawn(self, coro):
        task = self._loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _await_episode(self, task: asyncio.Task) -> bool:
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The episode was cancelled by close(), not our caller
            if task.cancelled():
                return False
            raise

    async def _reconnect_episode(self, retire: Optional[Session]) -> bool:
        if retire is not None:
            await self._retire_session(retire)

        max_attempts = self.config.max_reconnect_attempts
        self.reconnect_attempts = 0
        while self.reconnect_attempts < max_attempts:
            self.reconnect_attempts += 1
            attempt = self.reconnect_attempts
            await asyncio.sleep(self.config.reconnect_delay)
            if self.state is ConnectionState.CLOSED:
                return False
            try:
                session = await self._connect()
            except (ConnectFailure, ChannelFailure) as e:
                self.log.warning(f"Reconnection attempt {attempt}/{max_attempts} failed: {e}")
                continue

            if session is None:
                return False
            self.log.info(f"Reconnected successfully to RabbitMQ (attempt {attempt}).")
            await self._notify_reconnected(session)
            return True

        self.state = ConnectionState.DISCONNECTED
        self.log.error(f"Giving up after {max_attempts} failed reconnection attempts. Client is disconnected.")
        return False

    async def _retire_session(self, session: Session):
        async with self._lock:
            if self._session is not session:
                return
            self._session = None
        await self.transport.close_channel(session.channel)
        await self.transport.close_connection(session.connection)

    async def _notify_reconnected(self, session: Session):
        for listener in list(self._reconnect_listeners):
            try:
                await listener(session)
            except Exception as e:
                self.log.error(f"Reconnect listener failed: {e}")
