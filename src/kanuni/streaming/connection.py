"""Persistent WebSocket connection delivering progress events."""

from __future__ import annotations

import asyncio
import contextlib
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp
import structlog

from kanuni.auth.exceptions import AuthenticationError
from kanuni.errors import ApiError
from kanuni.streaming.backoff import ReconnectPolicy
from kanuni.streaming.exceptions import (
    ConnectivityError,
    ProtocolError,
    ReconnectExhaustedError,
    SubscriptionError,
)
from kanuni.streaming.models import (
    ChannelType,
    Command,
    MessageType,
    PingCommand,
    ProgressEvent,
    Subscription,
    decode_server_message,
)
from kanuni.streaming.registry import SubscriptionRegistry


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


__all__ = [
    "AiohttpConnector",
    "ConnectionState",
    "Connector",
    "StreamConnection",
    "TokenProvider",
    "WebSocketLike",
    "with_token",
]


class ConnectionState(StrEnum):
    """Lifecycle of a :class:`StreamConnection`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token (a CredentialManager)."""

    async def get_access_token(self) -> str: ...


class WebSocketLike(Protocol):
    """Subset of ``aiohttp.ClientWebSocketResponse`` the connection uses."""

    @property
    def closed(self) -> bool: ...

    async def receive(self) -> aiohttp.WSMessage: ...

    async def send_str(self, data: str) -> None: ...

    async def close(self) -> Any: ...  # noqa: ANN401


class Connector(Protocol):
    """Opens WebSocket connections."""

    async def __call__(self, url: str) -> WebSocketLike: ...

    async def close(self) -> None: ...


class AiohttpConnector:
    """Opens WebSockets through a lazily created ``aiohttp.ClientSession``."""

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout
        self._session: aiohttp.ClientSession | None = None

    async def __call__(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, connect=self._connect_timeout),
            )
        # Heartbeats are sent as protocol-level ping commands, not WS pings.
        return await self._session.ws_connect(url, autoping=True, heartbeat=None)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


def with_token(url: str, token: str) -> str:
    """Return ``url`` with its ``token`` query parameter set to ``token``."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


# Marker put on the event queue when the I/O loop loses its socket.
_CONNECTION_LOST: Any = object()

_CLOSING_TYPES = frozenset(
    {
        aiohttp.WSMsgType.CLOSE,
        aiohttp.WSMsgType.CLOSING,
        aiohttp.WSMsgType.CLOSED,
        aiohttp.WSMsgType.ERROR,
    },
)


class StreamConnection:
    """One WebSocket to the progress stream with reconnect and resubscription.

    A single I/O task owns the socket. It waits on whichever comes first, the
    next inbound frame or the next queued outbound command. Progress events
    are put on an internal queue read through :meth:`next_event`. Every
    successful :meth:`connect` replays the subscription registry in order.

    Example:
        ```python
        connection = StreamConnection(settings.stream_url, credential_manager)
        await connection.subscribe(ChannelType.ANALYSIS, analysis_id)
        while (event := await connection.next_event()) is not None:
            print(event.message)
        ```
    """

    def __init__(  # noqa: PLR0913
        self,
        url: str,
        credentials: TokenProvider,
        *,
        registry: SubscriptionRegistry | None = None,
        policy: ReconnectPolicy | None = None,
        ping_interval: float = 30.0,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the connection; nothing is opened until :meth:`connect`.

        Args:
            url: WebSocket URL without the token.
            credentials: Supplies the bearer token for every connect.
            registry: Subscriptions to maintain; a new one by default.
            policy: Reconnect backoff policy.
            ping_interval: Seconds between heartbeat pings.
            connector: Opens sockets; aiohttp by default.
            sleep: Used for reconnect delays; injectable for tests.
            clock: Monotonic clock used to bound reconnect time.
        """
        self._url = url
        self._credentials = credentials
        self._registry = registry if registry is not None else SubscriptionRegistry()
        self._policy = policy or ReconnectPolicy()
        self._ping_interval = ping_interval
        self._connector: Connector = connector or AiohttpConnector()
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._ws: WebSocketLike | None = None
        self._commands: asyncio.Queue[Command] | None = None
        self._events: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._io_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()
        self._logger = structlog.get_logger(__name__)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def closed(self) -> bool:
        """True once :meth:`disconnect` was called."""
        return self._closed

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket, start the I/O and heartbeat tasks, resubscribe.

        No-op when already connected.

        Raises:
            AuthenticationError: If no token can be obtained.
            ConnectivityError: If the socket cannot be opened.
        """
        async with self._connect_lock:
            if self._state is ConnectionState.CONNECTED:
                return
            if self._io_task is not None or self._ws is not None:
                # Left over from a connection that dropped
                await self._teardown()

            self._closed = False
            self._state = ConnectionState.CONNECTING
            log = self._logger.bind(url=self._url)

            try:
                token = await self._credentials.get_access_token()
            except AuthenticationError:
                self._state = ConnectionState.DISCONNECTED
                raise
            except ApiError as exc:
                self._state = ConnectionState.DISCONNECTED
                msg = f"Could not obtain an access token: {exc}"
                raise ConnectivityError(msg) from exc

            try:
                ws = await self._connector(with_token(self._url, token))
            except (aiohttp.ClientError, OSError, TimeoutError) as exc:
                self._state = ConnectionState.DISCONNECTED
                log.debug("stream_connect_failed", error=str(exc))
                msg = f"Failed to open progress stream: {exc}"
                raise ConnectivityError(msg) from exc

            commands: asyncio.Queue[Command] = asyncio.Queue()
            self._ws = ws
            self._commands = commands
            self._state = ConnectionState.CONNECTED
            self._io_task = asyncio.create_task(
                self._io_loop(ws, commands),
                name="kanuni-stream-io",
            )
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat(commands),
                name="kanuni-stream-heartbeat",
            )

            replay = self._registry.snapshot()
            for subscription in replay:
                commands.put_nowait(subscription.subscribe_command())

            log.info("stream_connected", resubscribed=len(replay))

    async def disconnect(self) -> None:
        """Close the socket and stop delivering events.

        Pending and future :meth:`next_event` calls return None.
        """
        self._closed = True
        self._state = ConnectionState.DISCONNECTED
        await self._teardown()
        await self._connector.close()
        self._events.put_nowait(None)
        self._logger.info("stream_disconnected")

    async def handle_reconnect(self) -> None:
        """Reconnect with backoff, replaying every subscription.

        Raises:
            AuthenticationError: If the credential is no longer usable.
            ReconnectExhaustedError: If every attempt failed, or the next
                delay would cross the elapsed-time ceiling.
        """
        policy = self._policy
        await self._teardown()
        self._state = ConnectionState.DISCONNECTED

        started = self._clock()
        last_error: ConnectivityError | None = None
        attempt = 0

        while attempt < policy.max_attempts:
            if self._closed:
                return
            attempt += 1
            try:
                await self.connect()
            except ConnectivityError as exc:
                last_error = exc
                self._logger.warning(
                    "stream_reconnect_failed",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error=str(exc),
                )
            else:
                self._logger.info("stream_reconnected", attempt=attempt)
                return

            if attempt >= policy.max_attempts:
                break
            delay = policy.delay(attempt)
            if self._clock() - started + delay > policy.max_elapsed:
                self._logger.warning("stream_reconnect_deadline", attempt=attempt)
                break
            await self._sleep(delay)

        raise ReconnectExhaustedError(
            attempts=attempt,
            elapsed=self._clock() - started,
        ) from last_error

    async def _teardown(self) -> None:
        """Stop the background tasks and close the socket, if any."""
        ws, self._ws = self._ws, None
        self._commands = None
        tasks = [t for t in (self._io_task, self._heartbeat_task) if t is not None]
        self._io_task = self._heartbeat_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if ws is not None and not ws.closed:
            with contextlib.suppress(aiohttp.ClientError, OSError):
                await ws.close()

    def _on_connection_lost(self, ws: WebSocketLike) -> None:
        # Only the current socket may flip the state; a stale loop is ignored.
        if self._ws is not ws or self._closed:
            return
        self._state = ConnectionState.DISCONNECTED
        self._commands = None
        self._events.put_nowait(_CONNECTION_LOST)
        self._logger.warning("stream_connection_lost")

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def _send(self, command: Command) -> None:
        if self._commands is None or self._state is not ConnectionState.CONNECTED:
            msg = "not connected"
            raise SubscriptionError(msg)
        self._commands.put_nowait(command)

    async def subscribe(self, channel_type: ChannelType, entity_id: str) -> None:
        """Follow an entity, connecting first if needed.

        Raises:
            AuthenticationError: If connecting needs a token and none is usable.
            ConnectivityError: If connecting fails.
            SubscriptionError: If the connection dropped before sending.
        """
        subscription = Subscription(ChannelType(channel_type), entity_id)
        if not self.is_connected():
            await self.connect()
            if subscription in self._registry:
                # Replayed by connect()
                return
        elif subscription in self._registry:
            return

        self._send(subscription.subscribe_command())
        self._registry.add(subscription.channel_type, entity_id)
        self._logger.debug(
            "stream_subscribed",
            channel_type=str(subscription.channel_type),
            entity_id=entity_id,
        )

    async def unsubscribe(self, channel_type: ChannelType, entity_id: str) -> None:
        """Stop following an entity.

        The entity is always dropped from the registry, so it is not replayed
        on reconnect. The unsubscribe command is only sent while connected.
        """
        subscription = Subscription(ChannelType(channel_type), entity_id)
        if not self._registry.remove(subscription.channel_type, entity_id):
            return
        if self.is_connected():
            self._send(subscription.unsubscribe_command())
        self._logger.debug(
            "stream_unsubscribed",
            channel_type=str(subscription.channel_type),
            entity_id=entity_id,
        )

    # -------------------------------------------------------------------------
    # Inbound events
    # -------------------------------------------------------------------------

    async def next_event(self) -> ProgressEvent | None:
        """Wait for the next progress event.

        Returns:
            The event, or None once the connection has been closed with
            :meth:`disconnect`.

        Raises:
            ConnectivityError: If the connection was lost. Call
                :meth:`handle_reconnect` and keep reading.
        """
        if self._closed and self._events.empty():
            return None
        item = await self._events.get()
        if item is _CONNECTION_LOST:
            msg = "Progress stream connection lost"
            raise ConnectivityError(msg)
        return item

    def _handle_text(self, raw: str) -> None:
        try:
            message = decode_server_message(raw)
        except ProtocolError as exc:
            self._logger.warning("stream_message_discarded", error=str(exc), raw=exc.raw)
            return

        if message.message_type is MessageType.PROGRESS:
            try:
                envelope = message.progress()
            except ProtocolError as exc:
                self._logger.warning(
                    "stream_message_discarded",
                    error=str(exc),
                    raw=exc.raw,
                )
                return
            self._events.put_nowait(envelope.event)
            self._logger.debug(
                "stream_progress_received",
                entity_id=envelope.event.entity_id,
                event_type=envelope.event.type,
                sequence=envelope.sequence,
            )
        elif message.message_type is MessageType.ERROR:
            self._logger.warning("stream_server_error", data=message.data)
        else:
            self._logger.debug("stream_message", message_type=str(message.message_type))

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def _io_loop(
        self,
        ws: WebSocketLike,
        commands: asyncio.Queue[Command],
    ) -> None:
        receive: asyncio.Future[aiohttp.WSMessage] | None = None
        outgoing: asyncio.Future[Command] | None = None
        try:
            while True:
                if receive is None:
                    receive = asyncio.ensure_future(ws.receive())
                if outgoing is None:
                    outgoing = asyncio.ensure_future(commands.get())

                done, _ = await asyncio.wait(
                    {receive, outgoing},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if outgoing in done:
                    command = outgoing.result()
                    outgoing = None
                    await ws.send_str(command.to_wire())

                if receive in done:
                    message = receive.result()
                    receive = None
                    if message.type is aiohttp.WSMsgType.TEXT:
                        self._handle_text(message.data)
                    elif message.type in _CLOSING_TYPES:
                        self._logger.info(
                            "stream_closed_by_server",
                            msg_type=message.type.name,
                        )
                        break
        except (aiohttp.ClientError, OSError) as exc:
            self._logger.warning("stream_io_failed", error=str(exc))
        finally:
            for pending in (receive, outgoing):
                if pending is not None and not pending.done():
                    pending.cancel()
            self._on_connection_lost(ws)

    async def _heartbeat(self, commands: asyncio.Queue[Command]) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            if self._commands is not commands or not self.is_connected():
                return
            commands.put_nowait(PingCommand())
