"""Per-entity progress tracking on top of a StreamConnection."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Self

import structlog

from kanuni.auth.exceptions import AuthenticationError
from kanuni.streaming.exceptions import ConnectivityError, SubscriptionError
from kanuni.streaming.models import ChannelType, ProgressEvent


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from kanuni.streaming.connection import StreamConnection


__all__ = ["ProgressTracker"]


class ProgressTracker:
    """Collects progress events per entity id.

    Events are kept in arrival order for the lifetime of the tracker. When a
    ``complete`` or ``error`` event arrives for a tracked entity, that entity
    is unsubscribed and no longer tracked; its events stay readable.

    Example:
        ```python
        async with ProgressTracker(connection) as tracker:
            await tracker.track_analysis(analysis_id)
            event = await tracker.wait_for_terminal(analysis_id, timeout=300)
        ```
    """

    DEFAULT_RETRY_DELAY = 5.0

    def __init__(
        self,
        connection: StreamConnection,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the tracker.

        Args:
            connection: The stream to read events from.
            retry_delay: Pause after an exhausted reconnect before trying again.
            sleep: Used for the retry pause; injectable for tests.
        """
        self._connection = connection
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._events: dict[str, list[ProgressEvent]] = {}
        self._active: dict[str, list[ChannelType]] = {}
        self._changed = asyncio.Condition()
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self._logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> Self:
        self.start_processing()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.disconnect()

    @property
    def connection(self) -> StreamConnection:
        return self._connection

    @property
    def is_running(self) -> bool:
        """True while the background processing task is alive."""
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    async def track(self, channel_type: ChannelType, entity_id: str) -> None:
        """Subscribe to an entity's events.

        Raises:
            AuthenticationError: If the stream needs a token and none is usable.
            ConnectivityError: If the stream cannot be opened.
            SubscriptionError: If the connection dropped while subscribing.
        """
        channel_type = ChannelType(channel_type)
        await self._connection.subscribe(channel_type, entity_id)
        channels = self._active.setdefault(entity_id, [])
        if channel_type not in channels:
            channels.append(channel_type)

    async def track_upload(self, document_id: str) -> None:
        await self.track(ChannelType.UPLOAD, document_id)

    async def track_analysis(self, analysis_id: str) -> None:
        await self.track(ChannelType.ANALYSIS, analysis_id)

    async def track_batch(self, batch_id: str) -> None:
        await self.track(ChannelType.BATCH, batch_id)

    def is_tracking(self, entity_id: str) -> bool:
        """True until a terminal event for ``entity_id`` has been stored."""
        return entity_id in self._active

    def get_events(self, entity_id: str) -> list[ProgressEvent]:
        """All events stored for ``entity_id``, oldest first."""
        return list(self._events.get(entity_id, ()))

    def get_latest_event(self, entity_id: str) -> ProgressEvent | None:
        """The most recent event for ``entity_id``, if any."""
        events = self._events.get(entity_id)
        return events[-1] if events else None

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    async def wait_for_update(
        self,
        entity_id: str,
        *,
        seen: int,
        timeout: float | None,  # noqa: ASYNC109
    ) -> list[ProgressEvent]:
        """Wait until more than ``seen`` events exist for ``entity_id``.

        Returns:
            The events after the first ``seen``; empty on timeout or after
            the tracker stopped.
        """

        def has_news() -> bool:
            return self._stopped or len(self._events.get(entity_id, ())) > seen

        try:
            async with asyncio.timeout(timeout), self._changed:
                await self._changed.wait_for(has_news)
        except TimeoutError:
            pass
        return self.get_events(entity_id)[seen:]

    async def wait_for_terminal(
        self,
        entity_id: str,
        *,
        timeout: float | None,  # noqa: ASYNC109
    ) -> ProgressEvent | None:
        """Wait for a ``complete`` or ``error`` event for ``entity_id``.

        Returns:
            The terminal event, or None on timeout or once the tracker stopped.
        """

        def finished() -> bool:
            latest = self.get_latest_event(entity_id)
            return self._stopped or (latest is not None and latest.is_terminal)

        try:
            async with asyncio.timeout(timeout), self._changed:
                await self._changed.wait_for(finished)
        except TimeoutError:
            return None

        latest = self.get_latest_event(entity_id)
        if latest is not None and latest.is_terminal:
            return latest
        return None

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def _store(self, event: ProgressEvent) -> None:
        entity_id = event.entity_id
        self._events.setdefault(entity_id, []).append(event)

        if event.is_terminal:
            for channel_type in self._active.pop(entity_id, []):
                try:
                    await self._connection.unsubscribe(channel_type, entity_id)
                except SubscriptionError:
                    # Connection dropped; the registry entry is gone already
                    self._logger.debug("unsubscribe_skipped", entity_id=entity_id)
            self._logger.debug(
                "tracking_finished",
                entity_id=entity_id,
                outcome=event.type,
            )

        async with self._changed:
            self._changed.notify_all()

    async def process_events(self) -> None:
        """Store events until the connection is closed.

        Raises:
            ConnectivityError: If the connection is lost.
        """
        while (event := await self._connection.next_event()) is not None:
            await self._store(event)

    async def _reconnect(self) -> bool:
        """Run one round of reconnect attempts; False if it was exhausted."""
        try:
            await self._connection.handle_reconnect()
        except ConnectivityError as exc:
            self._logger.error(  # noqa: TRY400
                "progress_stream_unavailable",
                error=str(exc),
                retry_in=self._retry_delay,
            )
            await self._sleep(self._retry_delay)
            return False
        return True

    async def _run(self) -> None:
        connection = self._connection
        lost = False
        try:
            while not connection.closed:
                if lost and not connection.is_connected():
                    # Nothing will arrive on the queue until a new socket is open
                    if not await self._reconnect():
                        continue
                lost = False
                try:
                    await self.process_events()
                except ConnectivityError as exc:
                    if connection.closed:
                        break
                    self._logger.info("progress_stream_reconnecting", reason=str(exc))
                    lost = True
                else:
                    return
        except AuthenticationError as exc:
            self._logger.error("progress_stream_auth_failed", error=str(exc))  # noqa: TRY400
        finally:
            self._stopped = True
            async with self._changed:
                self._changed.notify_all()

    def start_processing(self) -> asyncio.Task[None]:
        """Start the background task that stores incoming events.

        The task reconnects after a lost connection and keeps running until
        :meth:`disconnect` is called, or until the credential is rejected.
        """
        if self._task is None or self._task.done():
            self._stopped = False
            self._task = asyncio.create_task(self._run(), name="kanuni-progress")
        return self._task

    async def disconnect(self) -> None:
        """Close the connection and stop the processing task."""
        await self._connection.disconnect()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._stopped = True
        async with self._changed:
            self._changed.notify_all()
