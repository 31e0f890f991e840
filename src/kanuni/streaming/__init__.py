"""Real-time progress stream.

A :class:`StreamConnection` keeps one WebSocket open, replaying its
:class:`SubscriptionRegistry` after every reconnect. A
:class:`ProgressTracker` drains the connection in a background task and
keeps an ordered event log per entity id.

Example:
    ```python
    connection = StreamConnection(
        settings.stream_url,
        credential_manager,
        policy=ReconnectPolicy.from_config(settings.stream),
    )
    async with ProgressTracker(connection) as tracker:
        await tracker.track_upload(document_id)
    ```
"""

from __future__ import annotations

from kanuni.streaming.backoff import ReconnectPolicy
from kanuni.streaming.connection import (
    AiohttpConnector,
    ConnectionState,
    Connector,
    StreamConnection,
    TokenProvider,
    WebSocketLike,
    with_token,
)
from kanuni.streaming.exceptions import (
    ConnectivityError,
    ProtocolError,
    ReconnectExhaustedError,
    StreamError,
    SubscriptionError,
)
from kanuni.streaming.models import (
    AnalysisProgressEvent,
    AnalysisStage,
    BatchProgressEvent,
    ChannelType,
    Command,
    CompleteEvent,
    CompleteEventType,
    ErrorEvent,
    ErrorType,
    FileProgress,
    FileStatus,
    MessageType,
    PingCommand,
    ProgressEnvelope,
    ProgressEvent,
    ServerMessage,
    SubscribeCommand,
    Subscription,
    UnsubscribeCommand,
    UploadProgressEvent,
    decode_progress_event,
    decode_server_message,
)
from kanuni.streaming.registry import SubscriptionRegistry
from kanuni.streaming.tracker import ProgressTracker


__all__ = [
    "AiohttpConnector",
    "AnalysisProgressEvent",
    "AnalysisStage",
    "BatchProgressEvent",
    "ChannelType",
    "Command",
    "CompleteEvent",
    "CompleteEventType",
    "ConnectionState",
    "ConnectivityError",
    "Connector",
    "ErrorEvent",
    "ErrorType",
    "FileProgress",
    "FileStatus",
    "MessageType",
    "PingCommand",
    "ProgressEnvelope",
    "ProgressEvent",
    "ProgressTracker",
    "ProtocolError",
    "ReconnectExhaustedError",
    "ReconnectPolicy",
    "ServerMessage",
    "StreamConnection",
    "StreamError",
    "SubscribeCommand",
    "Subscription",
    "SubscriptionError",
    "SubscriptionRegistry",
    "TokenProvider",
    "UnsubscribeCommand",
    "UploadProgressEvent",
    "WebSocketLike",
    "decode_progress_event",
    "decode_server_message",
    "with_token",
]
