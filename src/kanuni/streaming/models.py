"""Wire models for the progress stream.

Inbound frames are ``{message_type, data, timestamp}`` envelopes. Only
``progress`` envelopes carry a :data:`ProgressEvent`, nested as
``{id, event, user_id, sequence}``. Events are tagged by their ``type`` field.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime  # noqa: TC003 - needed at runtime for Pydantic
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from kanuni.streaming.exceptions import ProtocolError


__all__ = [
    "AnalysisProgressEvent",
    "AnalysisStage",
    "BatchProgressEvent",
    "ChannelType",
    "Command",
    "CompleteEvent",
    "CompleteEventType",
    "ErrorEvent",
    "ErrorType",
    "FileProgress",
    "FileStatus",
    "MessageType",
    "PingCommand",
    "ProgressEnvelope",
    "ProgressEvent",
    "ServerMessage",
    "SubscribeCommand",
    "Subscription",
    "UnsubscribeCommand",
    "UploadProgressEvent",
    "decode_progress_event",
    "decode_server_message",
]


class StreamBaseModel(BaseModel):
    """Base model for stream payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChannelType(StrEnum):
    """Kind of entity a subscription follows."""

    UPLOAD = "upload"
    ANALYSIS = "analysis"
    BATCH = "batch"
    USER = "user"


class AnalysisStage(StrEnum):
    """Pipeline stage reported by analysis progress events, in order."""

    QUEUED = "queued"
    STARTING = "starting"
    EXTRACTING_TEXT = "extracting_text"
    CHUNKING_TEXT = "chunking_text"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    ANALYZING_CONTENT = "analyzing_content"
    FINALIZING = "finalizing"
    COMPLETED = "completed"

    @property
    def display_name(self) -> str:
        """Title-cased label, e.g. ``Extracting Text``."""
        return self.value.replace("_", " ").title()

    @property
    def is_terminal(self) -> bool:
        """True only for ``completed``."""
        return self is AnalysisStage.COMPLETED


class FileStatus(StrEnum):
    """Per-file status inside a batch."""

    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorType(StrEnum):
    """Category of a stream error event."""

    UPLOAD = "upload"
    ANALYSIS = "analysis"
    SYSTEM = "system"
    NETWORK = "network"


class CompleteEventType(StrEnum):
    """What finished, for a complete event."""

    UPLOAD = "upload"
    ANALYSIS = "analysis"
    BATCH = "batch"


class MessageType(StrEnum):
    """Envelope discriminator of inbound frames."""

    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    PROGRESS = "progress"
    ERROR = "error"
    PONG = "pong"


Percent = Annotated[int, Field(ge=0, le=100)]


# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------


class UploadProgressEvent(StreamBaseModel):
    """Bytes transferred for a document upload."""

    type: Literal["upload"] = "upload"
    document_id: str
    file_name: str
    bytes_uploaded: int = 0
    total_bytes: int = 0
    progress: Percent = 0
    message: str = ""

    @property
    def entity_id(self) -> str:
        return self.document_id

    @property
    def is_terminal(self) -> bool:
        return False


class AnalysisProgressEvent(StreamBaseModel):
    """Stage change or progress update for an analysis."""

    type: Literal["analysis"] = "analysis"
    analysis_id: str
    document_id: str
    stage: AnalysisStage
    progress: Percent = 0
    message: str = ""
    details: Any | None = None

    @property
    def entity_id(self) -> str:
        return self.analysis_id

    @property
    def is_terminal(self) -> bool:
        return False


class FileProgress(StreamBaseModel):
    """Progress of one file in a batch."""

    document_id: str
    file_name: str
    status: FileStatus
    progress: Percent = 0
    message: str = ""


class BatchProgressEvent(StreamBaseModel):
    """Aggregate progress of a batch job."""

    type: Literal["batch"] = "batch"
    batch_id: str
    total_files: int
    completed_files: int = 0
    current_file: str | None = None
    overall_progress: Percent = 0
    file_progress: dict[str, FileProgress] = Field(default_factory=dict)
    message: str = ""

    @property
    def entity_id(self) -> str:
        return self.batch_id

    @property
    def is_terminal(self) -> bool:
        return False


class ErrorEvent(StreamBaseModel):
    """Terminal failure of an upload, analysis or batch."""

    type: Literal["error"] = "error"
    id: str
    error_type: ErrorType
    message: str = ""
    details: Any | None = None

    @property
    def entity_id(self) -> str:
        return self.id

    @property
    def is_terminal(self) -> bool:
        return True


class CompleteEvent(StreamBaseModel):
    """Terminal success of an upload, analysis or batch."""

    type: Literal["complete"] = "complete"
    id: str
    event_type: CompleteEventType
    message: str = ""
    result: Any | None = None

    @property
    def entity_id(self) -> str:
        return self.id

    @property
    def is_terminal(self) -> bool:
        return True


ProgressEvent = Annotated[
    UploadProgressEvent
    | AnalysisProgressEvent
    | BatchProgressEvent
    | ErrorEvent
    | CompleteEvent,
    Field(discriminator="type"),
]

_PROGRESS_EVENT_ADAPTER: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ProgressEnvelope(StreamBaseModel):
    """Payload of a ``progress`` message.

    ``sequence`` is informational only; ordering is the order of arrival.
    """

    id: str
    event: ProgressEvent
    user_id: str | None = None
    sequence: int | None = None


class ServerMessage(StreamBaseModel):
    """Inbound frame envelope."""

    message_type: MessageType
    data: Any = None
    timestamp: datetime | None = None

    def progress(self) -> ProgressEnvelope:
        """Decode ``data`` of a progress message.

        Raises:
            ProtocolError: If this is not a progress message or ``data`` is
                not a valid progress payload.
        """
        if self.message_type is not MessageType.PROGRESS:
            msg = f"Not a progress message: {self.message_type}"
            raise ProtocolError(msg)
        try:
            return ProgressEnvelope.model_validate(self.data)
        except ValidationError as exc:
            msg = f"Malformed progress payload: {exc.error_count()} error(s)"
            raise ProtocolError(msg, raw=repr(self.data)) from exc


def decode_server_message(raw: str | bytes) -> ServerMessage:
    """Parse one inbound text frame.

    Raises:
        ProtocolError: If the frame is not JSON or has an unknown
            ``message_type``.
    """
    try:
        return ServerMessage.model_validate_json(raw)
    except ValidationError as exc:
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        msg = f"Malformed stream message: {exc.errors()[0]['msg']}"
        raise ProtocolError(msg, raw=text) from exc


def decode_progress_event(data: Any) -> ProgressEvent:  # noqa: ANN401
    """Validate a bare progress event dict (without envelope)."""
    try:
        return _PROGRESS_EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        msg = "Malformed progress event"
        raise ProtocolError(msg, raw=repr(data)) from exc


# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


class SubscribeCommand(StreamBaseModel):
    """Start receiving events for one entity."""

    action: Literal["subscribe"] = "subscribe"
    channel_type: ChannelType
    id: str

    def to_wire(self) -> str:
        return self.model_dump_json()


class UnsubscribeCommand(StreamBaseModel):
    """Stop receiving events for one entity."""

    action: Literal["unsubscribe"] = "unsubscribe"
    channel_type: ChannelType
    id: str

    def to_wire(self) -> str:
        return self.model_dump_json()


class PingCommand(StreamBaseModel):
    """Heartbeat; answered with a ``pong`` message."""

    action: Literal["ping"] = "ping"

    def to_wire(self) -> str:
        return self.model_dump_json()


Command = SubscribeCommand | UnsubscribeCommand | PingCommand


@dataclass(frozen=True, slots=True)
class Subscription:
    """One followed entity: ``(channel_type, entity_id)``."""

    channel_type: ChannelType
    entity_id: str

    def subscribe_command(self) -> SubscribeCommand:
        return SubscribeCommand(channel_type=self.channel_type, id=self.entity_id)

    def unsubscribe_command(self) -> UnsubscribeCommand:
        return UnsubscribeCommand(channel_type=self.channel_type, id=self.entity_id)
