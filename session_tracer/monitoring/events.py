"""
Lifecycle events emitted by the agent-execution engine

Every event is an immutable pydantic model tagged by ``kind``. ``Event`` is a
discriminated union over all variants, so consumers can match exhaustively
on ``kind`` instead of probing optional fields.

Raw dictionaries (e.g. decoded JSON from an event bus) are converted with
``parse_event``, which raises ``pydantic.ValidationError`` for malformed
input.
"""

import time
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventKind(str, Enum):
    """Lifecycle event kinds"""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    MESSAGE_START = "message_start"
    MESSAGE_UPDATE = "message_update"
    MESSAGE_END = "message_end"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    RETRY_START = "retry_start"
    RETRY_END = "retry_end"
    COMPACTION_START = "compaction_start"
    COMPACTION_END = "compaction_end"


MessageRole = Literal["assistant", "user", "tool_result"]


class TokenUsage(BaseModel):
    """Token counts reported for one generation"""
    model_config = ConfigDict(frozen=True)

    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)
    cache_read: int = Field(default=0, ge=0)
    cache_write: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_read + self.cache_write

    @property
    def is_empty(self) -> bool:
        return self.total == 0


class BaseEvent(BaseModel):
    """Fields shared by every event"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str = Field(min_length=1)
    timestamp: float = Field(default_factory=time.time, ge=0)


class SessionStartEvent(BaseEvent):
    kind: Literal["session_start"] = "session_start"
    model: Optional[str] = None
    task: Optional[str] = None


class SessionEndEvent(BaseEvent):
    kind: Literal["session_end"] = "session_end"
    reason: Optional[str] = None


class TurnStartEvent(BaseEvent):
    kind: Literal["turn_start"] = "turn_start"
    turn_index: int = Field(default=0, ge=0)


class TurnEndEvent(BaseEvent):
    kind: Literal["turn_end"] = "turn_end"
    turn_index: int = Field(default=0, ge=0)


class MessageStartEvent(BaseEvent):
    kind: Literal["message_start"] = "message_start"
    message_id: str = Field(min_length=1)
    role: MessageRole = "assistant"
    model: Optional[str] = None


class MessageUpdateEvent(BaseEvent):
    kind: Literal["message_update"] = "message_update"
    message_id: str = Field(min_length=1)
    role: MessageRole = "assistant"
    text_delta: Optional[str] = None


class MessageEndEvent(BaseEvent):
    kind: Literal["message_end"] = "message_end"
    message_id: str = Field(min_length=1)
    role: MessageRole = "assistant"
    model: Optional[str] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: Optional[float] = Field(default=None, ge=0)
    stop_reason: Optional[str] = None
    error_message: Optional[str] = None


class ToolStartEvent(BaseEvent):
    kind: Literal["tool_start"] = "tool_start"
    tool_call_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)
    # Assistant message that issued the call, when the engine reports it
    message_id: Optional[str] = None


class ToolEndEvent(BaseEvent):
    kind: Literal["tool_end"] = "tool_end"
    tool_call_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    is_error: bool = False
    result_preview: Optional[str] = None


class RetryStartEvent(BaseEvent):
    kind: Literal["retry_start"] = "retry_start"
    attempt: int = Field(default=1, ge=1)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    delay_ms: Optional[float] = Field(default=None, ge=0)
    error_message: str = ""


class RetryEndEvent(BaseEvent):
    kind: Literal["retry_end"] = "retry_end"
    attempt: int = Field(default=1, ge=1)
    success: bool = True
    final_error: Optional[str] = None


class CompactionStartEvent(BaseEvent):
    kind: Literal["compaction_start"] = "compaction_start"
    reason: Literal["threshold", "overflow"] = "threshold"
    tokens_before: Optional[int] = Field(default=None, ge=0)


class CompactionEndEvent(BaseEvent):
    kind: Literal["compaction_end"] = "compaction_end"
    tokens_after: Optional[int] = Field(default=None, ge=0)
    aborted: bool = False


Event = Annotated[
    Union[
        SessionStartEvent,
        SessionEndEvent,
        TurnStartEvent,
        TurnEndEvent,
        MessageStartEvent,
        MessageUpdateEvent,
        MessageEndEvent,
        ToolStartEvent,
        ToolEndEvent,
        RetryStartEvent,
        RetryEndEvent,
        CompactionStartEvent,
        CompactionEndEvent,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter = TypeAdapter(Event)


def parse_event(data: Dict[str, Any]) -> BaseEvent:
    """Validate a raw mapping into the matching event variant"""
    return _event_adapter.validate_python(data)


__all__ = [
    "EventKind",
    "MessageRole",
    "TokenUsage",
    "BaseEvent",
    "SessionStartEvent",
    "SessionEndEvent",
    "TurnStartEvent",
    "TurnEndEvent",
    "MessageStartEvent",
    "MessageUpdateEvent",
    "MessageEndEvent",
    "ToolStartEvent",
    "ToolEndEvent",
    "RetryStartEvent",
    "RetryEndEvent",
    "CompactionStartEvent",
    "CompactionEndEvent",
    "Event",
    "parse_event",
]
