"""Pydantic models for chat messages, reasoning steps and stream events."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .models import BackendMessage


class MessageRole(str, Enum):
    """Enumeration for message roles in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class ReasoningStepType(str, Enum):
    """
    Presentational grouping of a reasoning step.

    Derived from the backend node that produced the step; it only decides how
    a step is drawn, never how it is processed.
    """

    SEARCH = "search"
    HISTORY = "history"
    MCP = "mcp"
    STRATEGY = "strategy"
    EXECUTE = "execute"
    INTENT = "intent"
    PLAN = "plan"
    STEP = "step"
    WEB_SEARCH = "web_search"
    APP_DATA = "app_data"


class ReasoningStepStatus(str, Enum):
    """Lifecycle status of a reasoning step."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether the step has finished, successfully or not."""
        return self in (ReasoningStepStatus.COMPLETED, ReasoningStepStatus.ERROR)


class ReasoningStep(BaseModel):
    """One backend processing stage as shown under an assistant message."""

    id: str = Field(description="Unique within the owning message's reasoning list")
    type: ReasoningStepType
    status: ReasoningStepStatus
    title: str
    details: str | None = None
    node: str | None = Field(default=None, description="Backend node that opened this step")
    timestamp: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(BaseModel):
    """A user or assistant turn as displayed in a conversation."""

    id: str
    role: MessageRole
    content: str = ""
    timestamp: str = Field(default_factory=_now_iso)
    reasoning: list[ReasoningStep] | None = None

    @classmethod
    def user(cls, content: str) -> 'ChatMessage':
        """Build a user message with a temporary client-side id."""
        return cls(id=f"temp-{uuid4().hex}", role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, message_id: str | None = None, timestamp: str | None = None) -> 'ChatMessage':  # noqa: E501
        """Build an empty in-flight assistant message."""
        return cls(
            id=message_id or f"assistant-{uuid4().hex}",
            role=MessageRole.ASSISTANT,
            content="",
            timestamp=timestamp or _now_iso(),
            reasoning=[],
        )

    @classmethod
    def from_backend(cls, message: BackendMessage) -> 'ChatMessage':
        """Convert a persisted backend message to its display form."""
        metadata = message.message_metadata or {}
        try:
            timestamp = datetime.fromisoformat(message.created_at).isoformat()
        except ValueError:
            timestamp = message.created_at
        return cls(
            id=str(message.id),
            role=MessageRole.USER if message.sender == "user" else MessageRole.ASSISTANT,
            content=message.content,
            timestamp=timestamp,
            reasoning=[] if metadata.get("step_results") else None,
        )


class StreamEventType(str, Enum):
    """
    Kinds of events delivered by the streaming chat endpoint.

    - NODE_START / NODE_END: bracket one backend processing node
    - INTENT: classified intent of the user's request
    - PLAN: execution plan produced by the planner
    - STEP: one executed plan step with its outcome
    - WEB_SEARCH: a web search finished
    - APP_DATA: data was read from a connected app
    - ANSWER: (partial) answer text
    - DONE: terminal, carries the final answer and conversation id
    - ERROR: terminal, carries an error message
    """

    NODE_START = "node_start"
    NODE_END = "node_end"
    INTENT = "intent"
    PLAN = "plan"
    STEP = "step"
    WEB_SEARCH = "web_search"
    APP_DATA = "app_data"
    ANSWER = "answer"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether this event ends the turn."""
        return self in (StreamEventType.DONE, StreamEventType.ERROR)


class StreamEventData(BaseModel):
    """Payload of a stream event. Each event kind reads only some fields."""

    model_config = ConfigDict(extra='allow')

    node: Any = None
    intent: Any = None
    plan: Any = None
    step: Any = None
    current_step: Any = None
    total_steps: Any = None
    results_count: Any = None
    content: Any = None
    conversation_id: Any = None
    answer: Any = None
    error: Any = None
    timestamp: Any = None


class StreamEvent(BaseModel):
    """A single event of a chat turn's stream."""

    event: StreamEventType
    data: StreamEventData = Field(default_factory=StreamEventData)
    synthetic: bool = Field(
        default=False,
        description="Created locally (transport failure, timeout) rather than sent by the backend",
    )

    @classmethod
    def error(cls, message: str, synthetic: bool = True) -> 'StreamEvent':
        """Build an ``error`` event."""
        return cls(
            event=StreamEventType.ERROR,
            data=StreamEventData(error=message),
            synthetic=synthetic,
        )
