"""
Fold a chat turn's stream events into one assistant message.

The backend reports its progress as an ordered stream of events (see
``StreamEventType``). ``ReasoningTraceReducer`` owns the in-flight assistant
``ChatMessage`` of a single turn and updates it in place for every event: node
events open and close reasoning steps, plan/step/search events append finished
steps, answer events replace the text, and ``done``/``error`` finalize it.

Step order always equals event order. Steps are appended or updated in place,
never removed or reordered. Malformed events are dropped so one bad payload
cannot abort a turn that is otherwise progressing.

Example:
    >>> reducer = ReasoningTraceReducer(ChatMessage.assistant("m1"))
    >>> _ = reducer.apply(StreamEvent(event="node_start", data={"node": "classify_intent"}))
    >>> message = reducer.apply(StreamEvent(event="done", data={"answer": "Xin chào!"}))
    >>> message.content
    'Xin chào!'
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from .reasoning_models import (
    ChatMessage,
    ReasoningStep,
    ReasoningStepStatus,
    ReasoningStepType,
    StreamEvent,
    StreamEventType,
)

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "

# Message timestamp used by fold_events unless one is given
REPLAY_TIMESTAMP = "1970-01-01T00:00:00+00:00"

NODE_TITLES: dict[str, str] = {
    "load_history": "Loading conversation history",
    "classify_intent": "Understanding your request",
    "intent_classifier": "Understanding your request",
    "create_plan": "Planning the approach",
    "planner": "Planning the approach",
    "execute_plan": "Executing the plan",
    "executor": "Executing the plan",
    "web_search": "Searching the web",
    "fetch_app_data": "Reading connected app data",
    "mcp_tools": "Reading connected app data",
    "generate_answer": "Writing the answer",
    "synthesizer": "Writing the answer",
}

NODE_TYPES: dict[str, ReasoningStepType] = {
    "load_history": ReasoningStepType.HISTORY,
    "classify_intent": ReasoningStepType.INTENT,
    "intent_classifier": ReasoningStepType.INTENT,
    "create_plan": ReasoningStepType.PLAN,
    "planner": ReasoningStepType.PLAN,
    "execute_plan": ReasoningStepType.EXECUTE,
    "executor": ReasoningStepType.EXECUTE,
    "web_search": ReasoningStepType.WEB_SEARCH,
    "fetch_app_data": ReasoningStepType.APP_DATA,
    "mcp_tools": ReasoningStepType.MCP,
    "generate_answer": ReasoningStepType.STEP,
    "synthesizer": ReasoningStepType.STEP,
}

# Checked in order; first keyword contained in the node name wins.
_NODE_KEYWORDS: tuple[tuple[str, ReasoningStepType], ...] = (
    ("intent", ReasoningStepType.INTENT),
    ("plan", ReasoningStepType.PLAN),
    ("search", ReasoningStepType.SEARCH),
    ("history", ReasoningStepType.HISTORY),
    ("mcp", ReasoningStepType.MCP),
    ("app", ReasoningStepType.APP_DATA),
)


def classify_node(node: str) -> ReasoningStepType:
    """
    Map a backend node name to the step type used to display it.

    Exact names come from ``NODE_TYPES``; other names are classified by
    keyword, defaulting to ``execute``.
    """
    if node in NODE_TYPES:
        return NODE_TYPES[node]
    lowered = node.lower()
    for keyword, step_type in _NODE_KEYWORDS:
        if keyword in lowered:
            return step_type
    return ReasoningStepType.EXECUTE


def node_title(node: str) -> str:
    """Human-readable label for a backend node."""
    return NODE_TITLES.get(node, f"Processing: {node}")


def _text(value: Any) -> str | None:
    """Render a payload value as display text; None for absent or empty values."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return json.dumps(value, ensure_ascii=False, default=str)


class MalformedEventError(ValueError):
    """Raised internally when an event lacks a field its kind requires."""


class ReasoningTraceReducer:
    """
    Owns one assistant message and folds a turn's events into it.

    The node index maps each node name to the most recently started step for
    that node. It lives and dies with the reducer, i.e. with one turn.
    """

    def __init__(self, message: ChatMessage):
        if message.reasoning is None:
            message.reasoning = []
        self.message = message
        self._steps_by_node: dict[str, ReasoningStep] = {}
        self._step_count = 0
        self._finalized = False
        self._conversation_id: int | None = None
        self._error: str | None = None

    @property
    def finalized(self) -> bool:
        """True once a ``done`` or ``error`` event was applied."""
        return self._finalized

    @property
    def conversation_id(self) -> int | None:
        """Conversation id announced by the ``done`` event, if any."""
        return self._conversation_id

    @property
    def error(self) -> str | None:
        """Error message of the ``error`` event that ended the turn, if any."""
        return self._error

    @property
    def steps(self) -> list[ReasoningStep]:
        """Reasoning steps in event order."""
        return self.message.reasoning

    def apply(self, event: StreamEvent) -> ChatMessage:
        """
        Apply one event and return the live message.

        Events arriving after the turn was finalized, and events missing the
        fields their kind requires, leave the message untouched.
        """
        if self._finalized:
            logger.debug("Ignoring %s event after turn was finalized", event.event.value)
            return self.message

        handler = self._handlers.get(event.event)
        if handler is None:
            logger.debug("No handler for %s event", event.event)
            return self.message

        try:
            handler(self, event)
        except MalformedEventError as e:
            logger.debug("Dropping malformed %s event: %s", event.event.value, e)
        return self.message

    def apply_all(self, events: Iterable[StreamEvent]) -> ChatMessage:
        """Apply events in order and return the resulting message."""
        for event in events:
            self.apply(event)
        return self.message

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append_step(
            self,
            step_type: ReasoningStepType,
            status: ReasoningStepStatus,
            title: str,
            details: str | None = None,
            node: str | None = None,
            timestamp: str | None = None,
        ) -> ReasoningStep:
        self._step_count += 1
        step = ReasoningStep(
            id=f"{self.message.id}-step-{self._step_count}",
            type=step_type,
            status=status,
            title=title,
            details=details,
            node=node,
            timestamp=timestamp,
        )
        self.message.reasoning.append(step)
        return step

    @staticmethod
    def _require_str(value: Any, field: str) -> str:
        if not isinstance(value, str) or not value:
            raise MalformedEventError(f"'{field}' must be a non-empty string")
        return value

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_node_start(self, event: StreamEvent) -> None:
        node = self._require_str(event.data.node, "node")
        timestamp = event.data.timestamp
        step = self._append_step(
            classify_node(node),
            ReasoningStepStatus.PROCESSING,
            node_title(node),
            node=node,
            timestamp=str(timestamp) if timestamp is not None else None,
        )
        self._steps_by_node[node] = step

    def _on_node_end(self, event: StreamEvent) -> None:
        node = self._require_str(event.data.node, "node")
        step = self._steps_by_node.get(node)
        if step is None:
            logger.debug("node_end for %s without a matching node_start", node)
            return
        if not step.status.is_terminal:
            step.status = ReasoningStepStatus.COMPLETED

    def _on_intent(self, event: StreamEvent) -> None:
        intent = _text(event.data.intent)
        if intent is None:
            raise MalformedEventError("'intent' is missing")
        for step in reversed(self.message.reasoning):
            if step.type == ReasoningStepType.INTENT:
                step.details = f"Intent: {intent}"
                return

    def _on_plan(self, event: StreamEvent) -> None:
        plan = event.data.plan
        if not isinstance(plan, dict) or not isinstance(plan.get("steps"), list):
            raise MalformedEventError("'plan.steps' must be a list")
        count = len(plan["steps"])
        self._append_step(
            ReasoningStepType.STRATEGY,
            ReasoningStepStatus.COMPLETED,
            "Plan created",
            details=f"{count} step{'s' if count != 1 else ''}",
        )

    def _on_step(self, event: StreamEvent) -> None:
        step = event.data.step
        if not isinstance(step, dict):
            raise MalformedEventError("'step' must be an object")
        action = _text(step.get("action")) or "unknown action"
        failed = step.get("status") == "failed"
        current = event.data.current_step if event.data.current_step is not None else "?"
        total = event.data.total_steps if event.data.total_steps is not None else "?"
        details = _text(step.get("error")) or _text(step.get("output"))
        self._append_step(
            ReasoningStepType.EXECUTE,
            ReasoningStepStatus.ERROR if failed else ReasoningStepStatus.COMPLETED,
            f"Step {current}/{total}: {action}",
            details=details,
        )

    def _on_web_search(self, event: StreamEvent) -> None:
        count = event.data.results_count
        if isinstance(count, bool) or not isinstance(count, int):
            raise MalformedEventError("'results_count' must be an integer")
        self._append_step(
            ReasoningStepType.SEARCH,
            ReasoningStepStatus.COMPLETED,
            "Searching for information",
            details=f"Found {count} results",
        )

    def _on_app_data(self, event: StreamEvent) -> None:
        extra = event.data.model_extra or {}
        parts = []
        app = _text(extra.get("app"))
        if app:
            parts.append(app)
        records = extra.get("records_count")
        if isinstance(records, int) and not isinstance(records, bool):
            parts.append(f"{records} records")
        self._append_step(
            ReasoningStepType.APP_DATA,
            ReasoningStepStatus.COMPLETED,
            "Reading connected app data",
            details=", ".join(parts) or None,
        )

    def _on_answer(self, event: StreamEvent) -> None:
        content = event.data.content
        if isinstance(content, str) and content:
            self.message.content = content

    def _on_done(self, event: StreamEvent) -> None:
        answer = event.data.answer
        if isinstance(answer, str) and answer:
            self.message.content = answer
        conversation_id = event.data.conversation_id
        if isinstance(conversation_id, int) and not isinstance(conversation_id, bool):
            self._conversation_id = conversation_id
        elif conversation_id is not None:
            logger.debug("Ignoring non-integer conversation_id %r in done event", conversation_id)
        self._finalized = True

    def _on_error(self, event: StreamEvent) -> None:
        message = _text(event.data.error) or "Unknown error"
        self._error = message
        self.message.content = f"{ERROR_PREFIX}{message}"
        for step in self.message.reasoning:
            if not step.status.is_terminal:
                step.status = ReasoningStepStatus.ERROR
        self._finalized = True

    _handlers = {
        StreamEventType.NODE_START: _on_node_start,
        StreamEventType.NODE_END: _on_node_end,
        StreamEventType.INTENT: _on_intent,
        StreamEventType.PLAN: _on_plan,
        StreamEventType.STEP: _on_step,
        StreamEventType.WEB_SEARCH: _on_web_search,
        StreamEventType.APP_DATA: _on_app_data,
        StreamEventType.ANSWER: _on_answer,
        StreamEventType.DONE: _on_done,
        StreamEventType.ERROR: _on_error,
    }


def fold_events(
        events: Iterable[StreamEvent],
        message_id: str,
        timestamp: str = REPLAY_TIMESTAMP,
    ) -> ChatMessage:
    """
    Replay events against a fresh assistant message.

    The fold is deterministic: the same events and message id always produce
    an identical message. ``timestamp`` defaults to a fixed value rather than
    the current time for that reason.
    """
    reducer = ReasoningTraceReducer(ChatMessage.assistant(message_id, timestamp))
    return reducer.apply_all(events)
