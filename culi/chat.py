"""
Conversation state for one workspace's chat panel.

``ChatSession`` keeps the displayed message list and the active conversation
id, and runs one turn at a time: the user message and an empty assistant
message are shown immediately, then the assistant message is filled in by a
``ReasoningTraceReducer`` as stream events arrive.
"""

import logging
from collections.abc import Callable

from .api_client import CuliClient
from .exceptions import ChatBusyError
from .notifications import Notifier
from .reasoning_models import ChatMessage, MessageRole
from .reasoning_trace import ReasoningTraceReducer
from .streaming import ChatStream

logger = logging.getLogger(__name__)

NO_RESPONSE_FALLBACK = "Sorry, no response could be generated."


class ChatSession:
    """
    Chat panel of a single workspace.

    At most one turn is in flight at a time; ``send`` raises ``ChatBusyError``
    while a previous turn has not reached a terminal event.
    """

    def __init__(
            self,
            client: CuliClient,
            workspace_id: int,
            notifier: Notifier | None = None,
        ):
        self.client = client
        self.workspace_id = workspace_id
        self.notifier = notifier or Notifier()
        self.messages: list[ChatMessage] = []
        self.conversation_id: int | None = None
        self.is_loading = False
        self._stream: ChatStream | None = None
        self._pending: ChatMessage | None = None

    async def load_history(self) -> list[ChatMessage]:
        """
        Load the workspace's first (most recent) conversation.

        With no conversations yet the panel starts empty and the next turn
        creates one.
        """
        try:
            listing = await self.client.list_conversations(self.workspace_id)
            if listing.conversations:
                conversation = listing.conversations[0]
                self.conversation_id = conversation.id
                backend_messages = await self.client.get_messages(
                    self.workspace_id, conversation.id,
                )
                self.messages = [ChatMessage.from_backend(m) for m in backend_messages]
            else:
                self.conversation_id = None
                self.messages = []
        except Exception as e:
            self.messages = []
            self.notifier.error("Could not load messages", str(e) or "Please try again.")
            raise
        logger.debug(
            "Loaded %d messages for workspace %s (conversation %s)",
            len(self.messages), self.workspace_id, self.conversation_id,
        )
        return self.messages

    def _begin_turn(self, content: str) -> ChatMessage:
        if self.is_loading:
            raise ChatBusyError("A message is already being processed")
        self.is_loading = True
        self.messages.append(ChatMessage.user(content))
        assistant = ChatMessage.assistant()
        self.messages.append(assistant)
        return assistant

    async def send(
            self,
            content: str,
            on_update: Callable[[ChatMessage], None] | None = None,
        ) -> ChatMessage | None:
        """
        Run one streaming turn.

        Args:
            content: The user's message. Blank input is ignored.
            on_update: Called with the live assistant message after every event.

        Returns:
            The finished assistant message, or None for blank input or a
            cancelled turn.
        """
        content = content.strip()
        if not content:
            return None

        assistant = self._begin_turn(content)
        self._pending = assistant
        reducer = ReasoningTraceReducer(assistant)
        try:
            stream = self.client.stream_message(
                self.workspace_id, content, conversation_id=self.conversation_id,
            )
            self._stream = stream
            async with stream:
                async for event in stream:
                    reducer.apply(event)
                    if on_update is not None:
                        on_update(assistant)
        except Exception as e:
            self.messages = [m for m in self.messages if m is not assistant]
            self.notifier.error("Error", str(e) or "Could not send the message. Please try again.")
            raise
        finally:
            self._stream = None
            self._pending = None
            self.is_loading = False

        if stream.cancelled:
            return None

        if reducer.error is not None:
            self.notifier.error("Error", reducer.error)
        elif reducer.conversation_id is not None and self.conversation_id is None:
            self.conversation_id = reducer.conversation_id
            logger.info("Started conversation %s", self.conversation_id)
        return assistant

    async def send_blocking(self, content: str) -> ChatMessage | None:
        """
        Run one turn through the non-streaming endpoint.

        When the backend reports a conversation id the whole conversation is
        reloaded so messages carry their persisted ids.
        """
        content = content.strip()
        if not content:
            return None

        placeholder = self._begin_turn(content)
        try:
            response = await self.client.send_message(
                self.workspace_id, content, conversation_id=self.conversation_id,
            )
            if response.conversation_id and not self.conversation_id:
                self.conversation_id = response.conversation_id

            if response.conversation_id:
                backend_messages = await self.client.get_messages(
                    self.workspace_id, response.conversation_id,
                )
                self.messages = [ChatMessage.from_backend(m) for m in backend_messages]
                assistants = [m for m in self.messages if m.role == MessageRole.ASSISTANT]
                return assistants[-1] if assistants else None

            placeholder.content = response.answer or NO_RESPONSE_FALLBACK
            placeholder.reasoning = None
            return placeholder
        except Exception as e:
            # keep the user's message, drop the placeholder
            self.messages = [m for m in self.messages if m is not placeholder]
            self.notifier.error("Error", str(e) or "Could not send the message. Please try again.")
            raise
        finally:
            self.is_loading = False

    async def cancel(self) -> None:
        """
        Abandon the in-flight turn.

        The partial assistant message is removed from the list; the user's
        message stays.
        """
        stream, pending = self._stream, self._pending
        if stream is None:
            return
        await stream.cancel()
        if pending is not None:
            self.messages = [m for m in self.messages if m is not pending]
        logger.info("Cancelled chat turn in workspace %s", self.workspace_id)

