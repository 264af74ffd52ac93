"""Tests for ChatSession turn handling and history loading."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from culi.api_client import CuliClient
from culi.chat import NO_RESPONSE_FALLBACK, ChatSession
from culi.exceptions import ChatBusyError, CuliAPIError
from culi.notifications import Notifier
from culi.reasoning_models import ChatMessage, MessageRole, ReasoningStepStatus
from culi.session import Session
from tests.conftest import BASE_URL, WORKSPACE_ID
from tests.utils.sse_helpers import TYPICAL_TURN, sse_body, sse_event, stalled_sse_server

CHAT_URL = f"{BASE_URL}/workspaces/{WORKSPACE_ID}/chat"
CONVERSATIONS_URL = f"{CHAT_URL}/conversations"


def sse_response(body: str) -> httpx.Response:  # noqa: D103
    return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})


def backend_messages(conversation_id: int) -> list[dict]:
    """A persisted user/assistant exchange."""
    return [
        {
            "id": 10,
            "conversation_id": conversation_id,
            "sender": "user",
            "content": "Doanh thu tháng 3?",
            "created_at": "2024-03-15T10:30:00",
        },
        {
            "id": 11,
            "conversation_id": conversation_id,
            "sender": "assistant",
            "content": "45,230,000 VNĐ",
            "created_at": "2024-03-15T10:30:08",
            "message_metadata": {"intent": "revenue_report"},
        },
    ]


@pytest.fixture
def chat(culi_client: CuliClient, notifier: Notifier) -> ChatSession:  # noqa: D103
    return ChatSession(culi_client, WORKSPACE_ID, notifier=notifier)


class TestLoadHistory:
    """Test loading the workspace's conversation."""

    @pytest.mark.asyncio
    @respx.mock
    async def test__loads_first_conversation(self, chat: ChatSession):
        respx.get(CONVERSATIONS_URL).mock(return_value=httpx.Response(200, json={
            "conversations": [
                {"id": 4, "workspace_id": WORKSPACE_ID, "created_at": "2024-03-15"},
                {"id": 2, "workspace_id": WORKSPACE_ID, "created_at": "2024-03-01"},
            ],
            "total": 2,
        }))
        respx.get(f"{CONVERSATIONS_URL}/4/messages").mock(
            return_value=httpx.Response(200, json=backend_messages(4)),
        )

        messages = await chat.load_history()

        assert chat.conversation_id == 4
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[1].id == "11"
        assert messages[1].content == "45,230,000 VNĐ"

    @pytest.mark.asyncio
    @respx.mock
    async def test__no_conversations__starts_empty(self, chat: ChatSession):
        respx.get(CONVERSATIONS_URL).mock(
            return_value=httpx.Response(200, json={"conversations": [], "total": 0}),
        )

        messages = await chat.load_history()

        assert messages == []
        assert chat.conversation_id is None

    @pytest.mark.asyncio
    @respx.mock
    async def test__failure__notifies_and_raises(self, chat: ChatSession, notifier: Notifier):
        respx.get(CONVERSATIONS_URL).mock(
            return_value=httpx.Response(500, json={"detail": "Database unavailable"}),
        )

        with pytest.raises(CuliAPIError):
            await chat.load_history()

        assert chat.messages == []
        assert notifier.history[-1].is_error
        assert notifier.history[-1].description == "Database unavailable"


class TestStreamingTurn:
    """Test ChatSession.send over the streaming endpoint."""

    @pytest.mark.asyncio
    @respx.mock
    async def test__typical_turn__builds_assistant_message(self, chat: ChatSession):
        respx.post(f"{CHAT_URL}/stream").mock(return_value=sse_response(sse_body(*TYPICAL_TURN)))
        updates: list[int] = []

        reply = await chat.send("Doanh thu tháng 3?", on_update=lambda m: updates.append(len(m.reasoning)))  # noqa: E501

        assert reply is not None
        assert reply.content == "Doanh thu tháng 3/2024 là 45,230,000 VNĐ."
        assert len(reply.reasoning) == 6
        assert len(updates) == len(TYPICAL_TURN)
        assert chat.conversation_id == 42
        assert chat.is_loading is False
        user, assistant = chat.messages
        assert user.role == MessageRole.USER
        assert user.id.startswith("temp-")
        assert assistant is reply

    @pytest.mark.asyncio
    @respx.mock
    async def test__existing_conversation__id_sent_and_kept(self, chat: ChatSession):
        route = respx.post(f"{CHAT_URL}/stream").mock(
            return_value=sse_response(sse_event("done", {"answer": "ok", "conversation_id": 99})),
        )
        chat.conversation_id = 4

        await chat.send("Tiếp tục")

        assert b'"conversation_id":4' in route.calls.last.request.content.replace(b" ", b"")
        assert chat.conversation_id == 4

    @pytest.mark.asyncio
    async def test__blank_message__ignored(self, chat: ChatSession):
        assert await chat.send("   ") is None
        assert chat.messages == []

    @pytest.mark.asyncio
    @respx.mock
    async def test__error_event__notifies_and_marks_message(self, chat: ChatSession, notifier: Notifier):  # noqa: E501
        body = sse_body(
            ("node_start", {"node": "executor"}),
            ("error", {"error": "LLM unavailable"}),
        )
        respx.post(f"{CHAT_URL}/stream").mock(return_value=sse_response(body))

        reply = await chat.send("Doanh thu?")

        assert reply.content == "Error: LLM unavailable"
        assert reply.reasoning[0].status == ReasoningStepStatus.ERROR
        assert chat.conversation_id is None
        assert notifier.history[-1].title == "Error"
        assert notifier.history[-1].description == "LLM unavailable"
        assert chat.is_loading is False

    @pytest.mark.asyncio
    @respx.mock
    async def test__transport_failure__becomes_error_message(self, chat: ChatSession):
        respx.post(f"{CHAT_URL}/stream").mock(side_effect=httpx.ConnectError("refused"))

        reply = await chat.send("Doanh thu?")

        assert reply.content.startswith("Error: Connection error")
        assert chat.is_loading is False

    @pytest.mark.asyncio
    async def test__busy__second_send_rejected(self, chat: ChatSession):
        chat.is_loading = True

        with pytest.raises(ChatBusyError):
            await chat.send("Doanh thu?")

        assert chat.messages == []

    @pytest.mark.asyncio
    async def test__cancel__removes_pending_assistant_message(self, chat: ChatSession):
        user = ChatMessage.user("Doanh thu?")
        pending = ChatMessage.assistant()
        chat.messages = [user, pending]
        chat._pending = pending
        chat._stream = AsyncMock()

        await chat.cancel()

        chat._stream.cancel.assert_awaited_once()
        assert chat.messages == [user]

    @pytest.mark.asyncio
    @respx.mock
    async def test__non_integer_conversation_id__later_sends_still_work(self, chat: ChatSession):
        route = respx.post(f"{CHAT_URL}/stream").mock(side_effect=[
            sse_response(sse_event("done", {"answer": "first", "conversation_id": "conv-abc"})),
            sse_response(sse_event("done", {"answer": "second"})),
            sse_response(sse_event("done", {"answer": "third", "conversation_id": 42})),
        ])

        first = await chat.send("Doanh thu?")
        assert first.content == "first"
        assert chat.conversation_id is None

        second = await chat.send("Chi phí?")
        third = await chat.send("Lợi nhuận?")

        assert second.content == "second"
        assert third.content == "third"
        assert route.call_count == 3
        assert b"conv-abc" not in route.calls[1].request.content
        assert chat.conversation_id == 42
        assert chat.is_loading is False

    @pytest.mark.asyncio
    async def test__stream_setup_failure__releases_session(
            self,
            chat: ChatSession,
            culi_client: CuliClient,
            notifier: Notifier,
        ):
        with patch.object(culi_client, "stream_message", side_effect=ValueError("bad request")):
            with pytest.raises(ValueError, match="bad request"):
                await chat.send("Doanh thu?")

        assert chat.is_loading is False
        assert [m.role for m in chat.messages] == [MessageRole.USER]
        assert notifier.history[-1].description == "bad request"

    @pytest.mark.asyncio
    async def test__cancel__from_another_task_interrupts_pending_read(
            self,
            session: Session,
            notifier: Notifier,
        ):
        first_event = asyncio.Event()

        async with stalled_sse_server(("node_start", {"node": "classify_intent"})) as api_root:
            async with httpx.AsyncClient(base_url=api_root) as http_client:
                client = CuliClient(http_client=http_client, session=session)
                chat = ChatSession(client, WORKSPACE_ID, notifier=notifier)
                turn = asyncio.create_task(
                    chat.send("Doanh thu?", on_update=lambda m: first_event.set()),
                )
                await asyncio.wait_for(first_event.wait(), timeout=5)
                assert chat.is_loading is True

                await chat.cancel()
                reply = await asyncio.wait_for(turn, timeout=5)

        assert reply is None
        assert chat.is_loading is False
        assert [m.role for m in chat.messages] == [MessageRole.USER]
        assert not any(n.is_error for n in notifier.history)

    @pytest.mark.asyncio
    async def test__cancel__without_turn_is_noop(self, chat: ChatSession):
        await chat.cancel()
        assert chat.messages == []


class TestBlockingTurn:
    """Test ChatSession.send_blocking over the non-streaming endpoint."""

    @pytest.mark.asyncio
    @respx.mock
    async def test__reloads_conversation(self, chat: ChatSession):
        respx.post(CHAT_URL).mock(
            return_value=httpx.Response(200, json={"conversation_id": 4, "answer": "45,230,000 VNĐ"}),  # noqa: E501
        )
        respx.get(f"{CONVERSATIONS_URL}/4/messages").mock(
            return_value=httpx.Response(200, json=backend_messages(4)),
        )

        reply = await chat.send_blocking("Doanh thu tháng 3?")

        assert chat.conversation_id == 4
        assert reply.id == "11"
        assert [m.id for m in chat.messages] == ["10", "11"]
        assert chat.is_loading is False

    @pytest.mark.asyncio
    @respx.mock
    async def test__without_conversation_id__uses_answer_or_fallback(self, chat: ChatSession):
        respx.post(CHAT_URL).mock(return_value=httpx.Response(200, json={"answer": ""}))

        reply = await chat.send_blocking("Doanh thu?")

        assert reply.content == NO_RESPONSE_FALLBACK
        assert reply.reasoning is None
        assert len(chat.messages) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test__failure__drops_placeholder_keeps_user_message(self, chat: ChatSession, notifier: Notifier):  # noqa: E501
        respx.post(CHAT_URL).mock(
            return_value=httpx.Response(500, json={"detail": "Internal error"}),
        )

        with pytest.raises(CuliAPIError):
            await chat.send_blocking("Doanh thu?")

        assert len(chat.messages) == 1
        assert chat.messages[0].role == MessageRole.USER
        assert notifier.history[-1].is_error
        assert chat.is_loading is False
