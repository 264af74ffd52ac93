"""
Async client for the Culi backend REST API.

Wraps ``httpx.AsyncClient``: prefixes every path with the configured API root,
attaches the session's bearer token, and turns non-2xx responses into
``CuliAPIError``. A 401 from any endpoint invalidates the session before
``CuliAuthError`` is raised, so callers can send the user back to login.

Usage:
    async with CuliClient() as client:
        await client.login("chu_cua_hang", "mat-khau")
        for workspace in await client.list_workspaces():
            print(workspace.name)
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, TypeAdapter

from .config import create_http_client, settings
from .exceptions import CuliAPIError, CuliAuthError
from .models import (
    BackendMessage,
    ChatRequest,
    ChatResponse,
    ConnectedApp,
    ConnectionCreateRequest,
    ConnectionTestResult,
    ConnectionUpdateRequest,
    ConversationListResponse,
    CurrentUser,
    MessageResponse,
    RegisterResponse,
    SupportedApp,
    TokenResponse,
    Workspace,
    WorkspaceNameRequest,
)
from .session import Session
from .streaming import ChatStream

logger = logging.getLogger(__name__)

_workspaces = TypeAdapter(list[Workspace])
_messages = TypeAdapter(list[BackendMessage])
_supported_apps = TypeAdapter(list[SupportedApp])
_connections = TypeAdapter(list[ConnectedApp])


class CuliClient:
    """Client for the Culi backend, one per logged-in user."""

    def __init__(
            self,
            http_client: httpx.AsyncClient | None = None,
            session: Session | None = None,
        ):
        self._owns_http_client = http_client is None
        self.http_client = http_client or create_http_client()
        self.session = session or Session(settings.api_token)

    async def __aenter__(self) -> 'CuliClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this client created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    async def _request(
            self,
            method: str,
            endpoint: str,
            body: BaseModel | dict[str, Any] | None = None,
        ) -> Any:
        """
        Send a request and decode its JSON body.

        Returns:
            Decoded JSON, None for 204 responses, and an empty dict for
            responses that are not JSON.

        Raises:
            CuliAuthError: On 401, after invalidating the session.
            CuliAPIError: On any other non-2xx status.
            httpx.HTTPError: On transport failures.
        """
        if isinstance(body, BaseModel):
            body = body.model_dump(mode="json", exclude_none=True)
        headers = {"Content-Type": "application/json", **self.session.auth_headers}

        response = await self.http_client.request(method, endpoint, json=body, headers=headers)

        if response.status_code == 401:
            self.session.invalidate()
            raise CuliAuthError(response_body=response.text)
        if response.is_error:
            error = CuliAPIError.from_response(response)
            logger.debug("%s %s failed with %s: %s", method, endpoint, error.status_code, error.detail)  # noqa: E501
            raise error
        if response.status_code == 204:
            return None
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return {}

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> TokenResponse:
        """Log in and keep the returned token for subsequent requests."""
        data = await self._request(
            "POST", "/auth/login", {"username": username, "password": password},
        )
        token = TokenResponse.model_validate(data)
        self.session.set_token(token.access_token)
        logger.info("Logged in as %s", username)
        return token

    async def register(self, username: str, password: str) -> RegisterResponse:
        """Create an account. Does not log in."""
        data = await self._request(
            "POST", "/auth/register", {"username": username, "password": password},
        )
        return RegisterResponse.model_validate(data)

    async def get_current_user(self) -> CurrentUser:
        """Fetch the logged-in user and remember it on the session."""
        user = CurrentUser.model_validate(await self._request("GET", "/auth/me"))
        self.session.current_user = user
        return user

    async def change_password(self, old_password: str, new_password: str) -> MessageResponse:
        """Change the logged-in user's password."""
        data = await self._request(
            "POST",
            "/auth/change-password",
            {"old_password": old_password, "new_password": new_password},
        )
        return MessageResponse.model_validate(data or {})

    def logout(self) -> None:
        """Forget the token locally. The backend keeps no session to end."""
        self.session.set_token(None)

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    async def list_workspaces(self) -> list[Workspace]:
        """List the user's workspaces."""
        return _workspaces.validate_python(await self._request("GET", "/workspaces"))

    async def get_workspace(self, workspace_id: int) -> Workspace:
        """Fetch one workspace."""
        return Workspace.model_validate(await self._request("GET", f"/workspaces/{workspace_id}"))

    async def create_workspace(self, name: str) -> Workspace:
        """Create a workspace. The name is trimmed and must not be empty."""
        data = await self._request("POST", "/workspaces", WorkspaceNameRequest(name=name))
        return Workspace.model_validate(data)

    async def update_workspace(self, workspace_id: int, name: str) -> Workspace:
        """Rename a workspace."""
        data = await self._request(
            "PUT", f"/workspaces/{workspace_id}", WorkspaceNameRequest(name=name),
        )
        return Workspace.model_validate(data)

    async def delete_workspace(self, workspace_id: int) -> None:
        """Delete a workspace and everything in it."""
        await self._request("DELETE", f"/workspaces/{workspace_id}")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_message(
            self,
            workspace_id: int,
            message: str,
            conversation_id: int | None = None,
        ) -> ChatResponse:
        """Send a message and wait for the complete answer (no reasoning trace)."""
        data = await self._request(
            "POST",
            f"/workspaces/{workspace_id}/chat",
            ChatRequest(message=message, conversation_id=conversation_id),
        )
        return ChatResponse.model_validate(data)

    def stream_message(
            self,
            workspace_id: int,
            message: str,
            conversation_id: int | None = None,
            idle_timeout: float | None = None,
        ) -> ChatStream:
        """
        Open a streaming chat turn.

        The request is only sent once the returned stream is iterated.
        """
        return ChatStream(
            self.http_client,
            self.session,
            workspace_id,
            message,
            conversation_id=conversation_id,
            idle_timeout=idle_timeout,
        )

    async def list_conversations(self, workspace_id: int) -> ConversationListResponse:
        """List a workspace's conversations, most recent first."""
        data = await self._request("GET", f"/workspaces/{workspace_id}/chat/conversations")
        return ConversationListResponse.model_validate(data)

    async def get_messages(self, workspace_id: int, conversation_id: int) -> list[BackendMessage]:
        """Fetch every message of a conversation in order."""
        data = await self._request(
            "GET",
            f"/workspaces/{workspace_id}/chat/conversations/{conversation_id}/messages",
        )
        return _messages.validate_python(data)

    # ------------------------------------------------------------------
    # Connected apps
    # ------------------------------------------------------------------

    async def list_supported_apps(self, workspace_id: int) -> list[SupportedApp]:
        """List the apps a workspace can connect to."""
        data = await self._request("GET", f"/workspaces/{workspace_id}/connected-apps/supported")
        return _supported_apps.validate_python(data)

    async def list_connections(self, workspace_id: int) -> list[ConnectedApp]:
        """List a workspace's configured connections."""
        data = await self._request(
            "GET", f"/workspaces/{workspace_id}/connected-apps/connections",
        )
        return _connections.validate_python(data)

    async def create_connection(
            self,
            workspace_id: int,
            request: ConnectionCreateRequest,
        ) -> ConnectedApp:
        """Create a connection."""
        data = await self._request(
            "POST", f"/workspaces/{workspace_id}/connected-apps/connect", request,
        )
        return ConnectedApp.model_validate(data)

    async def update_connection(
            self,
            workspace_id: int,
            connection_id: int,
            request: ConnectionUpdateRequest,
        ) -> ConnectedApp:
        """Update a connection's settings or status."""
        data = await self._request(
            "PUT",
            f"/workspaces/{workspace_id}/connected-apps/connections/{connection_id}",
            request,
        )
        return ConnectedApp.model_validate(data)

    async def test_connection(self, workspace_id: int, connection_id: int) -> ConnectionTestResult:
        """Ask the backend to reach the app with the stored credentials."""
        data = await self._request(
            "POST",
            f"/workspaces/{workspace_id}/connected-apps/connections/{connection_id}/test",
        )
        return ConnectionTestResult.model_validate(data)

    async def delete_connection(self, workspace_id: int, connection_id: int) -> MessageResponse:
        """Delete a connection."""
        data = await self._request(
            "DELETE",
            f"/workspaces/{workspace_id}/connected-apps/connections/{connection_id}",
        )
        return MessageResponse.model_validate(data or {})
