"""
Pydantic models for the Culi backend REST API.

Response models allow extra fields so newer backend versions keep parsing;
request models forbid them so typos are caught before anything is sent.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConnectionMethod(str, Enum):
    """How the backend reaches a third-party app."""

    API = "api"
    MCP = "mcp"


class McpAuthType(str, Enum):
    """Authentication schemes accepted for MCP server connections."""

    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"


class ConnectionStatus(str, Enum):
    """Lifecycle status of a connected app."""

    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"


# ============================================================================
# Auth
# ============================================================================


class TokenResponse(BaseModel):
    """Response model for POST /auth/login."""

    model_config = ConfigDict(extra='allow')

    access_token: str
    token_type: str = "bearer"


class RegisterResponse(BaseModel):
    """Response model for POST /auth/register."""

    model_config = ConfigDict(extra='allow')

    message: str
    user_id: int


class CurrentUser(BaseModel):
    """Response model for GET /auth/me."""

    model_config = ConfigDict(extra='allow')

    id: int
    username: str
    created_at: str


class MessageResponse(BaseModel):
    """Generic ``{"message": ...}`` acknowledgement."""

    model_config = ConfigDict(extra='allow')

    message: str = ""


# ============================================================================
# Workspaces and chat
# ============================================================================


class Workspace(BaseModel):
    """A bookkeeping workspace (one business)."""

    model_config = ConfigDict(extra='allow')

    id: int
    name: str
    owner_id: int
    created_at: str


class WorkspaceNameRequest(BaseModel):
    """Request model for creating or renaming a workspace."""

    model_config = ConfigDict(extra='forbid')

    name: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Trim the name and reject empty or overly long values."""
        v = v.strip()
        if not v:
            raise ValueError("Workspace name must not be empty")
        if len(v) > 100:
            raise ValueError("Workspace name must not exceed 100 characters")
        return v


class Conversation(BaseModel):
    """Conversation summary as listed by the backend."""

    model_config = ConfigDict(extra='allow')

    id: int
    workspace_id: int
    title: str | None = None
    created_at: str


class ConversationListResponse(BaseModel):
    """Response model for GET /workspaces/{id}/chat/conversations."""

    model_config = ConfigDict(extra='allow')

    conversations: list[Conversation] = Field(default_factory=list)
    total: int = 0


class BackendMessage(BaseModel):
    """A persisted chat message."""

    model_config = ConfigDict(extra='allow')

    id: int
    conversation_id: int
    sender: Literal["user", "assistant"]
    content: str
    created_at: str
    message_metadata: dict[str, Any] | None = None


class ChatRequest(BaseModel):
    """Request model for POST /workspaces/{id}/chat and its streaming variant."""

    model_config = ConfigDict(extra='forbid')

    message: str
    conversation_id: int | None = None


class ChatResponse(BaseModel):
    """Response model for the non-streaming chat endpoint."""

    model_config = ConfigDict(extra='allow')

    conversation_id: int | None = None
    answer: str = ""
    intent: str | None = None
    plan: Any = None
    metadata: dict[str, Any] | None = None


# ============================================================================
# Connected apps
# ============================================================================


class SupportedApp(BaseModel):
    """An app the backend knows how to connect to."""

    model_config = ConfigDict(extra='allow')

    id: str
    name: str
    category: str
    connection_method: str
    description: str = ""
    requires_retailer: bool = False
    auth_method: str = ""
    required_fields: list[str] = Field(default_factory=list)


class ConnectedApp(BaseModel):
    """A configured connection between a workspace and an app."""

    model_config = ConfigDict(extra='allow')

    id: int
    workspace_id: int
    name: str
    app_id: str
    app_category: str
    connection_method: str
    retailer: str | None = None
    status: str
    is_default: bool = False


class ConnectionCreateRequest(BaseModel):
    """Request model for POST /workspaces/{id}/connected-apps/connect."""

    model_config = ConfigDict(extra='forbid')

    app_id: str
    name: str
    app_category: str
    connection_method: str
    client_id: str | None = None
    client_secret: str | None = None
    retailer: str | None = None
    mcp_server_url: str | None = None
    mcp_auth_type: McpAuthType | None = None
    mcp_auth_config: dict[str, Any] | None = None
    config_json: dict[str, Any] | None = None
    is_default: bool | None = None


class ConnectionUpdateRequest(BaseModel):
    """Request model for PUT /workspaces/{id}/connected-apps/connections/{cid}."""

    model_config = ConfigDict(extra='forbid')

    name: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    retailer: str | None = None
    mcp_server_url: str | None = None
    mcp_auth_config: dict[str, Any] | None = None
    config_json: dict[str, Any] | None = None
    status: ConnectionStatus | None = None


class ConnectionTestResult(BaseModel):
    """Response model for POST .../connections/{cid}/test."""

    model_config = ConfigDict(extra='allow')

    status: str
    message: str = ""
    data: Any = None

    @property
    def succeeded(self) -> bool:
        """Whether the backend could reach the app with the stored credentials."""
        return self.status == "success"
