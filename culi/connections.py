"""
Managing a workspace's connections to POS and accounting apps.

Every create or update is followed by a connection test, and the test
outcome is written back as the connection's status (``active`` or
``error``), so the status always reflects the last known reachability.
"""

import asyncio
import logging
from typing import Any

from .api_client import CuliClient
from .exceptions import ConnectionConfigError, CuliAuthError
from .models import (
    ConnectedApp,
    ConnectionCreateRequest,
    ConnectionMethod,
    ConnectionStatus,
    ConnectionTestResult,
    ConnectionUpdateRequest,
    McpAuthType,
    SupportedApp,
)
from .notifications import Notifier

logger = logging.getLogger(__name__)

# Fields each MCP auth type needs in mcp_auth_config
MCP_AUTH_REQUIRED_FIELDS: dict[McpAuthType, tuple[str, ...]] = {
    McpAuthType.NONE: (),
    McpAuthType.API_KEY: ("api_key",),
    McpAuthType.BEARER: ("bearer_token",),
    McpAuthType.BASIC: ("username", "password"),
}


def build_connection_request(  # noqa: PLR0913
        app: SupportedApp,
        client_id: str | None = None,
        client_secret: str | None = None,
        retailer: str | None = None,
        mcp_server_url: str | None = None,
        mcp_auth_type: McpAuthType | str = McpAuthType.NONE,
        mcp_auth_config: dict[str, Any] | None = None,
    ) -> ConnectionCreateRequest:
    """
    Validate a connection form for ``app`` and build the create request.

    Raises:
        ConnectionConfigError: If a field required by the app's connection
            method (or MCP auth type) is missing.
    """
    request = ConnectionCreateRequest(
        app_id=app.id,
        name=f"{app.name} Connection",
        app_category=app.category,
        connection_method=app.connection_method,
    )

    if app.connection_method == ConnectionMethod.API.value:
        if not client_id or not client_secret:
            raise ConnectionConfigError("Client ID and Client Secret are required")
        request.client_id = client_id
        request.client_secret = client_secret
        if app.requires_retailer and retailer:
            request.retailer = retailer

    elif app.connection_method == ConnectionMethod.MCP.value:
        if not mcp_server_url:
            raise ConnectionConfigError("MCP server URL is required")
        try:
            auth_type = McpAuthType(mcp_auth_type)
        except ValueError as e:
            raise ConnectionConfigError(f"Unsupported MCP auth type: {mcp_auth_type}") from e
        request.mcp_server_url = mcp_server_url
        request.mcp_auth_type = auth_type
        if auth_type != McpAuthType.NONE:
            config = mcp_auth_config or {}
            missing = [f for f in MCP_AUTH_REQUIRED_FIELDS[auth_type] if not config.get(f)]
            if missing:
                raise ConnectionConfigError(
                    f"Missing MCP auth fields for {auth_type.value}: {', '.join(missing)}",
                )
            request.mcp_auth_config = config

    return request


def _update_from_create(request: ConnectionCreateRequest) -> ConnectionUpdateRequest:
    return ConnectionUpdateRequest(
        name=request.name,
        client_id=request.client_id,
        client_secret=request.client_secret,
        retailer=request.retailer,
        mcp_server_url=request.mcp_server_url,
        mcp_auth_config=request.mcp_auth_config,
        config_json=request.config_json,
    )


class ConnectionManager:
    """Connection management for a single workspace."""

    def __init__(
            self,
            client: CuliClient,
            workspace_id: int,
            notifier: Notifier | None = None,
        ):
        self.client = client
        self.workspace_id = workspace_id
        self.notifier = notifier or Notifier()

    async def fetch_all(self) -> tuple[list[SupportedApp], list[ConnectedApp]]:
        """Fetch supported apps and existing connections concurrently."""
        try:
            supported, connections = await asyncio.gather(
                self.client.list_supported_apps(self.workspace_id),
                self.client.list_connections(self.workspace_id),
            )
        except Exception as e:
            self.notifier.error("Could not load connections", str(e))
            raise
        return supported, connections

    async def connect(
            self,
            app: SupportedApp,
            existing: ConnectedApp | None = None,
            **form: Any,
        ) -> tuple[ConnectedApp, ConnectionTestResult | None]:
        """
        Create (or update ``existing``) a connection for ``app``, then test it.

        Args:
            app: The app being connected.
            existing: The current connection to update instead of creating one.
            **form: Fields accepted by ``build_connection_request``.

        Returns:
            The saved connection and the test result (None when the test
            itself raised).
        """
        try:
            request = build_connection_request(app, **form)
        except ConnectionConfigError as e:
            self.notifier.error("Please fill in all required fields", str(e))
            raise

        try:
            if existing is not None:
                connection = await self.client.update_connection(
                    self.workspace_id, existing.id, _update_from_create(request),
                )
                self.notifier.notify("Connection updated")
            else:
                connection = await self.client.create_connection(self.workspace_id, request)
                self.notifier.notify("Connection created")
        except Exception as e:
            self.notifier.error("Error", str(e) or "Could not save the connection")
            raise

        result = await self.test(connection.id, after_save=True)
        return connection, result

    async def test(self, connection_id: int, after_save: bool = False) -> ConnectionTestResult | None:  # noqa: E501
        """
        Test a connection and record the outcome as its status.

        Test failures never raise; they set the status to ``error`` and
        notify the user. ``CuliAuthError`` propagates so the caller can send
        the user back to login.
        """
        failed_title = (
            "Connection saved but the test failed" if after_save else "Connection test failed"
        )
        try:
            result = await self.client.test_connection(self.workspace_id, connection_id)
        except CuliAuthError:
            raise
        except Exception as e:
            logger.warning("Testing connection %s raised: %s", connection_id, e)
            await self._set_status(connection_id, ConnectionStatus.ERROR)
            self.notifier.error(failed_title, str(e) or "Could not test the connection")
            return None

        if result.succeeded:
            await self._set_status(connection_id, ConnectionStatus.ACTIVE)
            self.notifier.notify("Connected!", result.message or "Connection succeeded")
        else:
            await self._set_status(connection_id, ConnectionStatus.ERROR)
            self.notifier.error(failed_title, result.message or "Please check the details")
        return result

    async def delete(self, connection_id: int) -> None:
        """Delete a connection."""
        try:
            await self.client.delete_connection(self.workspace_id, connection_id)
        except Exception as e:
            self.notifier.error("Error", str(e) or "Could not delete the connection")
            raise
        self.notifier.notify("Connection deleted")

    async def _set_status(self, connection_id: int, status: ConnectionStatus) -> None:
        try:
            await self.client.update_connection(
                self.workspace_id, connection_id, ConnectionUpdateRequest(status=status),
            )
        except CuliAuthError:
            raise
        except Exception as e:
            logger.error("Error updating connection %s status to %s: %s", connection_id, status.value, e)  # noqa: E501
