"""
Configuration settings for the Culi client.

This module defines the client settings using Pydantic v2 BaseSettings,
including the backend URL, HTTP client tuning and streaming options.
"""

import httpx
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings for talking to the Culi backend."""

    # Backend Configuration
    api_base_url: str = Field(
        default="http://localhost:8001",
        alias="CULI_API_BASE_URL",
        description="Base URL of the Culi backend",
    )
    api_prefix: str = Field(
        default="/api/v1",
        alias="CULI_API_PREFIX",
        description="Path prefix shared by every backend endpoint",
    )
    api_token: str = Field(
        default="",
        alias="CULI_API_TOKEN",
        description="Bearer token to start the session with (empty means anonymous)",
    )

    # HTTP Client Configuration
    http_connect_timeout: float = Field(
        default=5.0,
        alias="HTTP_CONNECT_TIMEOUT",
        description="HTTP connection timeout in seconds",
    )
    http_read_timeout: float = Field(
        default=60.0,
        alias="HTTP_READ_TIMEOUT",
        description="HTTP read timeout in seconds",
    )
    http_write_timeout: float = Field(
        default=10.0,
        alias="HTTP_WRITE_TIMEOUT",
        description="HTTP write timeout in seconds",
    )
    http_max_connections: int = Field(
        default=20,
        alias="HTTP_MAX_CONNECTIONS",
        description="Maximum total HTTP connections",
    )
    http_max_keepalive_connections: int = Field(
        default=5,
        alias="HTTP_MAX_KEEPALIVE_CONNECTIONS",
        description="Maximum keep-alive HTTP connections",
    )
    http_keepalive_expiry: float = Field(
        default=30.0,
        alias="HTTP_KEEPALIVE_EXPIRY",
        description="Keep-alive connection expiry time in seconds",
    )

    # Streaming Configuration
    stream_idle_timeout: float = Field(
        default=120.0,
        alias="STREAM_IDLE_TIMEOUT",
        description="Seconds without any stream data before the turn is failed (0 disables)",
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Development
    debug: bool = Field(default=False, alias="DEBUG")

    model_config = {
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'case_sensitive': False,
        'extra': 'ignore',
        'populate_by_name': True,
    }

    @property
    def api_root(self) -> str:
        """
        Full URL every endpoint path is appended to.

        Example:
            >>> Settings(CULI_API_BASE_URL="http://localhost:8001/").api_root
            'http://localhost:8001/api/v1'
        """
        return self.api_base_url.rstrip('/') + '/' + self.api_prefix.strip('/')


def create_http_client(base_url: str | None = None) -> httpx.AsyncClient:
    """
    Create HTTP client configured from settings.

    Streaming reads are bounded by ``stream_idle_timeout`` in ``ChatStream``
    rather than by the read timeout, so the read timeout only governs
    ordinary REST calls.

    Args:
        base_url: Overrides ``settings.api_root`` when given.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    return httpx.AsyncClient(
        base_url=base_url if base_url is not None else settings.api_root,
        timeout=httpx.Timeout(
            connect=settings.http_connect_timeout,
            read=settings.http_read_timeout,
            write=settings.http_write_timeout,
            pool=settings.http_read_timeout,
        ),
        limits=httpx.Limits(
            max_connections=settings.http_max_connections,
            max_keepalive_connections=settings.http_max_keepalive_connections,
            keepalive_expiry=settings.http_keepalive_expiry,
        ),
    )


settings = Settings()
