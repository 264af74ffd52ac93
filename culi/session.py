"""In-memory authentication state shared by every request of a client."""

import logging

from .models import CurrentUser

logger = logging.getLogger(__name__)


class Session:
    """
    Bearer token, auth flag and current user of the running client.

    Nothing here is written to disk; a new process starts from
    ``settings.api_token`` or logs in again.
    """

    def __init__(self, token: str | None = None):
        self.token: str | None = token or None
        self.is_authenticated: bool = bool(self.token)
        self.current_user: CurrentUser | None = None

    def set_token(self, token: str | None) -> None:
        """Replace the bearer token; ``None`` logs the session out."""
        self.token = token or None
        self.is_authenticated = bool(self.token)
        if not self.token:
            self.current_user = None

    def invalidate(self) -> None:
        """Drop all auth state, e.g. after the backend answered 401."""
        if self.token:
            logger.warning("Session invalidated - please login again")
        self.token = None
        self.is_authenticated = False
        self.current_user = None

    @property
    def auth_headers(self) -> dict[str, str]:
        """Authorization header for the current token, empty when anonymous."""
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}
