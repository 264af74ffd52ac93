"""Exceptions raised by the Culi client."""

import json

import httpx


class CuliError(Exception):
    """Base exception for all Culi client errors."""

    pass


class CuliAPIError(CuliError):
    """Backend answered a REST call with a non-2xx status."""

    def __init__(self, message: str, status_code: int, response_body: str = "") -> None:
        super().__init__(message)
        self.detail = message
        self.status_code = status_code
        self.response_body = response_body

    @classmethod
    def from_response(cls, response: httpx.Response) -> 'CuliAPIError':
        """
        Build an error from a non-2xx response.

        Uses the backend's ``detail`` field when the body is JSON, otherwise
        the reason phrase, otherwise a generic status message. The response
        body must already be read.
        """
        message = f"HTTP error! status: {response.status_code}"
        body = response.text
        try:
            payload = json.loads(body)
        except ValueError:
            message = response.reason_phrase or message
        else:
            detail = payload.get("detail") if isinstance(payload, dict) else None
            if isinstance(detail, str) and detail:
                message = detail
            elif detail:
                message = json.dumps(detail, ensure_ascii=False)
        return cls(message, status_code=response.status_code, response_body=body)


class CuliAuthError(CuliAPIError):
    """Backend rejected the session token (HTTP 401)."""

    def __init__(self, message: str = "Unauthorized - Please login again", response_body: str = "") -> None:  # noqa: E501
        super().__init__(message, status_code=401, response_body=response_body)


class ChatBusyError(CuliError):
    """A message was sent while the previous turn is still in flight."""

    pass


class ConnectionConfigError(CuliError, ValueError):
    """Connection form is missing fields required by its connection method."""

    pass
