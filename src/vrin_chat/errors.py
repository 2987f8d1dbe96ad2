from __future__ import annotations

SESSION_EXPIRED_MARKER = "Session not found or expired"


class ChatApiError(Exception):
    """Raised when the chat backend rejects a request or reports a stream error."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionExpiredError(ChatApiError):
    """The backend no longer knows the session id sent with the request."""


def raise_for_message(message: str, *, status_code: int | None = None) -> None:
    if SESSION_EXPIRED_MARKER in message:
        raise SessionExpiredError(message, status_code=status_code)
    raise ChatApiError(message, status_code=status_code)
