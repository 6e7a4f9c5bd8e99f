"""Exception types shared by the kbchat clients."""

from __future__ import annotations


class KbChatError(Exception):
    """Base class for all kbchat errors."""


class ParseError(KbChatError):
    """A single stream payload could not be decoded into a chunk."""

    def __init__(self, message: str, *, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload


class TransportError(KbChatError):
    """The chat connection failed or returned a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatTimeoutError(TransportError):
    """No data arrived within the configured window."""


class ApiError(KbChatError):
    """Failure talking to one of the REST collaborators."""

    def __init__(self, message: str, *, code: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    @property
    def is_network_error(self) -> bool:
        return self.code == "NETWORK_ERROR"

    @property
    def is_timeout_error(self) -> bool:
        return self.code == "TIMEOUT_ERROR"


__all__ = ["KbChatError", "ParseError", "TransportError", "ChatTimeoutError", "ApiError"]
