"""Exceptions raised by the server and its sessions."""

from __future__ import annotations

from typing import Any

from .protocol import JSONRPCError


class MCPError(Exception):
    """Base class for all server errors."""

    default_message = "mcp error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class UnsupportedError(MCPError):
    """A capability the request needs is not enabled on the server."""

    default_message = "not supported"

    def __init__(self, feature: str | None = None) -> None:
        message = f"{feature} {self.default_message}" if feature else None
        super().__init__(message)
        self.feature = feature


class ResourceNotFoundError(MCPError):
    default_message = "resource not found"


class PromptNotFoundError(MCPError):
    default_message = "prompt not found"


class ToolNotFoundError(MCPError):
    default_message = "tool not found"


class SessionExistsError(MCPError):
    default_message = "session already exists"


class SessionNotFoundError(MCPError):
    default_message = "session not found"


class SessionNotInitializedError(MCPError):
    default_message = "session not properly initialized"


class SessionDoesNotSupportToolsError(MCPError):
    default_message = "session does not support per-session tools"


class SessionDoesNotSupportLoggingError(MCPError):
    default_message = "session does not support setting logging level"


class NotificationNotInitializedError(MCPError):
    default_message = "notification not initialized"


class NotificationChannelBlockedError(MCPError):
    default_message = "notification channel blocked"


class UnparsableMessageError(MCPError):
    """The raw request could not be decoded into the method's request type."""

    def __init__(self, message: Any, method: str, cause: BaseException) -> None:
        super().__init__(f"unparsable {method} request: {cause}")
        self.message = message
        self.method = method
        self.__cause__ = cause


class RequestError(MCPError):
    """An error tied to a request id that becomes a JSON-RPC error reply."""

    def __init__(self, request_id: Any, code: int, error: BaseException) -> None:
        super().__init__(f"request error: {error}")
        self.request_id = request_id
        self.code = int(code)
        self.error = error
        self.__cause__ = error

    def to_jsonrpc_error(self) -> JSONRPCError:
        return JSONRPCError(id=self.request_id, code=self.code, message=str(self.error))