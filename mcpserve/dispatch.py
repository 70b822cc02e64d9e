"""Routing of incoming JSON-RPC messages to the server's request handlers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

from .errors import RequestError, UnparsableMessageError, UnsupportedError
from .hooks import Hooks
from .protocol import (
    JSONRPC_VERSION,
    METHOD_INITIALIZE,
    METHOD_PING,
    METHOD_PROMPTS_GET,
    METHOD_PROMPTS_LIST,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_RESOURCES_TEMPLATES_LIST,
    METHOD_SET_LOG_LEVEL,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    CallToolRequest,
    Capabilities,
    EmptyResult,
    ErrorCode,
    GetPromptRequest,
    InitializeRequest,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    ListRequest,
    PingRequest,
    ReadResourceRequest,
    SetLevelRequest,
    create_error_response,
    create_response,
)

_current_server: ContextVar["MessageDispatcher | None"] = ContextVar(
    "current_server", default=None
)


def current_server() -> "MessageDispatcher | None":
    """The dispatcher handling the message in the running context, if any."""
    return _current_server.get()


@dataclass(frozen=True)
class _Route:
    request_type: type
    handler: str
    capability: str | None


_ROUTES: dict[str, _Route] = {
    METHOD_INITIALIZE: _Route(InitializeRequest, "_handle_initialize", None),
    METHOD_PING: _Route(PingRequest, "_handle_ping", None),
    METHOD_SET_LOG_LEVEL: _Route(SetLevelRequest, "_handle_set_level", "logging"),
    METHOD_RESOURCES_LIST: _Route(ListRequest, "_handle_list_resources", "resources"),
    METHOD_RESOURCES_TEMPLATES_LIST: _Route(
        ListRequest, "_handle_list_resource_templates", "resources"
    ),
    METHOD_RESOURCES_READ: _Route(ReadResourceRequest, "_handle_read_resource", "resources"),
    METHOD_PROMPTS_LIST: _Route(ListRequest, "_handle_list_prompts", "prompts"),
    METHOD_PROMPTS_GET: _Route(GetPromptRequest, "_handle_get_prompt", "prompts"),
    METHOD_TOOLS_LIST: _Route(ListRequest, "_handle_list_tools", "tools"),
    METHOD_TOOLS_CALL: _Route(CallToolRequest, "_handle_tool_call", "tools"),
}

_MISSING = object()


class MessageDispatcher(ABC):
    """Decodes raw JSON-RPC messages and routes them to ``_handle_*`` methods.

    Subclasses provide ``capabilities``, optionally ``hooks``, and the handlers.
    A handler receives the request id and the decoded request, returns the
    result, and raises RequestError to send an error reply.
    """

    capabilities: Capabilities
    hooks: Hooks | None = None

    def handle_message(self, message: str | bytes | bytearray) -> JSONRPCResponse | JSONRPCError | None:
        """Handle one raw message; returns the reply, or None when none is due."""
        token = _current_server.set(self)
        try:
            return self._dispatch(message)
        finally:
            _current_server.reset(token)

    def _dispatch(self, message: Any) -> JSONRPCResponse | JSONRPCError | None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            return create_error_response(None, ErrorCode.PARSE_ERROR, "Failed to parse message")
        if not isinstance(data, dict):
            return create_error_response(None, ErrorCode.PARSE_ERROR, "Failed to parse message")

        version = data.get("jsonrpc") or ""
        method = data.get("method") or ""
        if not isinstance(version, str) or not isinstance(method, str):
            return create_error_response(None, ErrorCode.PARSE_ERROR, "Failed to parse message")
        request_id = data.get("id")

        if version != JSONRPC_VERSION:
            return create_error_response(
                request_id, ErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version"
            )

        if request_id is None:
            params = data.get("params")
            if params is None:
                params = {}
            if not isinstance(params, dict):
                return create_error_response(
                    None, ErrorCode.PARSE_ERROR, "Failed to parse notification"
                )
            self._handle_notification(JSONRPCNotification(method=method, params=params))
            return None

        if data.get("result") is not None:
            # A reply to a request the server itself sent, such as a ping.
            return None

        hooks = self.hooks
        if hooks is not None:
            try:
                hooks.run_request_initialization(request_id, message)
            except Exception as exc:
                return create_error_response(request_id, ErrorCode.INVALID_REQUEST, str(exc))

        route = _ROUTES.get(method)
        if route is None:
            return create_error_response(
                request_id, ErrorCode.METHOD_NOT_FOUND, f"Method {method} not found"
            )
        return self._route(route, method, request_id, message, data)

    def _route(
        self, route: _Route, method: str, request_id: Any, message: Any, data: dict[str, Any]
    ) -> JSONRPCResponse | JSONRPCError:
        hooks = self.hooks
        request: Any = route.request_type()
        try:
            if route.capability is not None and not self._capability_enabled(route.capability):
                raise RequestError(
                    request_id, ErrorCode.METHOD_NOT_FOUND, UnsupportedError(route.capability)
                )
            try:
                request = route.request_type.from_params(data.get("params"))
            except (TypeError, ValueError) as exc:
                raise RequestError(
                    request_id,
                    ErrorCode.INVALID_REQUEST,
                    UnparsableMessageError(message, method, exc),
                ) from exc
            if hooks is not None:
                hooks.run_before(request_id, method, request)
            result = getattr(self, route.handler)(request_id, request)
        except RequestError as err:
            if hooks is not None:
                hooks.run_error(request_id, method, request, err)
            return err.to_jsonrpc_error()
        if hooks is not None:
            hooks.run_after(request_id, method, request, result)
        return create_response(request_id, result)

    def _capability_enabled(self, feature: str) -> bool:
        if feature == "logging":
            return bool(self.capabilities.logging)
        return getattr(self.capabilities, feature) is not None

    def _handle_ping(self, request_id: Any, request: PingRequest) -> EmptyResult:
        return EmptyResult()

    @abstractmethod
    def _handle_initialize(self, request_id: Any, request: InitializeRequest) -> Any:
        """Answer an initialize request."""

    @abstractmethod
    def _handle_set_level(self, request_id: Any, request: SetLevelRequest) -> Any:
        """Set the current session's log level."""

    @abstractmethod
    def _handle_list_resources(self, request_id: Any, request: ListRequest) -> Any:
        """List one page of resources."""

    @abstractmethod
    def _handle_list_resource_templates(self, request_id: Any, request: ListRequest) -> Any:
        """List one page of resource templates."""

    @abstractmethod
    def _handle_read_resource(self, request_id: Any, request: ReadResourceRequest) -> Any:
        """Read a resource's contents."""

    @abstractmethod
    def _handle_list_prompts(self, request_id: Any, request: ListRequest) -> Any:
        """List one page of prompts."""

    @abstractmethod
    def _handle_get_prompt(self, request_id: Any, request: GetPromptRequest) -> Any:
        """Render a prompt."""

    @abstractmethod
    def _handle_list_tools(self, request_id: Any, request: ListRequest) -> Any:
        """List one page of tools."""

    @abstractmethod
    def _handle_tool_call(self, request_id: Any, request: CallToolRequest) -> Any:
        """Call a tool."""

    @abstractmethod
    def _handle_notification(self, notification: JSONRPCNotification) -> None:
        """Handle a notification from the client."""