"""The MCP server: registries of resources, prompts and tools, and their handlers."""

from __future__ import annotations

import dataclasses
import functools
import threading
from typing import Any, Callable, Iterable, Sequence

from .dispatch import MessageDispatcher
from .errors import (
    MCPError,
    PromptNotFoundError,
    RequestError,
    ResourceNotFoundError,
    SessionDoesNotSupportLoggingError,
    SessionNotInitializedError,
    ToolNotFoundError,
)
from .hooks import Hooks
from .protocol import (
    NOTIFICATION_PROMPTS_LIST_CHANGED,
    NOTIFICATION_RESOURCES_LIST_CHANGED,
    NOTIFICATION_TOOLS_LIST_CHANGED,
    CallToolRequest,
    Capabilities,
    EmptyResult,
    ErrorCode,
    GetPromptRequest,
    Implementation,
    InitializeRequest,
    InitializeResult,
    JSONRPCNotification,
    ListRequest,
    ListResult,
    LoggingLevel,
    Prompt,
    PromptCapabilities,
    ReadResourceRequest,
    ReadResourceResult,
    Resource,
    ResourceCapabilities,
    ResourceTemplate,
    ServerPrompt,
    ServerResource,
    ServerTool,
    SetLevelRequest,
    Tool,
    ToolCapabilities,
    negotiate_protocol_version,
    paginate,
)
from .session import (
    SessionRegistry,
    SessionWithClientInfo,
    SessionWithLogging,
    SessionWithTools,
    current_session,
)

ToolHandler = Callable[[CallToolRequest], Any]
ToolMiddleware = Callable[[ToolHandler], ToolHandler]
ToolFilter = Callable[[list], Any]


def recovery_middleware(handler: ToolHandler) -> ToolHandler:
    """Wrap a tool handler so that any exception it raises is reported as a recovered failure."""

    @functools.wraps(handler)
    def wrapped(request: CallToolRequest) -> Any:
        try:
            return handler(request)
        except Exception as exc:
            raise MCPError(
                f"panic recovered in {request.name} tool handler: {exc}"
            ) from exc

    return wrapped


class MCPServer(SessionRegistry, MessageDispatcher):
    """A server holding resources, prompts and tools, answering JSON-RPC messages.

    Handlers take the decoded request and return the result; an exception
    raised by a handler becomes an internal-error reply. The current session
    and server are available through ``current_session()`` and
    ``current_server()`` while a handler runs.
    """

    def __init__(
        self,
        name: str,
        version: str,
        *,
        resources: ResourceCapabilities | None = None,
        prompts: PromptCapabilities | None = None,
        tools: ToolCapabilities | None = None,
        logging: bool = False,
        instructions: str = "",
        pagination_limit: int | None = None,
        hooks: Hooks | None = None,
        tool_middlewares: Iterable[ToolMiddleware] = (),
        tool_filters: Iterable[ToolFilter] = (),
        recovery: bool = False,
    ) -> None:
        """Create a server; with ``recovery`` a recovering middleware wraps all others."""
        super().__init__(
            Capabilities(tools=tools, resources=resources, prompts=prompts, logging=logging),
            hooks,
        )
        self.name = name
        self.version = version
        self.instructions = instructions
        self.pagination_limit = pagination_limit
        self._state_lock = threading.RLock()
        self._resources: dict[str, tuple[Resource, Callable[..., Any] | None]] = {}
        self._resource_templates: dict[str, tuple[ResourceTemplate, Callable[..., Any] | None]] = {}
        self._prompts: dict[str, ServerPrompt] = {}
        self._tools: dict[str, ServerTool] = {}
        self._notification_handlers: dict[str, Callable[[JSONRPCNotification], Any]] = {}
        self._tool_middlewares: list[ToolMiddleware] = []
        if recovery:
            self._tool_middlewares.append(recovery_middleware)
        self._tool_middlewares.extend(tool_middlewares)
        self._tool_filters: list[ToolFilter] = list(tool_filters)

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"MCPServer(name={self.name!r}, version={self.version!r})"

    # Registration

    def add_resources(self, *args: ServerResource) -> None:
        """Register several resources at once."""
        caps = self.capabilities.ensure_resources()
        with self._state_lock:
            for entry in args:
                self._resources[entry.resource.uri] = (entry.resource, entry.handler)
        if caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED)

    def add_resource(self, resource: Resource, handler: Callable[..., Any] | None) -> None:
        self.add_resources(ServerResource(resource=resource, handler=handler))

    def remove_resource(self, uri: str) -> None:
        """Remove a resource by URI; announces the change only if one was removed."""
        with self._state_lock:
            existed = self._resources.pop(uri, None) is not None
        caps = self.capabilities.resources
        if existed and caps is not None and caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED)

    def add_resource_template(
        self, template: ResourceTemplate, handler: Callable[..., Any] | None
    ) -> None:
        caps = self.capabilities.ensure_resources()
        with self._state_lock:
            self._resource_templates[template.uri_template.raw] = (template, handler)
        if caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED)

    def add_prompts(self, *args: ServerPrompt) -> None:
        caps = self.capabilities.ensure_prompts()
        with self._state_lock:
            for entry in args:
                self._prompts[entry.prompt.name] = entry
        if caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_PROMPTS_LIST_CHANGED)

    def add_prompt(self, prompt: Prompt, handler: Callable[..., Any] | None) -> None:
        self.add_prompts(ServerPrompt(prompt=prompt, handler=handler))

    def delete_prompts(self, *args: str) -> None:
        with self._state_lock:
            removed = [self._prompts.pop(name, None) for name in args]
        caps = self.capabilities.prompts
        if any(entry is not None for entry in removed) and caps is not None and caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_PROMPTS_LIST_CHANGED)

    def add_tool(self, tool: Tool, handler: ToolHandler | None) -> None:
        self.add_tools(ServerTool(tool=tool, handler=handler))

    def add_tools(self, *args: ServerTool) -> None:
        caps = self.capabilities.ensure_tools()
        with self._state_lock:
            for entry in args:
                self._tools[entry.tool.name] = entry
        if caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED)

    def set_tools(self, *args: ServerTool) -> None:
        """Replace all tools with the given ones."""
        with self._state_lock:
            self._tools = {}
        self.add_tools(*args)

    def delete_tools(self, *args: str) -> None:
        with self._state_lock:
            removed = [self._tools.pop(name, None) for name in args]
        caps = self.capabilities.tools
        if any(entry is not None for entry in removed) and caps is not None and caps.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED)

    def add_notification_handler(
        self, method: str, handler: Callable[[JSONRPCNotification], Any]
    ) -> None:
        with self._state_lock:
            self._notification_handlers[method] = handler

    def add_tool_middleware(self, middleware: ToolMiddleware) -> None:
        """Add a middleware; middlewares added earlier wrap those added later."""
        with self._state_lock:
            self._tool_middlewares.append(middleware)

    def add_tool_filter(self, tool_filter: ToolFilter) -> None:
        """Add a filter applied to the tool list before it is returned."""
        with self._state_lock:
            self._tool_filters.append(tool_filter)

    # Request handlers

    @staticmethod
    def _invoke(request_id: Any, handler: Callable[..., Any] | None, request: Any) -> Any:
        if handler is None:
            raise RequestError(
                request_id, ErrorCode.INTERNAL_ERROR, MCPError("no handler registered")
            )
        try:
            return handler(request)
        except RequestError:
            raise
        except Exception as exc:
            raise RequestError(request_id, ErrorCode.INTERNAL_ERROR, exc) from exc

    def _page(self, request_id: Any, items: Sequence[Any], cursor: str, key: str) -> ListResult:
        try:
            page, next_cursor = paginate(items, cursor, self.pagination_limit)
        except ValueError as exc:
            raise RequestError(request_id, ErrorCode.INVALID_PARAMS, exc) from exc
        return ListResult(items=page, key=key, next_cursor=next_cursor)

    def _handle_initialize(self, request_id: Any, request: InitializeRequest) -> InitializeResult:
        result = InitializeResult(
            protocol_version=negotiate_protocol_version(request.protocol_version),
            server_info=Implementation(name=self.name, version=self.version),
            capabilities=self.capabilities.snapshot(),
            instructions=self.instructions,
        )
        session = current_session()
        if session is not None:
            session.initialize()
            if isinstance(session, SessionWithClientInfo):
                session.client_info = request.client_info
        return result

    def _handle_set_level(self, request_id: Any, request: SetLevelRequest) -> EmptyResult:
        session = current_session()
        if session is None or not session.initialized:
            raise RequestError(request_id, ErrorCode.INTERNAL_ERROR, SessionNotInitializedError())
        if not isinstance(session, SessionWithLogging):
            raise RequestError(
                request_id, ErrorCode.INTERNAL_ERROR, SessionDoesNotSupportLoggingError()
            )
        try:
            level = LoggingLevel(request.level)
        except ValueError as exc:
            raise RequestError(
                request_id,
                ErrorCode.INVALID_PARAMS,
                ValueError(f"invalid logging level '{request.level}'"),
            ) from exc
        session.log_level = level
        return EmptyResult()

    def _handle_list_resources(self, request_id: Any, request: ListRequest) -> ListResult:
        with self._state_lock:
            resources = [resource for resource, _ in self._resources.values()]
        resources.sort(key=lambda item: item.name)
        return self._page(request_id, resources, request.cursor, "resources")

    def _handle_list_resource_templates(self, request_id: Any, request: ListRequest) -> ListResult:
        with self._state_lock:
            templates = [template for template, _ in self._resource_templates.values()]
        templates.sort(key=lambda item: item.name)
        return self._page(request_id, templates, request.cursor, "resourceTemplates")

    def _handle_read_resource(
        self, request_id: Any, request: ReadResourceRequest
    ) -> ReadResourceResult:
        handler: Callable[..., Any] | None = None
        found = False
        with self._state_lock:
            direct = self._resources.get(request.uri)
            if direct is not None:
                handler, found = direct[1], True
            else:
                for template, template_handler in self._resource_templates.values():
                    values = template.uri_template.match(request.uri)
                    if values is not None:
                        handler, found = template_handler, True
                        request = dataclasses.replace(request, arguments=dict(values))
                        break
        if not found:
            raise RequestError(
                request_id,
                ErrorCode.RESOURCE_NOT_FOUND,
                ResourceNotFoundError(
                    f"handler not found for resource URI '{request.uri}': "
                    f"{ResourceNotFoundError.default_message}"
                ),
            )
        contents = self._invoke(request_id, handler, request)
        return ReadResourceResult(contents=list(contents or []))

    def _handle_list_prompts(self, request_id: Any, request: ListRequest) -> ListResult:
        with self._state_lock:
            prompts = [entry.prompt for entry in self._prompts.values()]
        prompts.sort(key=lambda item: item.name)
        return self._page(request_id, prompts, request.cursor, "prompts")

    def _handle_get_prompt(self, request_id: Any, request: GetPromptRequest) -> Any:
        with self._state_lock:
            entry = self._prompts.get(request.name)
        if entry is None:
            raise RequestError(
                request_id,
                ErrorCode.INVALID_PARAMS,
                PromptNotFoundError(
                    f"prompt '{request.name}' not found: {PromptNotFoundError.default_message}"
                ),
            )
        return self._invoke(request_id, entry.handler, request)

    def _handle_list_tools(self, request_id: Any, request: ListRequest) -> ListResult:
        with self._state_lock:
            tools = [self._tools[name].tool for name in sorted(self._tools)]
            filters = list(self._tool_filters)
        session = current_session()
        if isinstance(session, SessionWithTools) and session.session_tools is not None:
            merged = {tool.name: tool for tool in tools}
            merged.update((name, entry.tool) for name, entry in session.session_tools.items())
            tools = sorted(merged.values(), key=lambda item: item.name)
        for tool_filter in filters:
            tools = list(tool_filter(tools) or [])
        return self._page(request_id, tools, request.cursor, "tools")

    def _handle_tool_call(self, request_id: Any, request: CallToolRequest) -> Any:
        entry: ServerTool | None = None
        session = current_session()
        if isinstance(session, SessionWithTools) and session.session_tools is not None:
            entry = session.session_tools.get(request.name)
        if entry is None:
            with self._state_lock:
                entry = self._tools.get(request.name)
        if entry is None:
            raise RequestError(
                request_id,
                ErrorCode.INVALID_PARAMS,
                ToolNotFoundError(
                    f"tool '{request.name}' not found: {ToolNotFoundError.default_message}"
                ),
            )
        with self._state_lock:
            middlewares = list(self._tool_middlewares)
        handler = entry.handler
        if handler is not None:
            for middleware in reversed(middlewares):
                handler = middleware(handler)
        return self._invoke(request_id, handler, request)

    def _handle_notification(self, notification: JSONRPCNotification) -> None:
        with self._state_lock:
            handler = self._notification_handlers.get(notification.method)
        if handler is not None:
            handler(notification)