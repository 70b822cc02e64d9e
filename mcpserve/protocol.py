"""Protocol data types, constants and helpers for the JSON-RPC server."""

from __future__ import annotations

import base64
import binascii
import bisect
import dataclasses
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Sequence

from .uritemplate import URITemplate

JSONRPC_VERSION = "2.0"
LATEST_PROTOCOL_VERSION = "2025-03-26"
VALID_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26")

METHOD_INITIALIZE = "initialize"
METHOD_PING = "ping"
METHOD_SET_LOG_LEVEL = "logging/setLevel"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_TEMPLATES_LIST = "resources/templates/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
NOTIFICATION_RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
NOTIFICATION_PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
NOTIFICATION_TOOLS_LIST_CHANGED = "notifications/tools/list_changed"


class ErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    RESOURCE_NOT_FOUND = -32002


class LoggingLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, URITemplate):
        return value.raw
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out = {}
        for f in dataclasses.fields(value):
            if f.name.startswith("_"):
                continue
            item = getattr(value, f.name)
            if item is None or item == "":
                continue
            out[_camel(f.name)] = _jsonable(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


@dataclass
class Implementation:
    name: str = ""
    version: str = ""


@dataclass
class Tool:
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    annotations: dict[str, Any] = field(default_factory=dict)


@dataclass
class PromptArgument:
    name: str
    description: str = ""
    required: bool = False


@dataclass
class Prompt:
    name: str
    description: str = ""
    arguments: list[PromptArgument] = field(default_factory=list)


@dataclass
class Resource:
    uri: str
    name: str
    description: str = ""
    mime_type: str = ""


@dataclass
class ResourceTemplate:
    uri_template: URITemplate
    name: str
    description: str = ""
    mime_type: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.uri_template, str):
            self.uri_template = URITemplate(self.uri_template)


@dataclass
class TextContent:
    text: str
    type: str = "text"


@dataclass
class TextResourceContents:
    uri: str
    text: str
    mime_type: str = ""


@dataclass
class PromptMessage:
    role: str
    content: Any


@dataclass
class GetPromptResult:
    messages: list[PromptMessage] = field(default_factory=list)
    description: str = ""


@dataclass
class CallToolResult:
    content: list[Any] = field(default_factory=list)
    is_error: bool = False


@dataclass
class ReadResourceResult:
    contents: list[Any] = field(default_factory=list)


@dataclass
class ListResult:
    """One page of a listing; ``key`` names the list in the wire form."""

    items: list[Any]
    key: str
    next_cursor: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {self.key: _jsonable(self.items)}
        if self.next_cursor:
            out["nextCursor"] = self.next_cursor
        return out


@dataclass
class EmptyResult:
    def to_dict(self) -> dict[str, Any]:
        return {}


@dataclass
class ToolCapabilities:
    list_changed: bool = False


@dataclass
class ResourceCapabilities:
    subscribe: bool = False
    list_changed: bool = False


@dataclass
class PromptCapabilities:
    list_changed: bool = False


@dataclass
class ServerCapabilities:
    """Capabilities as announced to a client."""

    resources: ResourceCapabilities | None = None
    prompts: PromptCapabilities | None = None
    tools: ToolCapabilities | None = None
    logging: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.resources is not None:
            res: dict[str, Any] = {}
            if self.resources.subscribe:
                res["subscribe"] = True
            if self.resources.list_changed:
                res["listChanged"] = True
            out["resources"] = res
        for key in ("prompts", "tools"):
            caps = getattr(self, key)
            if caps is not None:
                out[key] = {"listChanged": True} if caps.list_changed else {}
        if self.logging:
            out["logging"] = {}
        return out


@dataclass
class Capabilities:
    """The server's configured capabilities; None means not enabled."""

    tools: ToolCapabilities | None = None
    resources: ResourceCapabilities | None = None
    prompts: PromptCapabilities | None = None
    logging: bool = False
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def ensure_tools(self) -> ToolCapabilities:
        """Enable tools implicitly, announcing list changes unless configured."""
        with self._lock:
            if self.tools is None:
                self.tools = ToolCapabilities(list_changed=True)
            return self.tools

    def ensure_resources(self) -> ResourceCapabilities:
        with self._lock:
            if self.resources is None:
                self.resources = ResourceCapabilities()
            return self.resources

    def ensure_prompts(self) -> PromptCapabilities:
        with self._lock:
            if self.prompts is None:
                self.prompts = PromptCapabilities()
            return self.prompts

    def snapshot(self) -> ServerCapabilities:
        with self._lock:
            return ServerCapabilities(
                resources=dataclasses.replace(self.resources) if self.resources else None,
                prompts=dataclasses.replace(self.prompts) if self.prompts else None,
                tools=dataclasses.replace(self.tools) if self.tools else None,
                logging=self.logging,
            )


@dataclass
class InitializeResult:
    protocol_version: str
    server_info: Implementation
    capabilities: ServerCapabilities
    instructions: str = ""


def _params_dict(params: Any) -> dict[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise ValueError(f"params must be an object, not {type(params).__name__}")
    return params


def _get(params: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = params.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise ValueError(f"field {key!r} must be of type {kind.__name__}")
    return value


@dataclass
class InitializeRequest:
    protocol_version: str = ""
    client_info: Implementation = field(default_factory=Implementation)
    capabilities: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Any) -> "InitializeRequest":
        data = _params_dict(params)
        info = _get(data, "clientInfo", dict, {})
        return cls(
            protocol_version=_get(data, "protocolVersion", str, ""),
            client_info=Implementation(
                name=_get(info, "name", str, ""), version=_get(info, "version", str, "")
            ),
            capabilities=dict(_get(data, "capabilities", dict, {})),
        )


@dataclass
class CallToolRequest:
    name: str = ""
    arguments: Any = None

    @classmethod
    def from_params(cls, params: Any) -> "CallToolRequest":
        data = _params_dict(params)
        return cls(name=_get(data, "name", str, ""), arguments=data.get("arguments"))


@dataclass
class GetPromptRequest:
    name: str = ""
    arguments: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Any) -> "GetPromptRequest":
        data = _params_dict(params)
        arguments = dict(_get(data, "arguments", dict, {}))
        for key, value in arguments.items():
            if not isinstance(value, str):
                raise ValueError(f"prompt argument {key!r} must be a string")
        return cls(name=_get(data, "name", str, ""), arguments=arguments)


@dataclass
class ReadResourceRequest:
    uri: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Any) -> "ReadResourceRequest":
        data = _params_dict(params)
        return cls(
            uri=_get(data, "uri", str, ""),
            arguments=dict(_get(data, "arguments", dict, {})),
        )


@dataclass
class ListRequest:
    cursor: str = ""

    @classmethod
    def from_params(cls, params: Any) -> "ListRequest":
        return cls(cursor=_get(_params_dict(params), "cursor", str, ""))


@dataclass
class SetLevelRequest:
    level: str = ""

    @classmethod
    def from_params(cls, params: Any) -> "SetLevelRequest":
        return cls(level=_get(_params_dict(params), "level", str, ""))


@dataclass
class PingRequest:
    @classmethod
    def from_params(cls, params: Any) -> "PingRequest":
        _params_dict(params)
        return cls()


@dataclass
class JSONRPCNotification:
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params:
            out["params"] = _jsonable(self.params)
        return out


@dataclass
class JSONRPCResponse:
    id: Any
    result: Any
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": _jsonable(self.result)}


@dataclass
class JSONRPCError:
    id: Any
    code: int
    message: str
    data: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            error["data"] = _jsonable(self.data)
        return {"jsonrpc": self.jsonrpc, "id": self.id, "error": error}


@dataclass
class ServerTool:
    tool: Tool
    handler: Callable[..., Any] | None = None


@dataclass
class ServerPrompt:
    prompt: Prompt
    handler: Callable[..., Any] | None = None


@dataclass
class ServerResource:
    resource: Resource
    handler: Callable[..., Any] | None = None


def negotiate_protocol_version(client_version: str) -> str:
    """The client's version if supported, else the latest one."""
    if client_version in VALID_PROTOCOL_VERSIONS:
        return client_version
    return LATEST_PROTOCOL_VERSION


def paginate(items: Sequence[Any], cursor: str = "", limit: int | None = None) -> tuple[list[Any], str]:
    """Page through items sorted by ``name``; returns the page and the next cursor.

    Raises ValueError if the cursor is not valid base64.
    """
    elements = list(items)
    start = 0
    if cursor:
        try:
            decoded = base64.b64decode(cursor, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid cursor: {exc}") from exc
        start = bisect.bisect_right(elements, decoded, key=lambda item: item.name)
    end = len(elements)
    if limit is not None and len(elements) > start + limit:
        end = start + limit
    page = elements[start:end]
    next_cursor = ""
    if limit is not None and page and len(page) >= limit:
        next_cursor = base64.b64encode(page[-1].name.encode("utf-8")).decode("ascii")
    return page, next_cursor


def create_response(request_id: Any, result: Any) -> JSONRPCResponse:
    return JSONRPCResponse(id=request_id, result=result)


def create_error_response(request_id: Any, code: int, message: str) -> JSONRPCError:
    return JSONRPCError(id=request_id, code=int(code), message=message)