# mcpserve

`mcpserve` is the core of a Model Context Protocol (MCP) server. It keeps
registries of tools, prompts, resources and resource templates, tracks client
sessions, delivers notifications to them, and turns incoming JSON-RPC messages
into replies.

It uses only the Python standard library and needs Python 3.10 or later.

## What it does not do

The package has no transport and no command to run. It does not read stdio,
listen on a socket or serve HTTP/SSE. You receive messages yourself, pass each
one to `MCPServer.handle_message`, and send back whatever it returns. It also has
no client side. Resource subscriptions are announced as a capability but are
not handled.

## A small server

```python
from mcpserve.protocol import CallToolResult, TextContent, Tool, ToolCapabilities
from mcpserve.server import MCPServer

server = MCPServer(
    "demo-server",
    "1.0.0",
    tools=ToolCapabilities(list_changed=True),
    instructions="Say hello.",
)

def hello(request):
    # request is a CallToolRequest with .name and .arguments
    return CallToolResult(content=[TextContent(text="hello")])

server.add_tool(Tool(name="hello"), hello)

reply = server.handle_message(
    '{"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "hello"}}'
)
print(reply.to_dict())
```

`handle_message` accepts a `str`, `bytes` or `bytearray`. It returns one of three things:

- a `JSONRPCResponse`;
- a `JSONRPCError`;
- `None`, for notifications and for replies to requests that the server sent itself.

Both `JSONRPCResponse` and `JSONRPCError` have `to_dict()` for serialisation.

## Server options

`MCPServer(name, version, *, ...)` takes these keyword arguments:

- `resources`: a `ResourceCapabilities(subscribe=..., list_changed=...)`, or `None`.
- `prompts`: a `PromptCapabilities(list_changed=...)`, or `None`.
- `tools`: a `ToolCapabilities(list_changed=...)`, or `None`.
- `logging`: set it to `True` to enable `logging/setLevel`.
- `instructions`: the text returned in the `initialize` result.
- `pagination_limit`: the page size for listings. With `None` there are no pages.
- `hooks`: a `Hooks` instance (see below).
- `tool_middlewares` and `tool_filters`: iterables of middlewares and filters (see below).
- `recovery`: when `True`, `recovery_middleware` wraps all other middlewares.

## Methods understood

- `initialize`: negotiates the protocol version with `negotiate_protocol_version`.
  The server answers with the client's version if it supports it, and otherwise with
  its latest version (`2025-03-26`).
- `ping`
- `logging/setLevel`
- `resources/list`, `resources/templates/list`, `resources/read`
- `prompts/list`, `prompts/get`
- `tools/list`, `tools/call`

Some requests fail with a JSON-RPC error:

- A method whose capability is not enabled answers with `METHOD_NOT_FOUND`.
- An unknown method answers with `METHOD_NOT_FOUND` as well.
- Malformed JSON answers with `PARSE_ERROR`.
- A wrong `jsonrpc` version answers with `INVALID_REQUEST`.
- Params that do not decode answer with `INVALID_REQUEST`. The error hooks receive an
  `UnparsableMessageError` for this case.

The error codes are in `mcpserve.protocol.ErrorCode`.

Listings are sorted by name. With `pagination_limit` set, they are split into
pages using base64 cursors (see `paginate`). An invalid cursor answers with
`INVALID_PARAMS`.

## Registries

- **Tools:** `add_tool`, `add_tools`, `set_tools`, `delete_tools`.
  - Handlers take a `CallToolRequest`.
- **Prompts:** `add_prompt`, `add_prompts`, `delete_prompts`.
  - Handlers take a `GetPromptRequest` and return, for example, a `GetPromptResult`.
- **Resources:** `add_resource`, `add_resources`, `remove_resource`, `add_resource_template`.
  - Handlers take a `ReadResourceRequest` and return a list of contents, such as
    `TextResourceContents`.
  - Templates use `URITemplate`, which covers RFC 6570 expressions.
  - When a URI matches a template, the template's variables arrive in
    `request.arguments` as lists of strings.
- **Notification handlers:** `add_notification_handler(method, handler)`.
  - The handler receives a `JSONRPCNotification`.

Adding a tool, prompt or resource enables its capability if it was not enabled
already. A tools capability enabled this way announces list changes.

While a capability has `list_changed` set, every change to that registry sends a
`notifications/.../list_changed` notification to all initialised sessions. This
applies to adding entries, and to deleting entries that existed.

An exception raised by a handler becomes an `INTERNAL_ERROR` reply. Some lookups
fail with `INVALID_PARAMS`:

- an unknown tool (`ToolNotFoundError`);
- an unknown prompt (`PromptNotFoundError`).

An unknown resource fails with `RESOURCE_NOT_FOUND` (`ResourceNotFoundError`).

## Middleware and filters

`add_tool_middleware(middleware)` wraps every tool handler. A middleware takes a
handler and returns a handler. Middlewares added earlier wrap those added later.

`recovery_middleware` re-raises any exception from a handler as an `MCPError`
with the message `panic recovered in <tool> tool handler: <error>`.

`add_tool_filter(tool_filter)` registers a callable that receives the list of
`Tool`s and returns the list that `tools/list` should show.

## Sessions

A session is any object with these members:

- `session_id`;
- `notification_channel`, a bounded `queue.Queue`;
- an `initialized` flag;
- an `initialize()` method.

That is the `ClientSession` protocol. Optional extras:

- `SessionWithTools`: a `session_tools` dict of `ServerTool` or `None`. These tools are
  added to `tools/list` and take precedence in `tools/call`.
- `SessionWithLogging`: a `log_level`, set by `logging/setLevel`.
- `SessionWithClientInfo`: a `client_info`, set by `initialize`.
- `SessionWithStreamableHTTPConfig`: `upgrade_to_sse_when_receive_notification()`,
  called before a notification is sent directly to the session.

```python
import queue
from dataclasses import dataclass, field

from mcpserve.session import use_session

@dataclass
class Session:
    session_id: str
    notification_channel: queue.Queue = field(default_factory=lambda: queue.Queue(maxsize=16))
    initialized: bool = False

    def initialize(self):
        self.initialized = True

session = Session("session-1")
server.register_session(session)
with use_session(session):
    server.handle_message('{"jsonrpc": "2.0", "id": 1, "method": "initialize"}')
```

### Binding and registration

Inside `use_session(session)`, `current_session()` returns that session.
`mcpserve.dispatch.current_server()` returns the server while a message is being
handled.

`register_session` raises `SessionExistsError` if the id is already taken.
`unregister_session` ignores ids it does not know.

### Sending notifications

- `send_notification_to_client(method, params)` sends to the current session.
  - Raises `NotificationNotInitializedError` when there is none, or when it is not
    initialised.
- `send_notification_to_specific_client(session_id, method, params)` sends to one
  registered session.
  - Raises `SessionNotFoundError` or `SessionNotInitializedError`.
- `send_notification_to_all_clients(method, params)` sends to every initialised session.

A full queue raises `NotificationChannelBlockedError` and reports it to the error
hooks. The broadcast method reports the error but does not raise it.

### Per-session tools

`add_session_tool`, `add_session_tools` and `delete_session_tools` manage the tools
of one session. They raise `SessionNotFoundError` or
`SessionDoesNotSupportToolsError`. When the session is initialised and tools
announce list changes, they notify that session alone.

## Hooks

`Hooks` collects callbacks, which you pass to the server with `hooks=`:

| Method | Callback | Called with |
| --- | --- | --- |
| `add_before_any` | `hook(request_id, method, request)` | |
| `add_before(method, hook)` | `hook(request_id, request)` | |
| `add_after(method, hook)` | `hook(request_id, request, result)` | |
| `add_on_success` | `hook(request_id, method, request, result)` | |
| `add_on_error` | `hook(request_id, method, request, error)` | `error` is usually a `RequestError` |
| `add_on_request_initialization` | `hook(request_id, raw_message)` | raising rejects the request with `INVALID_REQUEST` |
| `add_on_register_session` | `hook(session)` | |
| `add_on_unregister_session` | `hook(session)` | |

For notification failures, the error hooks receive the method `"notification"`
and a dict with the notification's `method` and the `sessionID`.