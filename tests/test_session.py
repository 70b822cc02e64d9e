import queue
from dataclasses import dataclass, field

import pytest

from mcpserve.errors import (
    NotificationChannelBlockedError,
    NotificationNotInitializedError,
    SessionDoesNotSupportToolsError,
    SessionExistsError,
    SessionNotFoundError,
    SessionNotInitializedError,
)
from mcpserve.hooks import Hooks
from mcpserve.protocol import (
    NOTIFICATION_TOOLS_LIST_CHANGED,
    Capabilities,
    ServerTool,
    Tool,
    ToolCapabilities,
)
from mcpserve.session import (
    ClientSession,
    SessionRegistry,
    SessionWithStreamableHTTPConfig,
    SessionWithTools,
    current_session,
    use_session,
)


@dataclass
class FakeSession:
    session_id: str
    notification_channel: queue.Queue = field(default_factory=lambda: queue.Queue(maxsize=10))
    initialized: bool = False

    def initialize(self):
        self.initialized = True


@dataclass
class ToolSession(FakeSession):
    session_tools: dict | None = None


@dataclass
class StreamSession(FakeSession):
    upgrades: int = 0

    def upgrade_to_sse_when_receive_notification(self):
        self.upgrades += 1


def drain(channel):
    items = []
    while True:
        try:
            items.append(channel.get_nowait())
        except queue.Empty:
            return items


def make_registry(capabilities=None, hooks=None):
    return SessionRegistry(capabilities or Capabilities(tools=ToolCapabilities(True)), hooks)


def error_hooks():
    hooks = Hooks()
    errors = []
    hooks.add_on_error(lambda rid, method, message, err: errors.append((method, message, err)))
    return hooks, errors


def test_protocol_checks():
    tool_session = ToolSession("tools", initialized=True)
    plain_session = FakeSession("plain", initialized=True)
    assert isinstance(tool_session, SessionWithTools)
    assert not isinstance(plain_session, SessionWithTools)
    assert isinstance(plain_session, ClientSession)
    assert isinstance(StreamSession("stream"), SessionWithStreamableHTTPConfig)

    registry = SessionRegistry(Capabilities(tools=ToolCapabilities(True)))
    registry.register_session(tool_session)
    registry.register_session(plain_session)
    registry.add_session_tools("tools", ServerTool(Tool("x")))
    assert set(tool_session.session_tools) == {"x"}
    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.add_session_tools("plain", ServerTool(Tool("x")))


def test_register_twice_raises():
    registry = make_registry()
    registry.register_session(FakeSession("s"))
    with pytest.raises(SessionExistsError):
        registry.register_session(FakeSession("s"))
    assert len(registry) == 1


def test_register_and_unregister_hooks():
    hooks = Hooks()
    registered, unregistered = [], []
    hooks.add_on_register_session(registered.append)
    hooks.add_on_unregister_session(unregistered.append)
    registry = make_registry(hooks=hooks)
    session = FakeSession("test-session-id")
    registry.register_session(session)
    assert registered == [session]
    registry.unregister_session("test-session-id")
    assert unregistered == [session]
    assert "test-session-id" not in registry
    registry.unregister_session("test-session-id")
    assert unregistered == [session]


def test_register_without_hooks():
    registry = make_registry()
    registry.register_session(FakeSession("test-session-id"))
    assert "test-session-id" in registry
    registry.unregister_session("test-session-id")
    assert len(registry) == 0


def test_send_to_all_only_initialized():
    registry = make_registry()
    active = [FakeSession(f"test{i}", initialized=True) for i in range(5)]
    idle = [FakeSession(f"test{i + 5}") for i in range(5)]
    for session in active + idle:
        registry.register_session(session)
    for i in range(10):
        registry.send_notification_to_all_clients("method", {"count": i})
    for session in active:
        got = drain(session.notification_channel)
        assert [n.method for n in got] == ["method"] * 10
        assert [n.params["count"] for n in got] == list(range(10))
    for session in idle:
        assert drain(session.notification_channel) == []


def test_send_to_client_without_session():
    registry = make_registry()
    with pytest.raises(NotificationNotInitializedError):
        registry.send_notification_to_client("method", None)


def test_send_to_client_uninitialized():
    registry = make_registry()
    with use_session(FakeSession("test")):
        with pytest.raises(NotificationNotInitializedError):
            registry.send_notification_to_client("method", None)


def test_send_to_client_active():
    registry = make_registry()
    session = FakeSession("test", initialized=True)
    with use_session(session):
        assert current_session() is session
        for _ in range(10):
            registry.send_notification_to_client("method", None)
    assert current_session() is None
    assert [n.method for n in drain(session.notification_channel)] == ["method"] * 10


def test_send_to_client_blocked():
    registry = make_registry()
    session = FakeSession("test", notification_channel=queue.Queue(maxsize=1), initialized=True)
    with use_session(session):
        registry.send_notification_to_client("method", None)
        with pytest.raises(NotificationChannelBlockedError):
            registry.send_notification_to_client("method", None)


def test_send_to_client_upgrades_stream():
    registry = make_registry()
    session = StreamSession("test", initialized=True)
    with use_session(session):
        registry.send_notification_to_client("method", None)
    assert session.upgrades == 1


def test_send_to_specific_client():
    registry = make_registry()
    one = FakeSession("session-1", initialized=True)
    two = FakeSession("session-2", initialized=True)
    three = FakeSession("session-3")
    for session in (one, two, three):
        registry.register_session(session)
    registry.send_notification_to_specific_client("session-1", "test-method", {"data": "test-data"})
    got = drain(one.notification_channel)
    assert len(got) == 1
    assert got[0].method == "test-method"
    assert got[0].params["data"] == "test-data"
    assert drain(two.notification_channel) == []
    with pytest.raises(SessionNotFoundError) as not_found:
        registry.send_notification_to_specific_client("non-existent", "test-method", None)
    assert "not found" in str(not_found.value)
    with pytest.raises(SessionNotInitializedError) as uninit:
        registry.send_notification_to_specific_client("session-3", "test-method", None)
    assert "not properly initialized" in str(uninit.value)


def test_blocked_channel_reports_to_hooks():
    hooks, errors = error_hooks()
    registry = make_registry(hooks=hooks)
    session = FakeSession(
        "blocked-session", notification_channel=queue.Queue(maxsize=1), initialized=True
    )
    registry.register_session(session)
    registry.send_notification_to_specific_client("blocked-session", "first-message", None)
    with pytest.raises(NotificationChannelBlockedError):
        registry.send_notification_to_specific_client("blocked-session", "blocked-message", None)
    assert len(errors) == 1
    method, message, err = errors[0]
    assert method == "notification"
    assert message == {"method": "blocked-message", "sessionID": "blocked-session"}
    assert isinstance(err, NotificationChannelBlockedError)

    errors.clear()
    registry.send_notification_to_all_clients("broadcast-message", None)
    assert len(errors) == 1
    assert errors[0][1] == {"method": "broadcast-message", "sessionID": "blocked-session"}
    assert isinstance(errors[0][2], NotificationChannelBlockedError)


def test_add_session_tools_notifies():
    registry = make_registry()
    session = ToolSession("session-1", initialized=True)
    registry.register_session(session)
    registry.add_session_tools("session-1", ServerTool(Tool("session-tool")))
    got = drain(session.notification_channel)
    assert [n.method for n in got] == ["notifications/tools/list_changed"]
    assert list(session.session_tools) == ["session-tool"]


def test_add_session_tool_keeps_handler():
    registry = make_registry()
    session = ToolSession("session-1", initialized=True)
    registry.register_session(session)

    def handler(request):
        return "helper result"

    registry.add_session_tool("session-1", Tool("session-tool-helper"), handler)
    assert session.session_tools["session-tool-helper"].handler is handler
    assert drain(session.notification_channel)[0].method == NOTIFICATION_TOOLS_LIST_CHANGED


def test_add_session_tools_unknown_or_unsupported():
    registry = make_registry()
    registry.register_session(FakeSession("plain", initialized=True))
    with pytest.raises(SessionNotFoundError):
        registry.add_session_tools("missing", ServerTool(Tool("x")))
    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.add_session_tools("plain", ServerTool(Tool("x")))
    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.delete_session_tools("plain", "x")


def test_add_session_tools_uninitialized_then_initialized():
    hooks, errors = error_hooks()
    registry = make_registry(hooks=hooks)
    session = ToolSession("uninitialized-session", notification_channel=queue.Queue(maxsize=1))
    registry.register_session(session)
    registry.add_session_tools(session.session_id, ServerTool(Tool("uninitialized-tool")))
    assert errors == []
    assert drain(session.notification_channel) == []
    assert set(session.session_tools) == {"uninitialized-tool"}

    session.initialize()
    registry.add_session_tools(session.session_id, ServerTool(Tool("initialized-tool")))
    assert errors == []
    assert [n.method for n in drain(session.notification_channel)] == [
        "notifications/tools/list_changed"
    ]
    assert set(session.session_tools) == {"uninitialized-tool", "initialized-tool"}


def test_delete_session_tools_uninitialized_then_initialized():
    hooks, errors = error_hooks()
    registry = make_registry(hooks=hooks)
    session = ToolSession(
        "uninitialized-session",
        notification_channel=queue.Queue(maxsize=1),
        session_tools={
            "tool-to-delete": ServerTool(Tool("tool-to-delete")),
            "tool-to-keep": ServerTool(Tool("tool-to-keep")),
        },
    )
    registry.register_session(session)
    registry.delete_session_tools(session.session_id, "tool-to-delete")
    assert errors == []
    assert drain(session.notification_channel) == []
    assert set(session.session_tools) == {"tool-to-keep"}

    session.initialize()
    registry.delete_session_tools(session.session_id, "tool-to-keep")
    assert errors == []
    assert [n.method for n in drain(session.notification_channel)] == [
        "notifications/tools/list_changed"
    ]
    assert session.session_tools == {}


def test_delete_session_tools_notifies():
    registry = make_registry()
    session = ToolSession(
        "session-1",
        initialized=True,
        session_tools={
            "session-tool-1": ServerTool(Tool("session-tool-1")),
            "session-tool-2": ServerTool(Tool("session-tool-2")),
        },
    )
    registry.register_session(session)
    registry.delete_session_tools("session-1", "session-tool-1")
    assert drain(session.notification_channel)[0].method == "notifications/tools/list_changed"
    assert set(session.session_tools) == {"session-tool-2"}


def test_delete_session_tools_without_tools_is_noop():
    registry = make_registry()
    session = ToolSession("session-1", initialized=True)
    registry.register_session(session)
    registry.delete_session_tools("session-1", "anything")
    assert session.session_tools is None
    assert drain(session.notification_channel) == []


def test_implicit_tool_capabilities():
    capabilities = Capabilities()
    registry = SessionRegistry(capabilities)
    registry.register_session(ToolSession("test-session", initialized=True))
    registry.add_session_tool("test-session", Tool("test-tool"), None)
    assert capabilities.tools is not None
    assert capabilities.tools.list_changed is True


def test_list_changed_false_sends_nothing():
    capabilities = Capabilities(tools=ToolCapabilities(list_changed=False))
    registry = SessionRegistry(capabilities)
    session = ToolSession("session-1", notification_channel=queue.Queue(maxsize=1), initialized=True)
    registry.register_session(session)
    registry.add_session_tools("session-1", ServerTool(Tool("test-tool")))
    assert capabilities.tools.list_changed is False
    assert drain(session.notification_channel) == []
    assert set(session.session_tools) == {"test-tool"}
    registry.delete_session_tools("session-1", "test-tool")
    assert drain(session.notification_channel) == []
    assert session.session_tools == {}


def test_failed_tool_notification_reported():
    hooks, errors = error_hooks()
    registry = make_registry(hooks=hooks)
    channel = queue.Queue(maxsize=1)
    channel.put_nowait(object())
    session = ToolSession("session-1", notification_channel=channel, initialized=True)
    registry.register_session(session)
    registry.add_session_tools("session-1", ServerTool(Tool("t")))
    assert set(session.session_tools) == {"t"}
    assert len(errors) == 2
    assert isinstance(errors[0][2], NotificationChannelBlockedError)
    assert "failed to send notification after adding tools" in str(errors[1][2])
    assert errors[1][1] == {
        "method": "notifications/tools/list_changed",
        "sessionID": "session-1",
    }