"""Client sessions and the registry that delivers notifications to them."""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator, Mapping, Protocol, runtime_checkable

from .errors import (
    MCPError,
    NotificationChannelBlockedError,
    NotificationNotInitializedError,
    SessionDoesNotSupportToolsError,
    SessionExistsError,
    SessionNotFoundError,
    SessionNotInitializedError,
)
from .hooks import Hooks
from .protocol import (
    NOTIFICATION_TOOLS_LIST_CHANGED,
    Capabilities,
    Implementation,
    JSONRPCNotification,
    ServerTool,
    Tool,
)


@runtime_checkable
class ClientSession(Protocol):
    """An active client connection that can receive notifications.

    ``notification_channel`` is a bounded queue; a full queue counts as blocked.
    """

    session_id: str
    notification_channel: "queue.Queue[JSONRPCNotification]"
    initialized: bool

    def initialize(self) -> None:
        """Mark the session ready to receive notifications."""


@runtime_checkable
class SessionWithLogging(ClientSession, Protocol):
    """A session that keeps a minimum log level."""

    log_level: str


@runtime_checkable
class SessionWithTools(ClientSession, Protocol):
    """A session carrying tools of its own, keyed by tool name (or None)."""

    session_tools: dict[str, ServerTool] | None


@runtime_checkable
class SessionWithClientInfo(ClientSession, Protocol):
    """A session that records who the client is."""

    client_info: Implementation


@runtime_checkable
class SessionWithStreamableHTTPConfig(ClientSession, Protocol):
    """A session whose transport switches to an event stream on notification."""

    def upgrade_to_sse_when_receive_notification(self) -> None:
        """Switch the response to an event stream."""


_current_session: ContextVar[ClientSession | None] = ContextVar(
    "current_session", default=None
)


def current_session() -> ClientSession | None:
    """The session bound to the running context, if any."""
    return _current_session.get()


@contextmanager
def use_session(session: ClientSession | None) -> Iterator[ClientSession | None]:
    """Bind ``session`` as the current session for the duration of the block."""
    token = _current_session.set(session)
    try:
        yield session
    finally:
        _current_session.reset(token)


def _notification(method: str, params: Mapping[str, Any] | None) -> JSONRPCNotification:
    return JSONRPCNotification(method=method, params=dict(params) if params else {})


class SessionRegistry:
    """Known sessions of a server, and delivery of notifications to them."""

    def __init__(self, capabilities: Capabilities, hooks: Hooks | None = None) -> None:
        self.capabilities = capabilities
        self.hooks = hooks
        self._sessions: dict[str, ClientSession] = {}
        self._lock = threading.Lock()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __iter__(self) -> Iterator[ClientSession]:
        with self._lock:
            return iter(list(self._sessions.values()))

    def _report(self, session_id: str, method: str, error: MCPError) -> None:
        if self.hooks is not None and self.hooks.on_error:
            self.hooks.run_error(
                None, "notification", {"method": method, "sessionID": session_id}, error
            )

    def _blocked(self, session_id: str) -> NotificationChannelBlockedError:
        return NotificationChannelBlockedError(
            f"notification channel blocked for session {session_id}"
        )

    def _deliver(self, session: ClientSession, notification: JSONRPCNotification) -> None:
        try:
            session.notification_channel.put_nowait(notification)
        except queue.Full:
            error = self._blocked(session.session_id)
            self._report(session.session_id, notification.method, error)
            raise error from None

    def _lookup(self, session_id: str) -> ClientSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        return session

    def register_session(self, session: ClientSession) -> None:
        """Add a session; raises SessionExistsError if its id is taken."""
        with self._lock:
            if session.session_id in self._sessions:
                raise SessionExistsError()
            self._sessions[session.session_id] = session
        if self.hooks is not None:
            self.hooks.run_register_session(session)

    def unregister_session(self, session_id: str) -> None:
        """Remove a session; unknown ids are ignored."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None and self.hooks is not None:
            self.hooks.run_unregister_session(session)

    def send_notification_to_all_clients(
        self, method: str, params: Mapping[str, Any] | None = None
    ) -> None:
        """Send to every initialized session; blocked ones are reported, not raised."""
        notification = _notification(method, params)
        for session in self:
            if not session.initialized:
                continue
            try:
                self._deliver(session, notification)
            except NotificationChannelBlockedError:
                continue

    def send_notification_to_client(
        self, method: str, params: Mapping[str, Any] | None = None
    ) -> None:
        """Send to the session bound to the current context."""
        session = current_session()
        if session is None or not session.initialized:
            raise NotificationNotInitializedError()
        if isinstance(session, SessionWithStreamableHTTPConfig):
            session.upgrade_to_sse_when_receive_notification()
        self._deliver(session, _notification(method, params))

    def send_notification_to_specific_client(
        self, session_id: str, method: str, params: Mapping[str, Any] | None = None
    ) -> None:
        """Send to the registered session with ``session_id``."""
        session = self._lookup(session_id)
        if not session.initialized:
            raise SessionNotInitializedError()
        if isinstance(session, SessionWithStreamableHTTPConfig):
            session.upgrade_to_sse_when_receive_notification()
        self._deliver(session, _notification(method, params))

    def _tools_session(self, session_id: str) -> SessionWithTools:
        session = self._lookup(session_id)
        if not isinstance(session, SessionWithTools):
            raise SessionDoesNotSupportToolsError()
        return session

    def _announce_tools_changed(self, session: SessionWithTools, action: str) -> None:
        tools = self.capabilities.tools
        if not (session.initialized and tools is not None and tools.list_changed):
            return
        try:
            self.send_notification_to_specific_client(
                session.session_id, NOTIFICATION_TOOLS_LIST_CHANGED
            )
        except MCPError as exc:
            error = MCPError(f"failed to send notification after {action} tools: {exc}")
            error.__cause__ = exc
            self._report(session.session_id, NOTIFICATION_TOOLS_LIST_CHANGED, error)

    def add_session_tool(
        self, session_id: str, tool: Tool, handler: Callable[..., Any] | None
    ) -> None:
        """Add one tool to a session."""
        self.add_session_tools(session_id, ServerTool(tool=tool, handler=handler))

    def add_session_tools(self, session_id: str, *args: ServerTool) -> None:
        """Add tools to a session, replacing any of the same name."""
        session = self._tools_session(session_id)
        self.capabilities.ensure_tools()
        tools = dict(session.session_tools or {})
        tools.update((entry.tool.name, entry) for entry in args)
        session.session_tools = tools
        self._announce_tools_changed(session, "adding")

    def delete_session_tools(self, session_id: str, *args: str) -> None:
        """Remove the named tools from a session."""
        session = self._tools_session(session_id)
        if session.session_tools is None:
            return
        tools = {
            name: entry for name, entry in session.session_tools.items() if name not in args
        }
        session.session_tools = tools
        self._announce_tools_changed(session, "deleting")