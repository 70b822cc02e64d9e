"""Callbacks run around request handling and session registration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass
class Hooks:
    """Lists of callbacks; the server calls the ``run_*`` methods."""

    before_any: list[Callable[[Any, str, Any], None]] = field(default_factory=list)
    on_success: list[Callable[[Any, str, Any, Any], None]] = field(default_factory=list)
    on_error: list[Callable[[Any, str, Any, BaseException], None]] = field(default_factory=list)
    on_request_initialization: list[Callable[[Any, Any], None]] = field(default_factory=list)
    before: dict[str, list[Callable[[Any, Any], None]]] = field(default_factory=dict)
    after: dict[str, list[Callable[[Any, Any, Any], None]]] = field(default_factory=dict)
    on_register_session: list[Callable[[Any], None]] = field(default_factory=list)
    on_unregister_session: list[Callable[[Any], None]] = field(default_factory=list)

    def add_before_any(self, hook):
        self.before_any.append(hook)

    def add_on_success(self, hook):
        self.on_success.append(hook)

    def add_on_error(self, hook):
        self.on_error.append(hook)

    def add_on_request_initialization(self, hook):
        """Add a hook that may raise to reject a request before it is handled."""
        self.on_request_initialization.append(hook)

    def add_before(self, method, hook):
        self.before.setdefault(method, []).append(hook)

    def add_after(self, method, hook):
        self.after.setdefault(method, []).append(hook)

    def add_on_register_session(self, hook):
        self.on_register_session.append(hook)

    def add_on_unregister_session(self, hook):
        self.on_unregister_session.append(hook)

    def run_before(self, request_id, method, message):
        for hook in self.before_any:
            hook(request_id, method, message)
        for hook in self.before.get(method, []):
            hook(request_id, message)

    def run_after(self, request_id, method, message, result):
        for hook in self.on_success:
            hook(request_id, method, message, result)
        for hook in self.after.get(method, []):
            hook(request_id, message, result)

    def run_error(self, request_id, method, message, error):
        for hook in self.on_error:
            hook(request_id, method, message, error)

    def run_request_initialization(self, request_id, message):
        for hook in self.on_request_initialization:
            hook(request_id, message)

    def run_register_session(self, session):
        for hook in self.on_register_session:
            hook(session)

    def run_unregister_session(self, session):
        for hook in self.on_unregister_session:
            hook(session)