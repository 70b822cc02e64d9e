"""Model Context Protocol server core: registries, sessions, hooks and JSON-RPC dispatch."""

__version__ = "0.1.0"

__all__ = ["dispatch", "errors", "hooks", "protocol", "server", "session", "uritemplate"]