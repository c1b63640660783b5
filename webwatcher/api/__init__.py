"""HTTP API for WebWatcher."""

from .server import SecurityApiServer

__all__ = ["SecurityApiServer"]
