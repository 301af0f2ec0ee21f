"""Connected client session tracking."""

from .registry import ClientSession, ClientSessionRegistry

__all__ = ["ClientSession", "ClientSessionRegistry"]
