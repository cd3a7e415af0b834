"""Live device sessions."""

from pulpit.sessions.registry import ConnectionHandle, Session, SessionRegistry

__all__ = ["ConnectionHandle", "Session", "SessionRegistry"]
