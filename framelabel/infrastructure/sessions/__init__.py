"""
Session storage.

Sessions are in-process, TTL-bounded working sets of images. A background
sweeper removes sessions whose expiry has passed.
"""

from .store import (
    ImageNotFoundError,
    InMemorySessionStore,
    InvalidSessionError,
    Session,
    SessionStore,
    SessionSweeper,
    create_session_store,
)

__all__ = [
    "ImageNotFoundError",
    "InMemorySessionStore",
    "InvalidSessionError",
    "Session",
    "SessionStore",
    "SessionSweeper",
    "create_session_store",
]
