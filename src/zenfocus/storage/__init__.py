"""Session persistence."""

from zenfocus.storage.session_store import SessionStore

__all__ = ["SessionStore"]
