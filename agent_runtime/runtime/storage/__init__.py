from .session_store import InMemorySessionStore, JsonlSessionStore, SessionStore

__all__ = ["InMemorySessionStore", "JsonlSessionStore", "SessionStore"]
