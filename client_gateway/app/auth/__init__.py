"""
Session management for the gateway.
"""

from .session_store import SESSION_KEY, USER_KEY, SessionState, SessionStore

__all__ = ["SESSION_KEY", "USER_KEY", "SessionState", "SessionStore"]
