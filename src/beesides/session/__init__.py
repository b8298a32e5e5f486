"""
Beesides - Session lifecycle.
"""

from beesides.session.manager import SessionListener, SessionManager

__all__ = [
    "SessionListener",
    "SessionManager",
]
