"""
Session Store

Maps opaque session tokens to users. SessionTokenAuthenticator consults it
on a session-cache miss.
"""

import secrets

from coverline.application.api.middleware.authentication import AuthenticatedUser


class InMemorySessionStore:
    """Process-local session table for local runs and tests."""

    def __init__(self):
        self._sessions: dict[str, AuthenticatedUser] = {}

    def create_session(self, user: AuthenticatedUser, token: str | None = None) -> str:
        """Register a session and return its token."""
        token = token or secrets.token_urlsafe(32)
        self._sessions[token] = user
        return token

    async def get_session(self, token: str) -> AuthenticatedUser | None:
        return self._sessions.get(token)

    def revoke(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)
