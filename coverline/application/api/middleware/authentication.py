"""
Authentication - Stage 2 of the API pipeline

Resolves the caller's identity and subscription tier from request
credentials. Two authenticators are provided:

- SessionTokenAuthenticator: bearer token (Authorization header) or the
  `session-token` cookie, looked up in a session store. Resolved sessions
  are cached in the MultiLevelCache so repeated requests skip the store.
- HeaderAuthenticator: trusts X-User-ID / X-User-Tier set by an upstream
  gateway. Only safe behind a proxy that strips these headers from clients.

Failures are logged as security events with the client IP and user agent.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from fastapi import Request
from slowapi.util import get_remote_address

from coverline.core.config.constants import HEADER_USER_ID, HEADER_USER_TIER, Stage, UserTier
from coverline.core.logging.logger import get_logger, log_stage
from coverline.infrastructure.cache.cache_manager import MultiLevelCache
from coverline.infrastructure.cache.memory_tier import CacheTTL

logger = get_logger(__name__)

SESSION_COOKIE = "session-token"


@dataclass(frozen=True)
class AuthenticatedUser:
    """The resolved caller. Immutable for the life of the request."""

    id: str
    tier: UserTier
    email: str | None = None
    subscription_expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tier": self.tier.value,
            "email": self.email,
            "subscription_expires_at": (
                self.subscription_expires_at.isoformat() if self.subscription_expires_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthenticatedUser":
        expires_at = data.get("subscription_expires_at")
        return cls(
            id=data["id"],
            tier=UserTier(data["tier"]),
            email=data.get("email"),
            subscription_expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


class Authenticator(Protocol):
    """Resolve a request to a user, or None when it carries no valid credentials."""

    async def resolve_identity(self, request: Request) -> AuthenticatedUser | None: ...


class SessionStore(Protocol):
    """Looks up the user behind a session token."""

    async def get_session(self, token: str) -> AuthenticatedUser | None: ...


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def log_security_event(request: Request, event_type: str, severity: str, **details: Any) -> None:
    """
    Log a security-relevant event.

    STAGE-S: Security events
    """
    log_stage(
        logger,
        Stage.SECURITY,
        "Security event",
        level="warning",
        event_type=event_type,
        severity=severity,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", "unknown"),
        path=request.url.path,
        **details,
    )


def extract_session_token(request: Request) -> str | None:
    """Bearer token from Authorization, else the session cookie."""
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE) or None


class SessionTokenAuthenticator:
    """
    Resolve bearer/cookie session tokens through a session store.

    STAGE-2.1: Session lookup

    Resolved sessions are cached under a hash of the token for
    `session_ttl` seconds in both cache tiers.
    """

    def __init__(self, session_store: SessionStore, cache: MultiLevelCache, session_ttl: float = 1800.0):
        self._store = session_store
        self._cache = cache
        self._ttl = CacheTTL(memory=session_ttl, remote=session_ttl)

    async def resolve_identity(self, request: Request) -> AuthenticatedUser | None:
        token = extract_session_token(request)
        if token is None:
            return None

        cache_key = MultiLevelCache.session_key(token)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return AuthenticatedUser.from_dict(cached)

        user = await self._store.get_session(token)
        if user is not None:
            await self._cache.set(cache_key, user.to_dict(), self._ttl)
        return user

    async def invalidate(self, token: str) -> None:
        """Forget a cached session (logout, revocation)."""
        await self._cache.delete(MultiLevelCache.session_key(token))


class HeaderAuthenticator:
    """
    Trust identity headers set by an upstream gateway.

    STAGE-2.1: Header identity

    X-User-ID is required; X-User-Tier defaults to free. An unknown tier
    value is treated as missing credentials.
    """

    async def resolve_identity(self, request: Request) -> AuthenticatedUser | None:
        user_id = request.headers.get(HEADER_USER_ID, "").strip()
        if not user_id:
            return None

        tier_value = request.headers.get(HEADER_USER_TIER, UserTier.FREE.value).strip().lower()
        try:
            tier = UserTier(tier_value)
        except ValueError:
            return None

        return AuthenticatedUser(id=user_id, tier=tier)
