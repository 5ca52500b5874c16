"""Credential data structures.

- TokenGrant: a parsed token-endpoint response (plaintext, never persisted)
- CredentialRecord: the persisted, sealed form of a user's tokens
- Session: an in-memory form-login session
- ClientCredentials: the application's OAuth client id/secret
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .codec import Sealed
from .errors import ProtocolMismatch

if TYPE_CHECKING:
    from .permissions import PermissionSet

logger = logging.getLogger(__name__)

# Default validity of a form-login session
SESSION_LIFETIME = timedelta(hours=8)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch-milliseconds number into a UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return _aware(datetime.fromisoformat(str(value)))


@dataclass
class ClientCredentials:
    """OAuth client credentials registered for this application in the CMS."""

    client_id: str
    client_secret: str | None = None

    def is_confidential(self) -> bool:
        """Check if this is a confidential client (has a secret)."""
        return self.client_secret is not None and len(self.client_secret) > 0


@dataclass
class TokenGrant:
    """Tokens returned by a successful grant.

    Attributes:
        access_token: The access token string
        token_type: Token type (typically "Bearer")
        refresh_token: Optional refresh token
        expires_in: Lifetime in seconds, if the backend reported one
        scope: Granted scopes
        grant_type: Grant that produced these tokens
        endpoint: Token endpoint that answered
        issued_at: When the response was received (UTC)
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    grant_type: str | None = None
    endpoint: str | None = None
    issued_at: datetime = field(default_factory=_utcnow)

    @property
    def expires_at(self) -> datetime | None:
        """Absolute expiry derived from ``expires_in``."""
        if self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    @classmethod
    def from_token_response(
        cls,
        response: Any,
        grant_type: str | None = None,
        endpoint: str | None = None,
        now: datetime | None = None,
    ) -> "TokenGrant":
        """Create a TokenGrant from a token endpoint JSON body.

        Raises:
            ProtocolMismatch: If the body is not an object carrying an access token
        """
        if not isinstance(response, dict):
            raise ProtocolMismatch("Token response is not a JSON object")

        access_token = response.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ProtocolMismatch("Token response has no access_token")

        expires_in = None
        if response.get("expires_in") is not None:
            try:
                expires_in = int(response["expires_in"])
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric expires_in: {response['expires_in']!r}")

        return cls(
            access_token=access_token,
            token_type=response.get("token_type") or "Bearer",
            refresh_token=response.get("refresh_token") or None,
            expires_in=expires_in,
            scope=response.get("scope"),
            grant_type=grant_type,
            endpoint=endpoint,
            issued_at=now or _utcnow(),
        )

    def get_auth_header(self) -> str:
        """Authorization header value for this token."""
        return f"Bearer {self.access_token}"


@dataclass
class CredentialRecord:
    """Persisted tokens for one identity.

    Secrets are only ever held sealed. ``expires_at is None`` means the
    record is never trusted silently and is always treated as expired.

    Attributes:
        access_token: Sealed access token
        owner_identity: Username the tokens belong to
        backend_url: CMS base URL the tokens were issued by
        refresh_token: Sealed refresh token, if any
        expires_at: Absolute access-token expiry (UTC)
        created_at: When the record was first created (UTC)
    """

    access_token: Sealed
    owner_identity: str
    backend_url: str
    refresh_token: Sealed | None = None
    expires_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def has_refresh_token(self) -> bool:
        """Check if this record carries a refresh token."""
        return self.refresh_token is not None

    def with_tokens(
        self,
        access_token: Sealed,
        refresh_token: Sealed | None,
        expires_at: datetime | None,
    ) -> "CredentialRecord":
        """Copy with new tokens, keeping identity and creation time.

        A ``None`` refresh token keeps the current one (backends that do not
        rotate refresh tokens omit it from refresh responses).
        """
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token if refresh_token is not None else self.refresh_token,
            expires_at=expires_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage. Contains only sealed secrets."""
        return {
            "access_token": self.access_token.to_dict(),
            "refresh_token": self.refresh_token.to_dict() if self.refresh_token else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "username": self.owner_identity,
            "xibo_url": self.backend_url,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialRecord":
        """Deserialize a stored record.

        ``expires_at`` may be an ISO string or epoch milliseconds.
        """
        refresh = data.get("refresh_token")
        created_at = _parse_timestamp(data.get("created_at")) or _utcnow()
        return cls(
            access_token=Sealed.from_dict(data["access_token"]),
            owner_identity=data["username"],
            backend_url=data["xibo_url"],
            refresh_token=Sealed.from_dict(refresh) if refresh else None,
            expires_at=_parse_timestamp(data.get("expires_at")),
            created_at=created_at,
        )


@dataclass
class Session:
    """An authenticated form-login session. Never persisted.

    Attributes:
        session_id: Session identifier (cookie value or backend-issued id)
        user_id: Backend user id (0 until the identity probe fills it in)
        username: Login name
        expires_at: Local validity deadline (UTC)
        csrf_token: Anti-forgery token to echo on requests
        cookie_name: Cookie the session id is sent as
        permissions: Resolved permissions, once probed
    """

    session_id: str
    user_id: int
    username: str
    expires_at: datetime
    csrf_token: str | None = None
    cookie_name: str = "PHPSESSID"
    permissions: "PermissionSet | None" = None

    def is_valid(self, now: datetime | None = None) -> bool:
        """Check the session has not passed its validity deadline."""
        return _aware(self.expires_at) > (now or _utcnow())

    def extend(self, now: datetime | None = None, lifetime: timedelta = SESSION_LIFETIME) -> None:
        """Push the validity deadline out after a successful keep-alive."""
        self.expires_at = (now or _utcnow()) + lifetime
