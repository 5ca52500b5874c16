"""Error taxonomy for Xibo authentication.

Hierarchy::

    AuthError
    +-- CredentialInvalid       bad username/password/client secret
    +-- BackendUnreachable      network failure or timeout
    +-- ProtocolMismatch        2xx response with an unrecognized shape
    +-- TokenExpired            local clock says the token is stale
    +-- RefreshFailed           refresh token rejected
    +-- MFARequired             backend answered with a second-factor challenge
    +-- AuthExhausted           every candidate endpoint/strategy failed
    +-- DecryptFailure          sealed secret cannot be opened
    +-- AuthenticationRejected  request still unauthorized after re-auth
    +-- ConfigError             missing or malformed settings

Authenticators raise the endpoint-level kinds internally, record them as
:class:`EndpointAttempt` entries, and only surface :class:`AuthExhausted` or
:class:`MFARequired` to their callers.
"""

from dataclasses import dataclass


class AuthError(Exception):
    """Base class for all authentication errors.

    Attributes:
        status_code: HTTP status that triggered the error, if any
    """

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialInvalid(AuthError):
    """Username, password, or client secret was rejected by the backend."""

    pass


class BackendUnreachable(AuthError):
    """The backend could not be reached (connection error or timeout)."""

    pass


class ProtocolMismatch(AuthError):
    """The backend answered successfully but in an unrecognized format."""

    pass


class TokenExpired(AuthError):
    """The stored access token is past (or within the margin of) expiry."""

    pass


class RefreshFailed(AuthError):
    """The refresh-token exchange was rejected or could not be completed."""

    pass


class DecryptFailure(AuthError):
    """A sealed secret could not be decrypted.

    Raised on auth-tag mismatch, malformed hex, or a wrong passphrase.
    Callers treat it exactly like a missing credential.
    """

    pass


class AuthenticationRejected(AuthError):
    """A request was still unauthorized after one forced re-authentication."""

    pass


class ConfigError(AuthError):
    """Configuration is missing or malformed."""

    pass


class MFARequired(AuthError):
    """The backend issued a multi-factor challenge.

    The challenge is reported, never completed.

    Attributes:
        mfa_token: Challenge token returned by the backend, if any
        endpoint: Submission endpoint that issued the challenge
    """

    def __init__(self, mfa_token: str | None = None, endpoint: str | None = None):
        super().__init__("MFA authentication required - not supported by this client", status_code=202)
        self.mfa_token = mfa_token
        self.endpoint = endpoint


@dataclass(frozen=True)
class EndpointAttempt:
    """Diagnostic record of one failed candidate endpoint.

    Attributes:
        endpoint: Relative path that was tried
        strategy: Grant type or login step (e.g. "password", "form_login")
        kind: Error class name (e.g. "BackendUnreachable")
        reason: Short human-readable failure reason
    """

    endpoint: str
    strategy: str
    kind: str
    reason: str

    def __str__(self) -> str:
        return f"{self.strategy} {self.endpoint}: {self.kind} ({self.reason})"

    @classmethod
    def from_error(cls, endpoint: str, strategy: str, error: AuthError) -> "EndpointAttempt":
        """Build an attempt record from a classified error."""
        return cls(endpoint=endpoint, strategy=strategy, kind=type(error).__name__, reason=str(error))


class AuthExhausted(AuthError):
    """Every candidate endpoint and strategy failed.

    Attributes:
        attempts: One :class:`EndpointAttempt` per failed candidate, in the
            order they were tried
    """

    def __init__(self, message: str, attempts: list[EndpointAttempt] | None = None):
        self.attempts = list(attempts or [])
        detail = ""
        if self.attempts:
            detail = "\n" + "\n".join(f"  - {attempt}" for attempt in self.attempts)
        super().__init__(f"{message}{detail}")
        self.summary = message

    @property
    def endpoints(self) -> list[str]:
        """Endpoints that were attempted, in order, without duplicates."""
        seen: list[str] = []
        for attempt in self.attempts:
            if attempt.endpoint not in seen:
                seen.append(attempt.endpoint)
        return seen

    def only(self, *kinds: type[AuthError]) -> bool:
        """Check whether every recorded attempt failed with one of ``kinds``."""
        names = {kind.__name__ for kind in kinds}
        return bool(self.attempts) and all(a.kind in names for a in self.attempts)
