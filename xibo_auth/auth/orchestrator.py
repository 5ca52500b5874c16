"""Credential orchestration for Xibo CMS.

This module provides the single entry point the rest of an application uses
to talk to the CMS. It decides which credential is in force, acquires and
renews it, injects it into requests, and answers capability questions.

Credential modes:
- CLIENT_CREDENTIALS: application token, held in memory only
- USER_TOKENS: per-user OAuth tokens, persisted encrypted in the store
- USER_SESSION: per-user form-login session, held in memory only

A user mode that can no longer produce a credential downgrades to
CLIENT_CREDENTIALS with a warning instead of failing the caller.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import httpx

from .codec import SecretCodec
from .errors import (
    AuthError,
    AuthenticationRejected,
    AuthExhausted,
    BackendUnreachable,
    CredentialInvalid,
    EndpointAttempt,
    MFARequired,
)
from .form_login import IDENTITY_PATHS, PROBE_TIMEOUT, FormLoginAuthenticator
from .grant import GrantFlowAuthenticator
from .identity import resolve
from .permissions import PermissionSet, available_operations, is_fallback_only, permission_summary
from .refresh import RefreshTask, refresh_interval
from .store import CredentialStore
from .tokens import SESSION_LIFETIME, ClientCredentials, TokenGrant

if TYPE_CHECKING:
    from ..config import AuthSettings

logger = logging.getLogger(__name__)

# Client-credentials tokens are renewed this long before the backend expiry (seconds)
CLIENT_TOKEN_MARGIN = 60

# Timeouts (seconds)
REQUEST_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 60.0

LIVENESS_PATH = "/api"
CLOCK_PATH = "/api/clock"
ABOUT_PATH = "/api/about"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"

    Args:
        td: The timedelta to format

    Returns:
        Human-readable string representation
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


class CredentialMode(Enum):
    """Which credential authorizes requests."""

    CLIENT_CREDENTIALS = "client_credentials"
    USER_TOKENS = "user_tokens"
    USER_SESSION = "user_session"


class OutcomeKind(Enum):
    """Result of a login attempt."""

    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    CREDENTIAL_INVALID = "credential_invalid"
    BACKEND_UNREACHABLE = "backend_unreachable"
    EXHAUSTED = "exhausted"


@dataclass
class AuthOutcome:
    """Discriminated result of :meth:`CredentialOrchestrator.login`.

    Attributes:
        kind: What happened
        method: Strategy that succeeded (e.g. "password", "form_login")
        owner_identity: Identity that is now authenticated
        permissions: Resolved permissions on success
        mfa_token: Challenge token when kind is MFA_REQUIRED
        attempts: Failed candidates, in the order tried
        message: Human-readable summary
    """

    kind: OutcomeKind
    method: str | None = None
    owner_identity: str | None = None
    permissions: PermissionSet | None = None
    mfa_token: str | None = None
    attempts: list[EndpointAttempt] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.AUTHENTICATED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary. Contains no secrets."""
        return {
            "kind": self.kind.value,
            "method": self.method,
            "owner_identity": self.owner_identity,
            "permissions": self.permissions.to_dict() if self.permissions else None,
            "mfa_required": self.kind is OutcomeKind.MFA_REQUIRED,
            "attempts": [str(attempt) for attempt in self.attempts],
            "message": self.message,
        }


def _classify_exhaustion(error: AuthExhausted) -> OutcomeKind:
    if error.only(BackendUnreachable):
        return OutcomeKind.BACKEND_UNREACHABLE
    if any(attempt.kind == CredentialInvalid.__name__ for attempt in error.attempts):
        return OutcomeKind.CREDENTIAL_INVALID
    return OutcomeKind.EXHAUSTED


@dataclass
class AuthStatus:
    """Authentication status for the configured CMS.

    Attributes:
        backend_url: CMS base URL
        mode: Credential mode in force
        authenticated: Whether a usable credential is held
        owner_identity: User the credential belongs to (None in client mode)
        level: Resolved privilege level, if known
        expires_at: When the credential expires (ISO format string)
        expires_in_human: Human-readable time until expiry
        has_refresh_token: Whether a refresh token is stored
        available_operations: Number of operations the identity may invoke
        error: Any error message
    """

    backend_url: str
    mode: str
    authenticated: bool = False
    owner_identity: str | None = None
    level: str | None = None
    expires_at: str | None = None
    expires_in_human: str | None = None
    has_refresh_token: bool = False
    available_operations: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "backend_url": self.backend_url,
            "mode": self.mode,
            "authenticated": self.authenticated,
            "owner_identity": self.owner_identity,
            "level": self.level,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "has_refresh_token": self.has_refresh_token,
            "available_operations": self.available_operations,
            "error": self.error,
        }


class CredentialOrchestrator:
    """Single owner of the active credential for one CMS.

    Usage:
        orchestrator = CredentialOrchestrator.from_settings(settings, passphrase)
        orchestrator.start()
        outcome = orchestrator.login("alice", "secret")
        response = orchestrator.request("GET", "/api/display")
    """

    def __init__(
        self,
        base_url: str,
        client: ClientCredentials,
        store: CredentialStore,
        http_client: httpx.Client | None = None,
        grant_flow: GrantFlowAuthenticator | None = None,
        username: str | None = None,
        password: str | None = None,
        auto_login: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the orchestrator.

        Args:
            base_url: CMS base URL
            client: OAuth client credentials
            store: Encrypted credential store
            http_client: Shared HTTP client; one is created if omitted
            grant_flow: Grant-flow authenticator; built from ``client`` if omitted
            username: Default login name
            password: Default password
            auto_login: Log in with the default credentials on start() when
                no stored record is usable
            clock: Wall-clock source returning aware UTC datetimes
        """
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.store = store
        self.username = username
        self.password = password
        self.auto_login = auto_login
        self._clock = clock
        self._http = http_client or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._owns_http = http_client is None
        self.grant_flow = grant_flow or GrantFlowAuthenticator(
            self.base_url, client, http_client=self._http, clock=clock
        )
        if self.store.authenticator is None:
            self.store.authenticator = self.grant_flow

        self.mode = CredentialMode.CLIENT_CREDENTIALS
        self.owner_identity: str | None = None
        self.permissions: PermissionSet | None = None
        self._client_grant: TokenGrant | None = None
        self._client_expires_at: datetime | None = None
        self._form_login: FormLoginAuthenticator | None = None
        self._refresh_task: RefreshTask | None = None
        self._lock = threading.RLock()

    @classmethod
    def from_settings(
        cls,
        settings: "AuthSettings",
        passphrase: str,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "CredentialOrchestrator":
        """Build an orchestrator and its collaborators from settings.

        Args:
            settings: Loaded settings
            passphrase: Passphrase for sealing stored tokens
            http_client: Optional shared HTTP client
            clock: Wall-clock source
        """
        client = ClientCredentials(settings.client_id, settings.client_secret)
        store = CredentialStore(
            SecretCodec(passphrase),
            store_dir=Path(settings.token_dir) if settings.token_dir else None,
            owner_identity=settings.username,
            clock=clock,
        )
        return cls(
            settings.api_url,
            client,
            store,
            http_client=http_client,
            username=settings.username,
            password=settings.password,
            auto_login=settings.grant_type == "password",
            clock=clock,
        )

    def close(self) -> None:
        """Stop background work and release the HTTP client."""
        self.stop_background_refresh()
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "CredentialOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Lifecycle

    def _discover_owner(self) -> None:
        """Point the store at the newest stored record when no identity is configured."""
        if self.store.owner_identity is not None:
            return
        owner = self.store.latest_identity()
        if owner is not None:
            logger.info(f"No identity configured, using stored record for {owner}")
            self.store.owner_identity = owner

    def start(self) -> CredentialMode:
        """Adopt a persisted user credential if one is usable.

        Returns:
            The credential mode in force afterwards
        """
        with self._lock:
            self._discover_owner()
            record = self.store.load()
            if record is not None:
                token = self.store.get_valid_access_token()
                if token is not None:
                    self.mode = CredentialMode.USER_TOKENS
                    self.owner_identity = record.owner_identity
                    self.permissions = None
                    logger.info(f"Using stored tokens for {record.owner_identity}")
                    return self.mode
                logger.warning(
                    f"Stored tokens for {record.owner_identity} are expired and could not be refreshed"
                )

            if self.auto_login and self.username and self.password:
                outcome = self.login()
                if not outcome.ok:
                    logger.warning(f"Automatic login failed: {outcome.message}")

            return self.mode

    def login(
        self,
        username: str | None = None,
        password: str | None = None,
        code: str | None = None,
    ) -> AuthOutcome:
        """Authenticate a user, trying grant flows first and form login second.

        Form login also runs when the grant flow succeeded but the identity
        resolved to no more than the viewer baseline.

        Args:
            username: Login name; defaults to the configured one
            password: Password; defaults to the configured one
            code: Authorization code from the browser flow

        Returns:
            The outcome; expected failures never raise
        """
        username = username or self.username
        password = password or self.password
        attempts: list[EndpointAttempt] = []

        with self._lock:
            grant: TokenGrant | None = None
            try:
                grant = self.grant_flow.acquire(
                    username, password, code, include_client_credentials=False
                )
            except AuthExhausted as e:
                attempts.extend(e.attempts)
                logger.info(f"Grant flow exhausted: {e.summary}")

            if grant is not None:
                permissions = self._probe_permissions(grant.get_auth_header())
                if not (is_fallback_only(permissions) and username and password):
                    return self._adopt_grant(grant, username, permissions)
                logger.info("Grant identity has only baseline access, trying form login")

            if username and password:
                try:
                    session_outcome = self._form_login_attempt(username, password)
                except MFARequired as e:
                    if grant is not None:
                        logger.warning("Form login requires MFA, keeping the grant")
                        return self._adopt_grant(grant, username, permissions)
                    return AuthOutcome(
                        OutcomeKind.MFA_REQUIRED,
                        method="form_login",
                        owner_identity=username,
                        mfa_token=e.mfa_token,
                        attempts=attempts,
                        message=str(e),
                    )
                except AuthExhausted as e:
                    attempts.extend(e.attempts)
                else:
                    if grant is None or not is_fallback_only(session_outcome.permissions or PermissionSet()):
                        session_outcome.attempts = attempts
                        return session_outcome
                    logger.info("Form login gave no more access than the grant, keeping the grant")

            if grant is not None:
                return self._adopt_grant(grant, username, permissions)

        exhausted = AuthExhausted("All authentication strategies failed", attempts)
        kind = _classify_exhaustion(exhausted)
        logger.warning(f"Login failed ({kind.value}) after {len(attempts)} attempts")
        return AuthOutcome(kind, owner_identity=username, attempts=attempts, message=exhausted.summary)

    def _adopt_grant(
        self, grant: TokenGrant, username: str | None, permissions: PermissionSet
    ) -> AuthOutcome:
        owner = username or self.username or self.client.client_id
        self.store.save(self.store.seal(owner, self.base_url, grant))
        self._drop_form_session()
        self.mode = CredentialMode.USER_TOKENS
        self.owner_identity = owner
        self.permissions = permissions
        logger.info(f"Authenticated {owner} via {grant.grant_type} grant ({permissions.level.label})")
        return AuthOutcome(
            OutcomeKind.AUTHENTICATED,
            method=grant.grant_type,
            owner_identity=owner,
            permissions=permissions,
            message=f"Authenticated via {grant.grant_type} grant",
        )

    def _form_login_attempt(self, username: str, password: str) -> AuthOutcome:
        """Run form login and adopt the session on success.

        Raises:
            MFARequired: On a second-factor challenge
            AuthExhausted: If form login failed
        """
        form_login = FormLoginAuthenticator(
            self.base_url, username, password, http_client=self._http, clock=self._clock
        )
        session = form_login.authenticate()
        self._drop_form_session()
        self._form_login = form_login
        self.mode = CredentialMode.USER_SESSION
        self.owner_identity = session.username
        self.permissions = session.permissions or PermissionSet()
        return AuthOutcome(
            OutcomeKind.AUTHENTICATED,
            method="form_login",
            owner_identity=session.username,
            permissions=self.permissions,
            message="Authenticated via form login",
        )

    def _drop_form_session(self) -> None:
        if self._form_login is not None:
            self._form_login.logout()
            self._form_login = None

    def _downgrade(self, reason: str) -> None:
        """Fall back to client credentials after losing the user credential."""
        if self.mode is CredentialMode.CLIENT_CREDENTIALS:
            return
        logger.warning(f"Falling back to client credentials: {reason}")
        self._drop_form_session()
        self.mode = CredentialMode.CLIENT_CREDENTIALS
        self.owner_identity = None
        self.permissions = None

    # Credentials

    def _client_token_valid(self) -> bool:
        if self._client_grant is None:
            return False
        if self._client_expires_at is None:
            return True
        return self._clock() < self._client_expires_at

    def _acquire_client_token(self) -> TokenGrant:
        """Obtain and cache an application token.

        Raises:
            AuthExhausted: If no endpoint issued a token
        """
        grant = self.grant_flow.client_credentials_grant()
        self._client_grant = grant
        self._client_expires_at = None
        if grant.expires_in is not None:
            self._client_expires_at = grant.issued_at + timedelta(
                seconds=grant.expires_in - CLIENT_TOKEN_MARGIN
            )
        return grant

    def ensure_authenticated(self) -> None:
        """Make sure a usable credential is in force.

        Raises:
            AuthExhausted: If even the client-credentials grant failed
        """
        with self._lock:
            if self.mode is CredentialMode.USER_TOKENS:
                if self.store.get_valid_access_token() is not None:
                    return
                self._downgrade("stored user tokens expired and could not be refreshed")

            elif self.mode is CredentialMode.USER_SESSION:
                if self._form_login is not None and self._form_login.is_session_valid():
                    return
                try:
                    if self._form_login is not None:
                        self._form_login.refresh_session()
                        return
                except AuthError as e:
                    logger.debug(f"Session renewal failed: {e}")
                self._downgrade("form-login session could not be renewed")

            if not self._client_token_valid():
                self._acquire_client_token()

    def get_valid_access_token(self) -> str | None:
        """Bearer token currently in force, or None in session mode or on failure."""
        try:
            self.ensure_authenticated()
        except AuthError as e:
            logger.warning(f"No credential available: {e}")
            return None

        with self._lock:
            if self.mode is CredentialMode.USER_TOKENS:
                return self.store.get_valid_access_token()
            if self.mode is CredentialMode.CLIENT_CREDENTIALS and self._client_grant:
                return self._client_grant.access_token
            return None

    def _force_reauth(self) -> None:
        """Renew the credential after the backend rejected it."""
        with self._lock:
            if self.mode is CredentialMode.USER_TOKENS:
                if self.store.refresh() is not None:
                    return
                self._downgrade("backend rejected user token and refresh failed")
            elif self.mode is CredentialMode.USER_SESSION:
                try:
                    if self._form_login is not None:
                        self._form_login.refresh_session()
                        return
                except AuthError as e:
                    logger.debug(f"Session re-login failed: {e}")
                self._downgrade("backend rejected form-login session")

            self._client_grant = None
            self._acquire_client_token()

    # Requests

    def _send(self, method: str, path: str, timeout: float, **kwargs: Any) -> httpx.Response:
        with self._lock:
            self.ensure_authenticated()
            form_login = self._form_login if self.mode is CredentialMode.USER_SESSION else None
            if self.mode is CredentialMode.USER_TOKENS:
                token = self.store.get_valid_access_token()
            else:
                token = self._client_grant.access_token if self._client_grant else None

        if form_login is not None:
            return form_login.request(method, path, timeout=timeout, **kwargs)

        headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return self._http.request(
                method, f"{self.base_url}{path}", headers=headers, timeout=timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise BackendUnreachable(f"Timed out after {timeout:g}s") from e
        except httpx.RequestError as e:
            raise BackendUnreachable(f"Network error: {e}") from e

    def request(
        self, method: str, path: str, timeout: float = REQUEST_TIMEOUT, **kwargs: Any
    ) -> httpx.Response:
        """Send an authorized request to the CMS.

        A 401 forces one re-authentication and one retry.

        Args:
            method: HTTP method
            path: Path relative to the CMS base URL (e.g. "/api/display")
            timeout: Request timeout in seconds
            **kwargs: Passed through to httpx

        Returns:
            The response (non-401 errors are returned, not raised)

        Raises:
            AuthenticationRejected: If the retry is also unauthorized
            BackendUnreachable: On network failure or timeout
            AuthExhausted: If no credential could be acquired
        """
        response = self._send(method, path, timeout, **kwargs)
        if response.status_code != 401:
            return response

        logger.info(f"{method} {path} unauthorized, re-authenticating")
        self._force_reauth()

        response = self._send(method, path, timeout, **kwargs)
        if response.status_code == 401:
            raise AuthenticationRejected(
                f"{method} {path} still unauthorized after re-authentication", status_code=401
            )
        return response

    def upload(
        self, path: str, file_path: Path | str, fields: dict[str, Any] | None = None
    ) -> httpx.Response:
        """Upload a file as multipart form data.

        Args:
            path: Upload endpoint (e.g. "/api/library")
            file_path: Local file to send as the "file" part
            fields: Additional form fields
        """
        file_path = Path(file_path)
        content = file_path.read_bytes()
        return self.request(
            "POST",
            path,
            timeout=UPLOAD_TIMEOUT,
            files={"file": (file_path.name, content)},
            data={key: str(value) for key, value in (fields or {}).items()},
        )

    def test_connection(self) -> bool:
        """Check the CMS is reachable and accepts the current credential."""
        try:
            health = self._http.get(f"{self.base_url}{LIVENESS_PATH}", timeout=PROBE_TIMEOUT)
            logger.debug(f"Liveness probe answered HTTP {health.status_code}")
        except httpx.RequestError as e:
            logger.debug(f"Liveness probe failed: {e}")

        try:
            response = self.request("GET", CLOCK_PATH)
        except AuthError as e:
            logger.warning(f"Connection test failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Connection test failed: HTTP {response.status_code}")
            return False
        return True

    def get_server_info(self) -> dict[str, Any]:
        """CMS version information, falling back to the server clock."""
        for path in (ABOUT_PATH, CLOCK_PATH):
            try:
                response = self.request("GET", path)
            except AuthError as e:
                logger.debug(f"{path} failed: {e}")
                continue
            if not response.is_success:
                continue
            try:
                data = response.json()
            except ValueError:
                data = response.text
            if path == ABOUT_PATH and isinstance(data, dict):
                return data
            return {"status": "online", "server_time": data}

        return {"status": "unknown", "error": "Could not retrieve server info"}

    # Permissions

    def _probe_permissions(self, auth_header: str) -> PermissionSet:
        """Resolve the permissions behind a bearer token from the first identity endpoint."""
        for path in IDENTITY_PATHS:
            try:
                response = self._http.get(
                    f"{self.base_url}{path}",
                    headers={"Authorization": auth_header, "Accept": "application/json"},
                    timeout=PROBE_TIMEOUT,
                )
            except httpx.RequestError as e:
                logger.debug(f"Identity probe {path} failed: {e}")
                continue
            if not response.is_success:
                continue
            try:
                payload = response.json()
            except ValueError:
                continue
            if isinstance(payload, dict):
                return resolve(payload)

        logger.debug("No identity endpoint answered, assuming viewer")
        return PermissionSet()

    def get_permissions(self) -> PermissionSet:
        """Permissions of the identity in force, probing them on first use."""
        with self._lock:
            if self.permissions is not None:
                return self.permissions

            token = self.get_valid_access_token()
            if token is None:
                self.permissions = PermissionSet()
            else:
                self.permissions = self._probe_permissions(f"Bearer {token}")
            return self.permissions

    def available_operations(self) -> frozenset[str]:
        """Operation names the identity in force may invoke."""
        return available_operations(self.get_permissions())

    # Status

    def _expiry(self) -> tuple[datetime | None, bool]:
        """(expires_at, has_refresh_token) of the credential in force."""
        if self.mode is CredentialMode.USER_TOKENS:
            record = self.store.load()
            if record is None:
                return None, False
            return record.expires_at, record.has_refresh_token()
        if self.mode is CredentialMode.USER_SESSION and self._form_login is not None:
            session = self._form_login.get_session()
            return (session.expires_at if session else None), False
        return self._client_expires_at, False

    def get_auth_status(self) -> AuthStatus:
        """Summarize the credential in force without contacting the backend."""
        with self._lock:
            status = AuthStatus(backend_url=self.base_url, mode=self.mode.value)
            expires_at, has_refresh = self._expiry()
            status.has_refresh_token = has_refresh
            status.owner_identity = self.owner_identity

            if self.mode is CredentialMode.USER_TOKENS:
                record = self.store.load()
                status.authenticated = record is not None and not self.store.is_expired(record)
                if record is not None and not status.authenticated:
                    status.error = "Access token expired"
            elif self.mode is CredentialMode.USER_SESSION:
                status.authenticated = self._form_login is not None and self._form_login.is_session_valid()
            else:
                status.authenticated = self._client_token_valid()

            if expires_at is not None:
                status.expires_at = expires_at.isoformat()
                status.expires_in_human = _format_timedelta(expires_at - self._clock())

            if self.permissions is not None:
                summary = permission_summary(self.permissions)
                status.level = summary["level"]
                status.available_operations = summary["available_operations"]

            return status

    # Background refresh

    def refresh_now(self) -> bool:
        """Renew the credential in force. Used by the background task."""
        with self._lock:
            if self.mode is CredentialMode.USER_TOKENS:
                return self.store.refresh() is not None
            if self.mode is CredentialMode.USER_SESSION:
                if self._form_login is None:
                    return False
                self._form_login.refresh_session()
                return True
            self._acquire_client_token()
            return True

    def refresh_interval(self) -> float:
        """Seconds until the credential in force should be renewed."""
        with self._lock:
            if self.mode is CredentialMode.USER_SESSION:
                return refresh_interval(SESSION_LIFETIME)

            expires_at, _ = self._expiry()
            if expires_at is None:
                return refresh_interval(SESSION_LIFETIME)
            return refresh_interval(expires_at - self._clock())

    def _on_refresh_failure(self, error: Exception | None) -> None:
        with self._lock:
            self._client_grant = None
            self._client_expires_at = None
            self._downgrade(f"background refresh failed ({error or 'no credential returned'})")

    def start_background_refresh(self) -> RefreshTask:
        """Start renewing the credential on a background thread."""
        with self._lock:
            if self._refresh_task is None:
                self._refresh_task = RefreshTask(
                    self.refresh_now, self.refresh_interval, on_failure=self._on_refresh_failure
                )
            self._refresh_task.start()
            return self._refresh_task

    def stop_background_refresh(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.stop()
            self._refresh_task = None

    # Logout

    def logout(self) -> bool:
        """Forget every user credential and return to client-credentials mode.

        Returns:
            True if a stored record was deleted
        """
        self.stop_background_refresh()
        with self._lock:
            if self.owner_identity is None:
                self._discover_owner()
            deleted = self.store.logout(self.owner_identity)
            self._drop_form_session()
            self.mode = CredentialMode.CLIENT_CREDENTIALS
            self.owner_identity = None
            self.permissions = None
            self._client_grant = None
            self._client_expires_at = None
            logger.info("Logged out")
            return deleted
