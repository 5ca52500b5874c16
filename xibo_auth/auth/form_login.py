"""Browser-style username/password login for Xibo CMS.

Used when no OAuth token endpoint will issue tokens. The login walks a
fixed sequence of states::

    FETCH_LOGIN_SURFACE -> EXTRACT_ANTI_FORGERY_TOKEN -> SUBMIT_CREDENTIALS
        -> CLASSIFY_RESPONSE -> AUTHENTICATED | MFA_CHALLENGE | REJECTED

Anti-forgery patterns, submission endpoints, and success shapes are ordered
data so new backend variants can be added without touching the flow. An MFA
challenge is reported as :class:`MFARequired` and never completed.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

import httpx

from .errors import (
    AuthError,
    AuthExhausted,
    BackendUnreachable,
    CredentialInvalid,
    EndpointAttempt,
    MFARequired,
    ProtocolMismatch,
    TokenExpired,
)
from .identity import extract_user_id, resolve
from .permissions import PermissionSet
from .tokens import SESSION_LIFETIME, Session

logger = logging.getLogger(__name__)

LOGIN_SURFACE_PATHS: tuple[str, ...] = ("/login", "/web/login", "/user/login", "/auth/login")
SUBMIT_PATHS: tuple[str, ...] = ("/login", "/api/login", "/api/session", "/web/login", "/user/login")
IDENTITY_PATHS: tuple[str, ...] = ("/api/user", "/api/user/me", "/api/users/me", "/user/me", "/me")
KEEPALIVE_PATH = "/api/user"
LOGOUT_PATH = "/logout"

SESSION_COOKIES: tuple[str, ...] = (
    "PHPSESSID",
    "JSESSIONID",
    "session_id",
    "xibo_session",
    "laravel_session",
)


def _input_pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        rf"""<input[^>]*name=["']{name}["'][^>]*value=["']([^"']+)["']""",
        re.IGNORECASE,
    )


# (name, pattern) pairs, first match wins
CSRF_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "meta",
        re.compile(r"""<meta[^>]*name=["']csrf-token["'][^>]*content=["']([^"']+)["']""", re.IGNORECASE),
    ),
    ("csrf_token", _input_pattern("csrf_token")),
    ("_token", _input_pattern("_token")),
    ("authenticity_token", _input_pattern("authenticity_token")),
    ("csrfmiddlewaretoken", _input_pattern("csrfmiddlewaretoken")),
    ("script", re.compile(r"""window\.csrfToken\s*=\s*['"]([^'"]+)['"]""", re.IGNORECASE)),
)

# Timeouts (seconds)
LOGIN_TIMEOUT = 30.0
PROBE_TIMEOUT = 5.0

_REDIRECT_STATUSES = {301, 302, 303, 307, 308}


class LoginState(Enum):
    """States of one form-login attempt."""

    FETCH_LOGIN_SURFACE = "fetch_login_surface"
    EXTRACT_ANTI_FORGERY_TOKEN = "extract_anti_forgery_token"
    SUBMIT_CREDENTIALS = "submit_credentials"
    CLASSIFY_RESPONSE = "classify_response"
    AUTHENTICATED = "authenticated"
    MFA_CHALLENGE = "mfa_challenge"
    REJECTED = "rejected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_csrf_token(html: str) -> str | None:
    """Find an anti-forgery token in a login page."""
    for name, pattern in CSRF_PATTERNS:
        match = pattern.search(html)
        if match:
            logger.debug(f"Found anti-forgery token via {name} pattern")
            return match.group(1)
    return None


def extract_session_cookie(response: httpx.Response) -> tuple[str, str] | None:
    """Find a known session cookie in the response's Set-Cookie headers.

    Returns:
        (cookie name, cookie value), or None
    """
    headers = response.headers.get_list("set-cookie")
    for name in SESSION_COOKIES:
        pattern = re.compile(rf"(?:^|[\s;,]){re.escape(name)}=([^;]+)", re.IGNORECASE)
        for header in headers:
            match = pattern.search(header)
            if match:
                return name, match.group(1)
    return None


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


@dataclass
class SubmitContext:
    """What a classification rule needs to build a session."""

    username: str
    csrf_token: str | None
    expires_at: datetime


SuccessRule = Callable[[httpx.Response, SubmitContext], Session | None]


def _new_session(
    ctx: SubmitContext,
    session_id: str | None,
    cookie: tuple[str, str] | None,
    user_id: int | None = None,
    username: str | None = None,
) -> Session:
    cookie_name = cookie[0] if cookie else SESSION_COOKIES[0]
    return Session(
        session_id=session_id or (cookie[1] if cookie else secrets.token_hex(32)),
        user_id=user_id or 0,
        username=username or ctx.username,
        expires_at=ctx.expires_at,
        csrf_token=ctx.csrf_token,
        cookie_name=cookie_name,
    )


def json_session(response: httpx.Response, ctx: SubmitContext) -> Session | None:
    """JSON body announcing success or carrying session data."""
    data = _json_body(response)
    if not isinstance(data, dict):
        return None
    if not any(data.get(key) for key in ("success", "authenticated", "sessionId", "user")):
        return None

    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    session_id = data.get("sessionId") or data.get("session_id")
    return _new_session(
        ctx,
        str(session_id) if session_id else None,
        extract_session_cookie(response),
        user_id=extract_user_id(data),
        username=data.get("username") or user.get("username"),
    )


def redirect_session(response: httpx.Response, ctx: SubmitContext) -> Session | None:
    """Redirect away from the login page."""
    if response.status_code not in _REDIRECT_STATUSES:
        return None
    location = response.headers.get("location", "")
    if not location or "/login" in location:
        return None
    return _new_session(ctx, None, extract_session_cookie(response))


def cookie_session(response: httpx.Response, ctx: SubmitContext) -> Session | None:
    """A known session cookie was issued."""
    cookie = extract_session_cookie(response)
    if cookie is None:
        return None
    return _new_session(ctx, cookie[1], cookie)


# Tried in order, first match wins
SUCCESS_RULES: tuple[SuccessRule, ...] = (json_session, redirect_session, cookie_session)


class FormLoginAuthenticator:
    """Establishes and maintains a cookie session through the login form.

    Usage:
        form_login = FormLoginAuthenticator("https://cms.example.com", "alice", "secret")
        session = form_login.authenticate()
        response = form_login.request("GET", "/api/display")
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        http_client: httpx.Client | None = None,
        login_paths: tuple[str, ...] = LOGIN_SURFACE_PATHS,
        submit_paths: tuple[str, ...] = SUBMIT_PATHS,
        identity_paths: tuple[str, ...] = IDENTITY_PATHS,
        success_rules: tuple[SuccessRule, ...] = SUCCESS_RULES,
        session_lifetime: timedelta = SESSION_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.login_paths = login_paths
        self.submit_paths = submit_paths
        self.identity_paths = identity_paths
        self.success_rules = success_rules
        self.session_lifetime = session_lifetime
        self._clock = clock
        self._http = http_client or httpx.Client(timeout=LOGIN_TIMEOUT)
        self._owns_http = http_client is None
        self._session: Session | None = None
        self.state = LoginState.FETCH_LOGIN_SURFACE

    def close(self) -> None:
        """Close the HTTP client if this authenticator created it."""
        if self._owns_http:
            self._http.close()

    # Login flow

    def _fetch_login_surface(self) -> str | None:
        """GET the first login page that answers.

        Returns:
            The page body, or None if no surface responded
        """
        for path in self.login_paths:
            try:
                response = self._http.get(
                    f"{self.base_url}{path}",
                    follow_redirects=True,
                    timeout=LOGIN_TIMEOUT,
                )
            except httpx.RequestError as e:
                logger.debug(f"Login surface {path} unreachable: {e}")
                continue
            if 200 <= response.status_code < 400:
                logger.debug(f"Using login surface {path}")
                return response.text
            logger.debug(f"Login surface {path} answered HTTP {response.status_code}")
        return None

    def _submit(self, path: str, csrf_token: str | None) -> httpx.Response:
        """POST the credentials to one submission endpoint.

        Raises:
            BackendUnreachable: On network failure or timeout
        """
        data = {"username": self.username, "password": self._password}
        headers = {"Accept": "application/json"}
        if csrf_token:
            data["csrf_token"] = csrf_token
            data["_token"] = csrf_token
            headers["X-CSRF-TOKEN"] = csrf_token

        try:
            return self._http.post(
                f"{self.base_url}{path}",
                data=data,
                headers=headers,
                follow_redirects=False,
                timeout=LOGIN_TIMEOUT,
            )
        except httpx.TimeoutException as e:
            raise BackendUnreachable(f"Timed out after {LOGIN_TIMEOUT:g}s") from e
        except httpx.RequestError as e:
            raise BackendUnreachable(f"Network error: {e}") from e

    def _classify(self, path: str, response: httpx.Response, ctx: SubmitContext) -> Session:
        """Turn a submission response into a session or a classified error.

        Raises:
            MFARequired: On a 202 challenge
            AuthError: Subclass describing why this endpoint failed
        """
        status = response.status_code

        if status == 202:
            data = _json_body(response)
            mfa_token = None
            if isinstance(data, dict):
                mfa_token = data.get("mfaToken") or data.get("token")
            raise MFARequired(mfa_token=mfa_token, endpoint=path)

        if status in (404, 405):
            raise ProtocolMismatch(f"Endpoint not available (HTTP {status})", status_code=status)
        if status >= 500:
            raise BackendUnreachable(f"Server error (HTTP {status})", status_code=status)
        if status >= 400:
            raise CredentialInvalid(f"Login rejected (HTTP {status})", status_code=status)

        for rule in self.success_rules:
            session = rule(response, ctx)
            if session is not None:
                logger.debug(f"Login at {path} recognized by {rule.__name__}")
                return session

        if status in _REDIRECT_STATUSES:
            raise CredentialInvalid("Redirected back to the login page", status_code=status)
        raise ProtocolMismatch(f"Login response not recognized (HTTP {status})", status_code=status)

    def authenticate(self) -> Session:
        """Log in and probe the identity's permissions.

        Returns:
            The established session

        Raises:
            MFARequired: If the backend issued a second-factor challenge
            AuthExhausted: If every submission endpoint failed
        """
        self.state = LoginState.FETCH_LOGIN_SURFACE
        html = self._fetch_login_surface()

        self.state = LoginState.EXTRACT_ANTI_FORGERY_TOKEN
        csrf_token = extract_csrf_token(html) if html else None
        if html is None:
            logger.debug("No login surface responded, continuing without anti-forgery token")

        attempts: list[EndpointAttempt] = []
        for path in self.submit_paths:
            self.state = LoginState.SUBMIT_CREDENTIALS
            ctx = SubmitContext(
                username=self.username,
                csrf_token=csrf_token,
                expires_at=self._clock() + self.session_lifetime,
            )
            try:
                response = self._submit(path, csrf_token)
                self.state = LoginState.CLASSIFY_RESPONSE
                session = self._classify(path, response, ctx)
            except MFARequired:
                self.state = LoginState.MFA_CHALLENGE
                logger.warning(f"Login at {path} requires multi-factor authentication")
                raise
            except AuthError as e:
                attempts.append(EndpointAttempt.from_error(path, "form_login", e))
                logger.debug(f"Form login failed at {path}: {e}")
                continue

            self.state = LoginState.AUTHENTICATED
            self._session = session
            self._probe_identity()
            logger.info(f"Form login succeeded for {session.username} at {path}")
            return session

        self.state = LoginState.REJECTED
        self._session = None
        raise AuthExhausted("All form-login endpoints failed", attempts)

    def _probe_identity(self) -> None:
        """Fill in the session's user id and permissions from the first identity endpoint."""
        session = self._session
        if session is None:
            return

        for path in self.identity_paths:
            try:
                response = self.request("GET", path, timeout=PROBE_TIMEOUT)
            except AuthError as e:
                logger.debug(f"Identity probe {path} failed: {e}")
                continue
            if not response.is_success:
                logger.debug(f"Identity probe {path} answered HTTP {response.status_code}")
                continue

            payload = _json_body(response)
            if not isinstance(payload, dict):
                continue

            session.permissions = resolve(payload)
            session.user_id = extract_user_id(payload) or session.user_id
            return

        logger.debug("No identity endpoint answered, assuming viewer")
        session.permissions = PermissionSet()

    # Session use

    def get_session(self) -> Session | None:
        return self._session

    def get_permissions(self) -> PermissionSet | None:
        return self._session.permissions if self._session else None

    def is_session_valid(self) -> bool:
        return self._session is not None and self._session.is_valid(self._clock())

    def request(self, method: str, path: str, timeout: float = LOGIN_TIMEOUT, **kwargs: Any) -> httpx.Response:
        """Send a request carrying the session cookie and anti-forgery header.

        Raises:
            TokenExpired: If there is no valid session
            BackendUnreachable: On network failure or timeout
        """
        session = self._session
        if session is None or not session.is_valid(self._clock()):
            raise TokenExpired("No valid form-login session")

        headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
        headers["Cookie"] = f"{session.cookie_name}={session.session_id}"
        if session.csrf_token:
            headers["X-CSRF-TOKEN"] = session.csrf_token

        try:
            return self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise BackendUnreachable(f"Timed out after {timeout:g}s") from e
        except httpx.RequestError as e:
            raise BackendUnreachable(f"Network error: {e}") from e

    def ping(self) -> bool:
        """Keep the session alive.

        Returns:
            True if the backend still accepts the session
        """
        try:
            response = self.request("GET", KEEPALIVE_PATH, timeout=PROBE_TIMEOUT)
        except AuthError as e:
            logger.debug(f"Session keep-alive failed: {e}")
            return False
        if not response.is_success:
            logger.debug(f"Session keep-alive answered HTTP {response.status_code}")
            return False

        if self._session is not None:
            self._session.extend(self._clock(), self.session_lifetime)
        return True

    def refresh_session(self) -> Session:
        """Extend the session, logging in again if the keep-alive fails.

        Raises:
            MFARequired: If re-login hits a second-factor challenge
            AuthExhausted: If re-login failed
        """
        if self.ping():
            logger.debug("Session extended by keep-alive")
            return self._session  # type: ignore[return-value]

        logger.info("Session keep-alive failed, logging in again")
        self._session = None
        return self.authenticate()

    def logout(self) -> None:
        """End the session. The backend logout is best-effort."""
        if self._session is None:
            return
        try:
            self.request("POST", LOGOUT_PATH, timeout=PROBE_TIMEOUT)
        except AuthError as e:
            logger.debug(f"Backend logout failed, clearing session anyway: {e}")
        self._session = None
        logger.info(f"Form-login session for {self.username} cleared")
