"""OAuth2 token grants against Xibo CMS.

Xibo installations expose the token endpoint under different paths
depending on version and reverse-proxy setup, and differ in how they expect
the client to authenticate. Each grant therefore walks an ordered list of
candidate endpoints (and client-authentication styles) until one answers
with an access token:

1. password            username + password + client credentials
2. authorization_code  code pasted back from a browser authorization
3. client_credentials  application-level token, no human identity
4. refresh_token       exchange of a stored refresh token

A failed candidate is recorded and skipped; only total exhaustion is
reported to the caller, as :class:`AuthExhausted`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from .errors import (
    AuthError,
    AuthExhausted,
    BackendUnreachable,
    CredentialInvalid,
    EndpointAttempt,
    ProtocolMismatch,
    RefreshFailed,
)
from .tokens import ClientCredentials, TokenGrant

logger = logging.getLogger(__name__)

# Candidate token endpoints, tried in order
TOKEN_ENDPOINTS: tuple[str, ...] = (
    "/api/authorize/access_token",
    "/api/oauth/token",
    "/api/auth/access_token",
    "/api/oauth/access_token",
    "/authorize/access_token",
)

# Client-authentication styles, tried in order for each endpoint.
# "body" sends client_id/client_secret as form fields, "basic" as HTTP Basic auth.
CLIENT_AUTH_STYLES: tuple[str, ...] = ("body", "basic")

# Browser authorization endpoint for the authorization_code grant
AUTHORIZE_PATH = "/api/authorize"
DEFAULT_REDIRECT_URI = "http://localhost:3000/callback"
DEFAULT_SCOPE = "all"

# Timeout for credential exchanges (seconds)
TOKEN_TIMEOUT = 10.0

# OAuth error codes that mean the presented credentials are wrong
_CREDENTIAL_ERRORS = {"invalid_client", "invalid_grant", "unauthorized_client", "access_denied"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    """Extract the OAuth error code and a safe message from an error response.

    Only the ``error`` and ``error_description`` fields are used; the raw
    body may echo tokens or secrets and is never included.
    """
    try:
        data = response.json()
    except ValueError:
        return "", f"HTTP {response.status_code}"

    if not isinstance(data, dict):
        return "", f"HTTP {response.status_code}"

    code = data.get("error") or ""
    if isinstance(code, dict):
        # Xibo wraps API errors as {"error": {"message": ..., "code": ...}}
        message = str(code.get("message", ""))
        code = str(code.get("code", ""))
    else:
        code = str(code)
        message = str(data.get("error_description") or data.get("message") or "")

    detail = f"HTTP {response.status_code}"
    if code or message:
        detail += f": {code} - {message}".rstrip(" -")
    return code, detail


class GrantFlowAuthenticator:
    """Acquires OAuth2 tokens by trying candidate endpoints in order.

    Usage:
        grant_flow = GrantFlowAuthenticator(
            "https://cms.example.com",
            ClientCredentials("client_id", "client_secret"),
        )
        grant = grant_flow.password_grant("alice", "secret")
        print(grant.access_token)
    """

    def __init__(
        self,
        base_url: str,
        client: ClientCredentials,
        http_client: httpx.Client | None = None,
        token_endpoints: tuple[str, ...] = TOKEN_ENDPOINTS,
        client_auth_styles: tuple[str, ...] = CLIENT_AUTH_STYLES,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        timeout: float = TOKEN_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the authenticator.

        Args:
            base_url: CMS base URL (trailing slash ignored)
            client: OAuth client credentials
            http_client: Optional HTTP client; one is created if omitted
            token_endpoints: Candidate token endpoint paths, in priority order
            client_auth_styles: Client-authentication styles, in priority order
            redirect_uri: Redirect URI registered for the authorization_code grant
            timeout: Per-request timeout in seconds
            clock: Wall-clock source for token issue times
        """
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.token_endpoints = token_endpoints
        self.client_auth_styles = client_auth_styles
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._clock = clock
        self._http = http_client or httpx.Client(timeout=timeout)
        self._owns_http = http_client is None

    def close(self) -> None:
        """Close the HTTP client if this authenticator created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "GrantFlowAuthenticator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _post_token(self, endpoint: str, fields: dict[str, str], style: str, grant_type: str) -> TokenGrant:
        """POST one token request and classify the outcome.

        Raises:
            BackendUnreachable: On network failure, timeout, or 5xx
            CredentialInvalid: When the backend rejects the credentials
            ProtocolMismatch: On a missing endpoint or unrecognized response
        """
        data = dict(fields)
        auth: tuple[str, str] | None = None
        if style == "basic":
            auth = (self.client.client_id, self.client.client_secret or "")
        else:
            data["client_id"] = self.client.client_id
            if self.client.is_confidential():
                data["client_secret"] = self.client.client_secret  # type: ignore

        try:
            response = self._http.post(
                f"{self.base_url}{endpoint}",
                data=data,
                auth=auth,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise BackendUnreachable(f"Timed out after {self.timeout:g}s") from e
        except httpx.RequestError as e:
            raise BackendUnreachable(f"Network error: {e}") from e

        status = response.status_code

        if 200 <= status < 300:
            try:
                body = response.json()
            except ValueError as e:
                raise ProtocolMismatch(f"HTTP {status} with non-JSON body", status_code=status) from e
            return TokenGrant.from_token_response(
                body, grant_type=grant_type, endpoint=endpoint, now=self._clock()
            )

        code, detail = _error_detail(response)

        if status in (404, 405):
            raise ProtocolMismatch(f"Endpoint not available ({detail})", status_code=status)
        if status >= 500:
            raise BackendUnreachable(f"Server error ({detail})", status_code=status)
        if status in (401, 403) or code in _CREDENTIAL_ERRORS:
            raise CredentialInvalid(f"Credentials rejected ({detail})", status_code=status)
        raise ProtocolMismatch(f"Unexpected response ({detail})", status_code=status)

    def _exchange(self, grant_type: str, fields: dict[str, str]) -> TokenGrant:
        """Run one grant across all candidate endpoints.

        Raises:
            AuthExhausted: If no endpoint produced a token
        """
        attempts: list[EndpointAttempt] = []
        request_fields = {"grant_type": grant_type, **fields}

        for endpoint in self.token_endpoints:
            for style in self.client_auth_styles:
                if style == "basic" and not self.client.is_confidential():
                    continue

                logger.debug(f"Trying {grant_type} grant at {endpoint} ({style} client auth)")
                try:
                    grant = self._post_token(endpoint, request_fields, style, grant_type)
                except AuthError as e:
                    attempts.append(EndpointAttempt.from_error(endpoint, grant_type, e))
                    logger.debug(f"{grant_type} grant failed at {endpoint} ({style}): {e}")
                    # Only a credential rejection is worth retrying with another client-auth style
                    if not isinstance(e, CredentialInvalid):
                        break
                    continue

                logger.info(f"Obtained token via {grant_type} grant at {endpoint}")
                return grant

        raise AuthExhausted(f"All token endpoints failed for {grant_type} grant", attempts)

    def password_grant(self, username: str, password: str, scope: str | None = None) -> TokenGrant:
        """Exchange a username and password for tokens."""
        fields = {"username": username, "password": password}
        if scope:
            fields["scope"] = scope
        return self._exchange("password", fields)

    def authorization_code_grant(self, code: str, redirect_uri: str | None = None) -> TokenGrant:
        """Exchange an authorization code obtained through the browser."""
        return self._exchange(
            "authorization_code",
            {"code": code, "redirect_uri": redirect_uri or self.redirect_uri},
        )

    def client_credentials_grant(self, scope: str | None = None) -> TokenGrant:
        """Obtain an application-level token."""
        fields = {"scope": scope} if scope else {}
        return self._exchange("client_credentials", fields)

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            RefreshFailed: If every endpoint rejected the refresh
        """
        try:
            return self._exchange("refresh_token", {"refresh_token": refresh_token})
        except AuthExhausted as e:
            raise RefreshFailed(e.summary) from e

    def acquire(
        self,
        username: str | None = None,
        password: str | None = None,
        code: str | None = None,
        include_client_credentials: bool = True,
    ) -> TokenGrant:
        """Try every applicable grant in priority order.

        Args:
            username: Login name for the password grant
            password: Password for the password grant
            code: Authorization code for the authorization_code grant
            include_client_credentials: Also try the client_credentials grant

        Returns:
            Tokens from the first grant that succeeded

        Raises:
            AuthExhausted: With every attempted endpoint, if all grants failed
        """
        strategies: list[tuple[str, Callable[[], TokenGrant]]] = []
        if username and password:
            strategies.append(("password", lambda: self.password_grant(username, password)))
        if code:
            strategies.append(("authorization_code", lambda: self.authorization_code_grant(code)))
        if include_client_credentials:
            strategies.append(("client_credentials", self.client_credentials_grant))

        if not strategies:
            raise AuthExhausted("No grant-flow strategy is applicable with the given inputs")

        attempts: list[EndpointAttempt] = []
        for name, run in strategies:
            try:
                return run()
            except AuthExhausted as e:
                logger.debug(f"{name} grant exhausted after {len(e.attempts)} attempts")
                attempts.extend(e.attempts)

        raise AuthExhausted("All grant-flow strategies failed", attempts)

    def authorization_url(self, state: str | None = None, scope: str = DEFAULT_SCOPE) -> str:
        """Build the browser URL that yields an authorization code.

        Args:
            state: Optional opaque state echoed back with the code
            scope: Scope to request

        Returns:
            Complete authorization URL
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": scope,
        }
        if state:
            params["state"] = state
        return f"{self.base_url}{AUTHORIZE_PATH}?{urlencode(params)}"
