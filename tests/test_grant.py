"""Tests for OAuth2 grant flows."""

import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import BASE_URL, form_fields
from xibo_auth.auth.errors import (
    AuthExhausted,
    BackendUnreachable,
    CredentialInvalid,
    ProtocolMismatch,
    RefreshFailed,
)
from xibo_auth.auth.grant import TOKEN_ENDPOINTS, GrantFlowAuthenticator
from xibo_auth.auth.tokens import ClientCredentials

CLIENT = ClientCredentials("client-id", "client-secret")


@pytest.fixture
def grant_flow(http_client, clock):
    return GrantFlowAuthenticator(BASE_URL, CLIENT, http_client=http_client, clock=clock)


class TestPasswordGrant:
    """Tests for the password grant."""

    def test_first_endpoint_success(self, grant_flow, router, clock):
        """Test a token from the first endpoint is returned with its expiry."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "abc", "expires_in": 3600})

        grant = grant_flow.password_grant("alice", "pw")

        assert grant.access_token == "abc"
        assert grant.grant_type == "password"
        assert grant.endpoint == "/api/authorize/access_token"
        assert grant.expires_at is not None
        assert (grant.expires_at - clock()).total_seconds() == 3600

    def test_request_is_form_encoded(self, grant_flow, router):
        """Test the request carries grant fields and client credentials in the body."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "abc"})

        grant_flow.password_grant("alice", "pw")

        request = router.requests[0]
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        fields = form_fields(request)
        assert fields == {
            "grant_type": "password",
            "username": "alice",
            "password": "pw",
            "client_id": "client-id",
            "client_secret": "client-secret",
        }

    def test_falls_through_missing_endpoints(self, grant_flow, router):
        """Test 404 endpoints are skipped in order until one answers."""
        router.add("POST", "/api/oauth/access_token", json={"access_token": "late"})

        grant = grant_flow.password_grant("alice", "pw")

        assert grant.access_token == "late"
        assert router.paths("POST") == [
            "/api/authorize/access_token",
            "/api/oauth/token",
            "/api/auth/access_token",
            "/api/oauth/access_token",
        ]

    def test_missing_endpoint_not_retried_with_basic(self, grant_flow, router):
        """Test a 404 endpoint is tried once, not once per client-auth style."""
        with pytest.raises(AuthExhausted):
            grant_flow.password_grant("alice", "pw")
        assert router.paths("POST") == list(TOKEN_ENDPOINTS)

    def test_credential_rejection_retries_basic(self, grant_flow, router):
        """Test an invalid_client answer retries the endpoint with HTTP Basic."""

        def handler(request: httpx.Request) -> httpx.Response:
            if "authorization" in request.headers:
                return httpx.Response(200, json={"access_token": "basic-token"})
            return httpx.Response(401, json={"error": "invalid_client"})

        router.add_handler("POST", "/api/authorize/access_token", handler)

        grant = grant_flow.password_grant("alice", "pw")

        assert grant.access_token == "basic-token"
        basic = router.requests[1]
        expected = base64.b64encode(b"client-id:client-secret").decode()
        assert basic.headers["authorization"] == f"Basic {expected}"
        assert "client_secret" not in form_fields(basic)

    def test_success_without_token_continues(self, grant_flow, router):
        """Test a 2xx without access_token is recorded and the next endpoint tried."""
        router.add("POST", "/api/authorize/access_token", json={"status": "ok"})
        router.add("POST", "/api/oauth/token", json={"access_token": "second"})

        grant = grant_flow.password_grant("alice", "pw")
        assert grant.access_token == "second"

    def test_exhaustion_lists_attempts(self, grant_flow, router):
        """Test exhaustion reports every endpoint with a classified failure."""
        router.add("POST", "/api/authorize/access_token", 500)
        router.add("POST", "/api/oauth/token", 200, text="<html>login</html>")

        with pytest.raises(AuthExhausted) as exc_info:
            grant_flow.password_grant("alice", "pw")

        error = exc_info.value
        assert error.endpoints == list(TOKEN_ENDPOINTS)
        kinds = {a.endpoint: a.kind for a in error.attempts}
        assert kinds["/api/authorize/access_token"] == BackendUnreachable.__name__
        assert kinds["/api/oauth/token"] == ProtocolMismatch.__name__
        assert kinds["/api/auth/access_token"] == ProtocolMismatch.__name__

    def test_invalid_grant_is_credential_invalid(self, grant_flow, router):
        """Test a 400 invalid_grant is classified as a credential rejection."""
        router.add("POST", "/api/authorize/access_token", 400, json={"error": "invalid_grant", "error_description": "bad password"})

        with pytest.raises(AuthExhausted) as exc_info:
            grant_flow.password_grant("alice", "pw")

        first = exc_info.value.attempts[0]
        assert first.kind == CredentialInvalid.__name__
        assert "bad password" in first.reason

    def test_error_detail_omits_body(self, grant_flow, router):
        """Test only error fields, not the raw body, reach the attempt reason."""
        router.add("POST", "/api/authorize/access_token", 401, json={"error": "invalid_client", "echo": "pw-secret"})

        with pytest.raises(AuthExhausted) as exc_info:
            grant_flow.password_grant("alice", "pw-secret")

        assert "pw-secret" not in str(exc_info.value)

    def test_timeout_is_backend_unreachable(self, clock):
        """Test a timeout is classified as unreachable, never as bad credentials."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        grant_flow = GrantFlowAuthenticator(BASE_URL, CLIENT, http_client=client, clock=clock)

        with pytest.raises(AuthExhausted) as exc_info:
            grant_flow.password_grant("alice", "pw")

        assert exc_info.value.only(BackendUnreachable)


class TestOtherGrants:
    """Tests for client_credentials, authorization_code and refresh."""

    def test_client_credentials(self, grant_flow, router):
        """Test the client_credentials grant sends no user fields."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "app", "expires_in": 3600})

        grant = grant_flow.client_credentials_grant()

        assert grant.access_token == "app"
        fields = form_fields(router.requests[0])
        assert fields["grant_type"] == "client_credentials"
        assert "username" not in fields

    def test_authorization_code(self, grant_flow, router):
        """Test the code and redirect URI are sent."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "user"})

        grant_flow.authorization_code_grant("the-code")

        fields = form_fields(router.requests[0])
        assert fields["grant_type"] == "authorization_code"
        assert fields["code"] == "the-code"
        assert fields["redirect_uri"] == "http://localhost:3000/callback"

    def test_refresh(self, grant_flow, router):
        """Test a refresh exchange."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "new", "refresh_token": "r2"})

        grant = grant_flow.refresh("r1")

        assert grant.access_token == "new"
        assert grant.refresh_token == "r2"
        assert form_fields(router.requests[0])["refresh_token"] == "r1"

    def test_refresh_failure(self, grant_flow, router):
        """Test an exhausted refresh raises RefreshFailed."""
        with pytest.raises(RefreshFailed):
            grant_flow.refresh("r1")

    def test_public_client_skips_basic(self, http_client, router, clock):
        """Test a client without secret never uses Basic auth."""
        router.add("POST", "/api/authorize/access_token", 401, json={"error": "invalid_client"})
        grant_flow = GrantFlowAuthenticator(
            BASE_URL, ClientCredentials("client-id"), http_client=http_client, clock=clock
        )

        with pytest.raises(AuthExhausted):
            grant_flow.client_credentials_grant()

        assert all("authorization" not in r.headers for r in router.requests)
        assert "client_secret" not in form_fields(router.requests[0])


class TestAcquire:
    """Tests for acquire() strategy ordering."""

    def test_password_preferred(self, grant_flow, router):
        """Test the password grant runs first when credentials are given."""
        router.add("POST", "/api/authorize/access_token", json={"access_token": "abc"})

        grant = grant_flow.acquire("alice", "pw", code="c")
        assert grant.grant_type == "password"

    def test_falls_back_to_client_credentials(self, grant_flow, router):
        """Test client_credentials runs after the user grants fail."""

        def handler(request: httpx.Request) -> httpx.Response:
            if form_fields(request)["grant_type"] == "client_credentials":
                return httpx.Response(200, json={"access_token": "app"})
            return httpx.Response(400, json={"error": "unsupported_grant_type"})

        router.add_handler("POST", "/api/authorize/access_token", handler)

        grant = grant_flow.acquire("alice", "pw")
        assert grant.grant_type == "client_credentials"

    def test_aggregates_attempts(self, grant_flow, router):
        """Test exhaustion carries the attempts of every strategy."""
        with pytest.raises(AuthExhausted) as exc_info:
            grant_flow.acquire("alice", "pw", code="c")

        strategies = {a.strategy for a in exc_info.value.attempts}
        assert strategies == {"password", "authorization_code", "client_credentials"}
        assert len(exc_info.value.attempts) == 3 * len(TOKEN_ENDPOINTS)

    def test_nothing_applicable(self, grant_flow):
        """Test acquire without inputs or client credentials is exhausted immediately."""
        with pytest.raises(AuthExhausted):
            grant_flow.acquire(include_client_credentials=False)


class TestAuthorizationUrl:
    """Tests for authorization_url()."""

    def test_url(self, grant_flow):
        """Test the browser URL parameters."""
        url = grant_flow.authorization_url(state="xyz")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{BASE_URL}/api/authorize"
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["client-id"]
        assert params["redirect_uri"] == ["http://localhost:3000/callback"]
        assert params["scope"] == ["all"]
        assert params["state"] == ["xyz"]
