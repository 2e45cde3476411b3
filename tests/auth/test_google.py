"""Tests for the Google OAuth client and public key cache."""

import httpx
import pytest
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from advent_calendar.auth.google import GoogleOAuthClient, GooglePublicKeys, TokenExchangeError

from tests.helpers.fake_google import AUTH_URL, CERTS_URL, CLIENT_ID, CLIENT_SECRET, KEY_ID, signing_key


@pytest.fixture
def public_keys(fake_google, clock):
    return GooglePublicKeys(fake_google.client(), CERTS_URL, clock)


@pytest.fixture
def oauth_client(google_settings, fake_google):
    return GoogleOAuthClient(google_settings, fake_google.transport())


class TestGooglePublicKeys:
    """Certificate fetching and caching."""

    def test_loads_key_by_kid(self, public_keys):
        """Known kids resolve to public keys, unknown ones to None."""
        assert public_keys.get(KEY_ID) is not None
        assert public_keys.get("unknown") is None

    def test_caches_for_max_age(self, public_keys, fake_google, clock):
        """Certificates are reused until Cache-Control max-age runs out."""
        public_keys.get(KEY_ID)
        clock.advance(timedelta(seconds=3599))
        public_keys.get(KEY_ID)
        assert fake_google.cert_requests == 1

        clock.advance(timedelta(seconds=1))
        public_keys.get(KEY_ID)
        assert fake_google.cert_requests == 2

    def test_defaults_to_one_hour_without_max_age(self, public_keys, fake_google, clock):
        """Without Cache-Control the certificates are kept for an hour."""
        fake_google.certs_cache_control = None
        public_keys.get(KEY_ID)
        clock.advance(timedelta(minutes=59))
        public_keys.get(KEY_ID)
        assert fake_google.cert_requests == 1

    def test_unknown_kid_refreshes_at_most_once_a_minute(self, public_keys, fake_google, clock):
        """Rotated keys are picked up early, without hammering Google."""
        public_keys.get(KEY_ID)
        fake_google.certs = {"rotated": signing_key("rotated").certificate_pem}

        assert public_keys.get("rotated") is None
        assert fake_google.cert_requests == 1

        clock.advance(timedelta(minutes=1))
        assert public_keys.get("rotated") is not None
        assert fake_google.cert_requests == 2

    def test_rejects_non_object_response(self, public_keys, fake_google):
        """A certificate endpoint returning a list is an error."""
        fake_google.certs = ["not", "a", "map"]
        with pytest.raises(ValueError):
            public_keys.get(KEY_ID)

    def test_http_error_propagates(self, clock):
        """Failures to reach Google are not turned into missing keys."""
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        keys = GooglePublicKeys(client, CERTS_URL, clock)
        with pytest.raises(httpx.HTTPStatusError):
            keys.get(KEY_ID)


class TestGoogleOAuthClient:
    """Authorization URL and code exchange."""

    def test_authorization_url(self, oauth_client):
        """The URL carries client id, redirect URI, scopes and state."""
        url = urlparse(oauth_client.authorization_url("https://testserver/oauth/code", "the-state"))
        params = {k: v[0] for k, v in parse_qs(url.query).items()}

        assert f"{url.scheme}://{url.netloc}{url.path}" == AUTH_URL
        assert params == {
            "client_id": CLIENT_ID,
            "redirect_uri": "https://testserver/oauth/code",
            "response_type": "code",
            "scope": "openid profile email",
            "state": "the-state",
        }

    def test_exchange_code(self, oauth_client, fake_google):
        """The code is posted with the client credentials and the ID token returned."""
        id_token = fake_google.id_token()
        code = fake_google.issue_code(id_token)

        assert oauth_client.exchange_code(code, "https://testserver/oauth/code") == id_token
        assert fake_google.exchanges[0].form == {
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "code": code,
            "redirect_uri": "https://testserver/oauth/code",
            "grant_type": "authorization_code",
        }

    def test_rejected_code_raises(self, oauth_client, fake_google):
        """Google refusing the code is a TokenExchangeError, tried exactly once."""
        with pytest.raises(TokenExchangeError):
            oauth_client.exchange_code("bad-code", "https://testserver/oauth/code")
        assert len(fake_google.exchanges) == 1

    def test_server_error_propagates(self, google_settings):
        """A 5xx from the token endpoint propagates as an HTTP error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503, json={}))
        client = GoogleOAuthClient(google_settings, transport)
        with pytest.raises(httpx.HTTPStatusError):
            client.exchange_code("code", "https://testserver/oauth/code")

    def test_response_without_id_token(self, google_settings):
        """A 200 without id_token raises TokenExchangeError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"access_token": "x"}))
        client = GoogleOAuthClient(google_settings, transport)
        with pytest.raises(TokenExchangeError):
            client.exchange_code("code", "https://testserver/oauth/code")

    def test_each_exchange_returns_its_own_token(self, oauth_client, fake_google):
        """Consecutive exchanges don't leak tokens between callers."""
        first = fake_google.issue_code(fake_google.id_token(subject="first"), code="code-1")
        second = fake_google.issue_code(fake_google.id_token(subject="second"), code="code-2")

        token_1 = oauth_client.exchange_code(first, "https://testserver/oauth/code")
        token_2 = oauth_client.exchange_code(second, "https://testserver/oauth/code")

        assert token_1 != token_2
