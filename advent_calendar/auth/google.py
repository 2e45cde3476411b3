"""
Google OAuth provider.

- GoogleOAuthClient: authorization URL construction and code exchange
- GooglePublicKeys: cached certificate set used to verify Google ID tokens
"""
import logging
import re
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import OAuth2Client
from cryptography import x509

from advent_calendar.core.config import GoogleOAuthSettings

logger = logging.getLogger(__name__)

SCOPES = ("openid", "profile", "email")

DEFAULT_CERTS_MAX_AGE = timedelta(hours=1)
MIN_REFRESH_INTERVAL = timedelta(minutes=1)

_MAX_AGE = re.compile(r"max-age=(\d+)")


class TokenExchangeError(Exception):
    """The token endpoint rejected the code or answered without a usable ID token."""
    pass


class GoogleOAuthClient:
    """
    Authorization-code flow against Google (or an endpoint override).

    Wraps Authlib's httpx OAuth2Client. The client keeps the last fetched
    token on itself, so exchanges are serialized.
    """

    def __init__(
        self,
        settings: GoogleOAuthSettings,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.settings = settings
        self._session = OAuth2Client(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            token_endpoint_auth_method="client_secret_post",
            scope=" ".join(SCOPES),
            transport=transport,
            timeout=timeout,
        )
        self._lock = threading.Lock()

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        """
        Get the OAuth authorization URL.

        Args:
            redirect_uri: Callback URL registered with Google
            state: Signed CSRF state echoed back to the callback

        Returns:
            Full authorization URL to redirect the user to
        """
        url, _ = self._session.create_authorization_url(
            self.settings.authorization_endpoint,
            state=state,
            redirect_uri=redirect_uri,
        )
        return url

    def exchange_code(self, code: str, redirect_uri: str) -> str:
        """
        Exchange an authorization code for an ID token.

        Codes are single use, so nothing here is retried.

        Returns:
            The raw (unverified) ID token

        Raises:
            httpx.HTTPError: On transport failure or a 5xx answer
            TokenExchangeError: If Google rejects the code or the response
                carries no ID token
        """
        try:
            with self._lock:
                token = self._session.fetch_token(
                    self.settings.token_endpoint,
                    code=code,
                    redirect_uri=redirect_uri,
                )
        except OAuthError as e:
            raise TokenExchangeError(f"code rejected: {e.error}") from e
        except (ValueError, TypeError) as e:
            raise TokenExchangeError("token response is not a JSON object") from e

        id_token = token.get("id_token") if isinstance(token, dict) else None
        if not isinstance(id_token, str):
            raise TokenExchangeError("token response has no id_token")
        return id_token

    def close(self) -> None:
        self._session.close()


class GooglePublicKeys:
    """
    Google's ID token signing keys, keyed by kid.

    The certificate map is cached for the Cache-Control max-age of the
    response. An unknown kid triggers an early refresh (Google rotates keys),
    rate limited to one fetch per MIN_REFRESH_INTERVAL.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        certs_url: str,
        clock: Callable[[], datetime],
    ):
        self._http = http_client
        self._certs_url = certs_url
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: Dict[str, object] = {}
        self._fetched_at: Optional[datetime] = None
        self._expires_at: Optional[datetime] = None

    def get(self, kid: str):
        """
        Return the public key for kid, or None if Google doesn't publish it.

        Raises:
            httpx.HTTPError: If the certificate endpoint can't be reached
            ValueError: If the endpoint returns something other than a
                certificate map
        """
        with self._lock:
            now = self._clock()
            if self._is_stale(now) or (kid not in self._keys and self._may_refresh(now)):
                self._refresh(now)
            return self._keys.get(kid)

    def _is_stale(self, now: datetime) -> bool:
        return self._expires_at is None or now >= self._expires_at

    def _may_refresh(self, now: datetime) -> bool:
        return self._fetched_at is None or now - self._fetched_at >= MIN_REFRESH_INTERVAL

    def _refresh(self, now: datetime) -> None:
        response = self._http.get(self._certs_url)
        response.raise_for_status()
        certs = response.json()
        if not isinstance(certs, dict):
            raise ValueError("certificate endpoint did not return an object")

        keys = {}
        for kid, pem in certs.items():
            certificate = x509.load_pem_x509_certificate(str(pem).encode("ascii"))
            keys[kid] = certificate.public_key()

        self._keys = keys
        self._fetched_at = now
        self._expires_at = now + _max_age(response.headers.get("cache-control"))
        logger.info(f"Fetched {len(keys)} Google signing certificate(s)")


def _max_age(cache_control: Optional[str]) -> timedelta:
    if cache_control:
        match = _MAX_AGE.search(cache_control)
        if match:
            return timedelta(seconds=int(match.group(1)))
    return DEFAULT_CERTS_MAX_AGE
