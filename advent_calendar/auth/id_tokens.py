"""
Google ID token verification.

Every way a token can be wrong (bad signature, unknown key, wrong issuer or
audience, outside its validity window, missing subject or email) is reported
as a single InvalidIdentityToken. The reason is logged, never returned.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError

from .google import GooglePublicKeys
from .models import VerifiedIdentity
from .utils import epoch_seconds

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
ALLOWED_CLOCK_SKEW = timedelta(seconds=300)

_jwt = JsonWebToken(["RS256"])


class InvalidIdentityToken(Exception):
    pass


class IdTokenVerifier:
    """Verifies RS256 ID tokens issued by Google for one OAuth client."""

    def __init__(
        self,
        public_keys: GooglePublicKeys,
        client_id: str,
        clock: Callable[[], datetime],
    ):
        self._public_keys = public_keys
        self._client_id = client_id
        self._clock = clock

    def verify(self, token: str) -> VerifiedIdentity:
        """
        Verify an ID token and return its claims.

        Args:
            token: Compact-serialized JWT as returned by the token endpoint

        Returns:
            VerifiedIdentity for the token's subject

        Raises:
            InvalidIdentityToken: If any check fails
            httpx.HTTPError: If Google's certificates can't be fetched
        """
        try:
            return self._verify(token)
        except InvalidIdentityToken as e:
            logger.warning(f"Rejected ID token: {e}")
            raise

    def _verify(self, token: str) -> VerifiedIdentity:
        now = epoch_seconds(self._clock())
        skew = int(ALLOWED_CLOCK_SKEW.total_seconds())
        try:
            claims = _jwt.decode(
                token,
                key=self._load_key,
                claims_options={
                    "iss": {"essential": True, "values": list(GOOGLE_ISSUERS)},
                    "aud": {"essential": True, "value": self._client_id},
                    "sub": {"essential": True},
                    "email": {"essential": True},
                    "exp": {"essential": True},
                    "iat": {"essential": True},
                },
            )
            claims.validate(now=now, leeway=skew)
            issued_at = int(claims["iat"])
            expires_at = int(claims["exp"])
        except (JoseError, ValueError, TypeError, KeyError) as e:
            raise InvalidIdentityToken(f"{type(e).__name__}: {e}") from e

        if not issued_at - skew <= now <= expires_at:
            raise InvalidIdentityToken("token is outside its validity window")

        # aud must name this client and nothing else
        if claims["aud"] not in (self._client_id, [self._client_id]):
            raise InvalidIdentityToken(f"untrusted audience {claims['aud']!r}")

        subject = claims["sub"]
        email = claims["email"]
        if not isinstance(subject, str) or not subject:
            raise InvalidIdentityToken("sub is not a string")
        if not isinstance(email, str) or not email:
            raise InvalidIdentityToken("email is not a string")

        return VerifiedIdentity(
            subject=subject,
            email=email,
            issuer=claims["iss"],
            audience=self._client_id,
            issued_at=datetime.fromtimestamp(issued_at, timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, timezone.utc),
        )

    def _load_key(self, header, payload):
        kid = header.get("kid")
        if not isinstance(kid, str):
            raise InvalidIdentityToken("token header has no kid")
        key = self._public_keys.get(kid)
        if key is None:
            raise InvalidIdentityToken(f"no trusted key with kid {kid!r}")
        return key
