"""
Admin impersonation.

An admin may view the calendar as another user. The capability is a signed,
time-boxed token stored in its own cookie:

    base64url(json payload) "." base64url(HMAC-SHA256(encoded payload, key))

The token is re-checked on every request against the currently signed-in
user, so it stops working as soon as that user changes, the payload expires
or the signature doesn't match. Any failure drops the cookie and the request
carries on as the signed-in user.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Callable

from starlette.responses import RedirectResponse, Response

from advent_calendar.core.logging import bind_log_context
from advent_calendar.pipeline.chain import Handler
from advent_calendar.pipeline.context import RequestContext
from advent_calendar.pipeline.outcomes import DisplayError

from .crypto import b64decode, b64encode, digests_equal, hmac_sha256
from .models import ImpersonationPayload, ImpersonationToken
from .repositories import UserRepository
from .utils import epoch_seconds

logger = logging.getLogger(__name__)

IMPERSONATION_COOKIE = "impersonation_token"
IMPERSONATION_TTL = timedelta(hours=1)
IMPERSONATION_COOKIE_MAX_AGE = 1800


class InvalidImpersonationToken(ValueError):
    pass


class ImpersonationTokens:
    """Signs, parses and verifies impersonation tokens."""

    def __init__(self, token_hash_key: bytes, clock: Callable[[], datetime]):
        self._key = token_hash_key
        self._clock = clock

    def sign(self, payload: ImpersonationPayload) -> str:
        document = {
            "impersonator": payload.impersonator_email,
            "impersonated": payload.impersonated_email,
            "exp": payload.expiration_time_seconds,
        }
        encoded_payload = b64encode(
            json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
        )
        encoded_signature = b64encode(hmac_sha256(encoded_payload.encode("ascii"), self._key))
        return f"{encoded_payload}.{encoded_signature}"

    def parse(self, token: str) -> ImpersonationToken:
        """
        Split and decode a token without checking its signature.

        Raises:
            InvalidImpersonationToken: If the token isn't two dot-separated
                base64url parts or the payload isn't the expected JSON object
        """
        parts = token.split(".")
        if len(parts) != 2:
            raise InvalidImpersonationToken("expected exactly two parts")
        encoded_payload, encoded_signature = parts

        try:
            document = json.loads(b64decode(encoded_payload))
        except (ValueError, RecursionError) as e:
            raise InvalidImpersonationToken("payload is not base64url JSON") from e
        if not isinstance(document, dict):
            raise InvalidImpersonationToken("payload is not an object")

        impersonator = document.get("impersonator")
        impersonated = document.get("impersonated")
        expiration = document.get("exp")
        if not isinstance(impersonator, str) or not isinstance(impersonated, str):
            raise InvalidImpersonationToken("payload emails must be strings")
        if not isinstance(expiration, int) or isinstance(expiration, bool):
            raise InvalidImpersonationToken("payload exp must be an integer")

        return ImpersonationToken(
            payload=ImpersonationPayload(
                impersonator_email=impersonator,
                impersonated_email=impersonated,
                expiration_time_seconds=expiration,
            ),
            encoded_payload=encoded_payload,
            encoded_signature=encoded_signature,
        )

    def verify(self, token: ImpersonationToken, impersonator_email: str) -> bool:
        """True if the token was issued to impersonator_email, is unexpired and is signed by us."""
        if token.payload.impersonator_email != impersonator_email:
            return False
        if token.payload.expiration_time_seconds <= epoch_seconds(self._clock()):
            return False
        try:
            signature = b64decode(token.encoded_signature)
        except ValueError:
            return False
        expected = hmac_sha256(token.encoded_payload.encode("ascii"), self._key)
        return digests_equal(signature, expected)


def delete_impersonation_cookie(response: Response) -> None:
    response.delete_cookie(
        IMPERSONATION_COOKIE, path="/", secure=True, httponly=True, samesite="strict"
    )


def _drop_stale_cookie(response: Response) -> None:
    # A handler that just issued a fresh token keeps it.
    prefix = f"{IMPERSONATION_COOKIE}=".encode("latin-1")
    for name, value in response.raw_headers:
        if name == b"set-cookie" and value.startswith(prefix):
            return
    delete_impersonation_cookie(response)


def impersonation_filter(tokens: ImpersonationTokens):
    """
    Set ctx.impersonated_user from a valid impersonation cookie.

    Must run after the auth gate and admin filter. The signed-in user is left
    untouched.
    """
    def wrap(handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            cookie = ctx.cookie(IMPERSONATION_COOKIE)
            if cookie is not None:
                impersonated = _impersonated_user(ctx, tokens, cookie)
                if impersonated is None:
                    ctx.after_response(_drop_stale_cookie)
                else:
                    ctx.impersonated_user = impersonated
                    bind_log_context(impersonated_user_id=impersonated.id)
            return handler(ctx)

        return handle

    return wrap


def _impersonated_user(ctx: RequestContext, tokens: ImpersonationTokens, cookie: str):
    try:
        token = tokens.parse(cookie)
    except InvalidImpersonationToken as e:
        logger.warning(f"Dropping malformed impersonation token for {ctx.user.email}: {e}")
        return None
    if not tokens.verify(token, impersonator_email=ctx.user.email):
        logger.warning(f"Dropping invalid impersonation token for {ctx.user.email}")
        return None
    user = UserRepository(ctx.db).get_by_email(token.payload.impersonated_email)
    if user is None:
        logger.warning(f"Impersonated user {token.payload.impersonated_email} no longer exists")
    return user


def impersonate_handler(tokens: ImpersonationTokens, clock: Callable[[], datetime]) -> Handler:
    """POST /impersonate: start impersonating the user named by the email form field."""
    def handle(ctx: RequestContext):
        email = ctx.form.get("email")
        if not email:
            return Response(status_code=400)

        if UserRepository(ctx.db).get_by_email(email) is None:
            return DisplayError(f"user {email} not found")

        payload = ImpersonationPayload(
            impersonator_email=ctx.user.email,
            impersonated_email=email,
            expiration_time_seconds=epoch_seconds(clock() + IMPERSONATION_TTL),
        )
        response = Response(status_code=200, headers={"HX-Redirect": "/"})
        response.set_cookie(
            IMPERSONATION_COOKIE,
            tokens.sign(payload),
            max_age=IMPERSONATION_COOKIE_MAX_AGE,
            path="/",
            secure=True,
            httponly=True,
            samesite="strict",
        )
        logger.info(f"{ctx.user.email} started impersonating {email}")
        return response

    return handle


def stop_impersonating_handler(ctx: RequestContext):
    """POST /impersonate/stop."""
    ctx.after_response(delete_impersonation_cookie)
    return RedirectResponse("/", status_code=302)
