"""
Authentication strategies.

Supports:
- Google sign-in (authorization-code flow, server-side sessions)
- No-auth development mode (every request runs as a fixed local user)

An authenticator supplies the auth gate filter for protected routes, the
logout handler and any routes of its own (the OAuth callback).
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from starlette.responses import RedirectResponse, Response

from advent_calendar.core.config import GoogleOAuthSettings
from advent_calendar.core.logging import bind_log_context
from advent_calendar.pipeline.chain import Handler
from advent_calendar.pipeline.context import RequestContext
from advent_calendar.pipeline.filters import redirect_response
from advent_calendar.pipeline.outcomes import Forbidden

from .crypto import b64decode, b64encode, digests_equal, hmac_sha256, random_bytes
from .db_models import UserORM
from .google import GoogleOAuthClient
from .id_tokens import IdTokenVerifier, InvalidIdentityToken
from .impersonation import delete_impersonation_cookie
from .models import User
from .repositories import SessionRepository, UserRepository, insert_ignoring_conflicts
from .sessions import SESSION_TTL, SessionManager

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
CSRF_COOKIE = "oauth_csrf"
CSRF_TOKEN_BYTES = 32
CSRF_COOKIE_MAX_AGE = 300
CALLBACK_PATH = "/oauth/code"

# Route = (path, HTTP method, handler)
Route = Tuple[str, str, Handler]


class Authenticator(ABC):
    """Base class for authentication strategies."""

    @abstractmethod
    def authenticate(self, handler: Handler) -> Handler:
        """
        Auth gate filter.

        Sets ctx.user for the wrapped handler, or answers the request itself
        when the caller isn't signed in.
        """
        pass

    @abstractmethod
    def logout(self, ctx: RequestContext):
        pass

    def routes(self) -> List[Route]:
        """Extra ungated routes this strategy needs."""
        return []

    def close(self) -> None:
        """Release outbound connections."""
        pass


# ============================================================================
# GOOGLE SIGN-IN
# ============================================================================

class GoogleAuthenticator(Authenticator):
    """
    Google sign-in with opaque server-side sessions.

    Unauthenticated requests get a short-lived CSRF cookie and are sent to
    Google with state = HMAC(csrf bytes, token hash key). The callback only
    proceeds when the cookie and state agree.
    """

    def __init__(
        self,
        settings: GoogleOAuthSettings,
        oauth_client: GoogleOAuthClient,
        verifier: IdTokenVerifier,
        token_hash_key: bytes,
        clock: Callable[[], datetime],
    ):
        self.settings = settings
        self._oauth = oauth_client
        self._verifier = verifier
        self._key = token_hash_key
        self._clock = clock
        self._allowed_emails = frozenset(settings.allowed_user_emails)

    def routes(self) -> List[Route]:
        return [(CALLBACK_PATH, "GET", self.callback)]

    def close(self) -> None:
        self._oauth.close()

    def authenticate(self, handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            token = ctx.cookie(SESSION_COOKIE)
            user = self._session_user(ctx, token) if token else None
            if user is None:
                return self._start_sign_in(ctx)

            ctx.user = user
            bind_log_context(user_id=user.id)
            ctx.after_response(lambda response: set_session_cookie(response, token))
            return handler(ctx)

        return handle

    def _session_user(self, ctx: RequestContext, token: str) -> Optional[User]:
        user_id = self._sessions(ctx).resolve_session(token)
        if user_id is None:
            logger.debug("Session cookie did not match a live session")
            return None
        return UserRepository(ctx.db).get_by_id(user_id)

    def _start_sign_in(self, ctx: RequestContext) -> Response:
        csrf = random_bytes(CSRF_TOKEN_BYTES)
        state = b64encode(hmac_sha256(csrf, self._key))
        location = self._oauth.authorization_url(self._redirect_uri(ctx), state)

        response = redirect_response(ctx, location)
        response.set_cookie(
            CSRF_COOKIE,
            b64encode(csrf),
            max_age=CSRF_COOKIE_MAX_AGE,
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )
        return response

    def callback(self, ctx: RequestContext):
        """
        GET /oauth/code: finish sign-in.

        Returns Forbidden for a missing or mismatched CSRF binding, a token
        that fails verification, an email that isn't allowed or an email that
        already belongs to another Google account. A failing code exchange is
        unrecoverable and propagates.
        """
        params = ctx.request.query_params
        code = params.get("code")
        if not code or not self._state_matches_cookie(ctx, params.get("state")):
            return Forbidden()

        id_token = self._oauth.exchange_code(code, self._redirect_uri(ctx))
        try:
            identity = self._verifier.verify(id_token)
        except InvalidIdentityToken:
            return Forbidden()

        if identity.email not in self._allowed_emails:
            logger.warning(f"Sign-in refused for {identity.email}: not an allowed user")
            return Forbidden()

        user = UserRepository(ctx.db).create_user_if_none_exists(
            email=identity.email,
            google_subject_id=identity.subject,
        )
        if user is None:
            logger.warning(f"Sign-in refused for {identity.email}: email linked to another account")
            return Forbidden()

        sessions = self._sessions(ctx)
        token = sessions.create_session(user.id)
        previous = ctx.cookie(SESSION_COOKIE)
        if previous:
            sessions.delete_session(previous)

        logger.info(f"User {user.id} signed in")
        response = RedirectResponse("/", status_code=302)
        set_session_cookie(response, token)
        response.delete_cookie(CSRF_COOKIE, path="/", secure=True, httponly=True, samesite="lax")
        return response

    def _state_matches_cookie(self, ctx: RequestContext, state: Optional[str]) -> bool:
        csrf_cookie = ctx.cookie(CSRF_COOKIE)
        if not state or not csrf_cookie:
            logger.warning("OAuth callback without state or CSRF cookie")
            return False
        try:
            csrf = b64decode(csrf_cookie)
            presented = b64decode(state)
        except ValueError:
            logger.warning("OAuth callback with malformed state or CSRF cookie")
            return False
        if not digests_equal(hmac_sha256(csrf, self._key), presented):
            logger.warning("OAuth callback state does not match CSRF cookie")
            return False
        return True

    def _redirect_uri(self, ctx: RequestContext) -> str:
        base = self.settings.server_base_url
        if not base:
            base = f"http://{ctx.request.headers.get('host', 'localhost')}"
        return base.rstrip("/") + CALLBACK_PATH

    def _sessions(self, ctx: RequestContext) -> SessionManager:
        return SessionManager(SessionRepository(ctx.db), self._clock)

    def logout(self, ctx: RequestContext):
        token = ctx.cookie(SESSION_COOKIE)
        if token:
            self._sessions(ctx).delete_session(token)
        response = RedirectResponse("/", status_code=302)
        response.delete_cookie(SESSION_COOKIE, path="/", secure=True, httponly=True, samesite="lax")
        delete_impersonation_cookie(response)
        return response


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=int(SESSION_TTL.total_seconds()),
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )


# ============================================================================
# NO-AUTH DEVELOPMENT MODE
# ============================================================================

DEV_USER = User(id=0, google_subject_id="no-auth", email="dev@localhost")


class NoAuthAuthenticator(Authenticator):
    """Every request is made by DEV_USER. For local development only."""

    def authenticate(self, handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            # The row must exist for opened_days' foreign key.
            ctx.db.execute(
                insert_ignoring_conflicts(ctx.db, UserORM.__table__).values(
                    user_id=DEV_USER.id,
                    google_subject_id=DEV_USER.google_subject_id,
                    email_address=DEV_USER.email,
                )
            )
            ctx.user = DEV_USER
            bind_log_context(user_id=DEV_USER.id)
            return handler(ctx)

        return handle

    def logout(self, ctx: RequestContext):
        response = RedirectResponse("/", status_code=302)
        delete_impersonation_cookie(response)
        return response
