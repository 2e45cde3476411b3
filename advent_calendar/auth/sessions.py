"""Session management: issue, resolve (with sliding expiry) and revoke."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .crypto import random_token
from .repositories import SessionRepository

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=7)
SESSION_TOKEN_BYTES = 16


class SessionManager:
    """
    Service for browser sessions.

    Holds no session state of its own; everything lives in the sessions
    table. Expired rows are swept lazily whenever a session is resolved.
    """

    def __init__(self, session_repo: SessionRepository, clock: Callable[[], datetime]):
        self._session_repo = session_repo
        self._clock = clock

    def create_session(self, user_id: int) -> str:
        """
        Create a new session for a user.

        Returns:
            The opaque session token to hand to the browser
        """
        token = random_token(SESSION_TOKEN_BYTES)
        self._session_repo.add_session(
            session=token,
            user_id=user_id,
            expires_at=self._clock() + SESSION_TTL,
        )
        logger.info(f"Created session for user {user_id}")
        return token

    def resolve_session(self, token: str) -> Optional[int]:
        """
        Resolve a session token to its user, extending the session.

        Returns:
            The owning user id, or None if the session is unknown or expired
        """
        now = self._clock()
        swept = self._session_repo.delete_expired_sessions(now)
        if swept:
            logger.debug(f"Swept {swept} expired session(s)")
        return self._session_repo.update_session_expiry_to(
            session=token,
            expires_at=now + SESSION_TTL,
        )

    def delete_session(self, token: str) -> None:
        self._session_repo.delete_session(token)
