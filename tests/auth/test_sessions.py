"""Tests for SessionRepository and SessionManager."""

import pytest
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from advent_calendar.auth.crypto import b64decode
from advent_calendar.auth.db_models import SessionORM
from advent_calendar.auth.repositories import SessionRepository, UserRepository
from advent_calendar.auth.sessions import SESSION_TTL, SessionManager

from tests.conftest import NOW


@pytest.fixture
def user(db_session):
    return UserRepository(db_session).create_user_if_none_exists("alice@example.com", "subject-alice")


@pytest.fixture
def sessions(db_session, clock):
    return SessionManager(SessionRepository(db_session), clock)


def stored_expiry(db_session, token):
    row = db_session.execute(select(SessionORM).where(SessionORM.session == token)).scalar_one_or_none()
    return None if row is None else row.expires_at.replace(tzinfo=NOW.tzinfo)


class TestCreateSession:
    """Issuing sessions."""

    def test_token_is_16_random_bytes(self, sessions, user):
        """Tokens are base64url encodings of 16 bytes."""
        token = sessions.create_session(user.id)
        assert len(b64decode(token)) == 16

    def test_session_expires_after_ttl(self, sessions, user, db_session):
        """A new session expires 7 days from now."""
        token = sessions.create_session(user.id)
        assert stored_expiry(db_session, token) == NOW + SESSION_TTL

    def test_tokens_are_unique(self, sessions, user):
        """Each call issues a new token."""
        assert sessions.create_session(user.id) != sessions.create_session(user.id)

    def test_duplicate_token_is_an_error(self, db_session, user):
        """A primary key collision propagates instead of being ignored."""
        repo = SessionRepository(db_session)
        repo.add_session("same-token", user.id, NOW)
        with pytest.raises(IntegrityError):
            repo.add_session("same-token", user.id, NOW)
            db_session.flush()


class TestResolveSession:
    """Looking up sessions with a sliding 7-day window."""

    def test_resolves_to_owner(self, sessions, user):
        """A live session resolves to its user id."""
        token = sessions.create_session(user.id)
        assert sessions.resolve_session(token) == user.id

    def test_unknown_token(self, sessions, user):
        """An unknown token resolves to None."""
        assert sessions.resolve_session("no-such-session") is None

    def test_valid_just_before_expiry(self, sessions, user, clock):
        """One second before expiry the session still resolves."""
        token = sessions.create_session(user.id)
        clock.advance(SESSION_TTL - timedelta(seconds=1))
        assert sessions.resolve_session(token) == user.id

    def test_expired_at_exact_expiry(self, sessions, user, clock, db_session):
        """At expires_at the session is gone, and the row is swept."""
        token = sessions.create_session(user.id)
        clock.advance(SESSION_TTL)
        assert sessions.resolve_session(token) is None
        assert stored_expiry(db_session, token) is None

    def test_lookup_extends_expiry(self, sessions, user, clock, db_session):
        """Each successful lookup pushes expiry to now + 7 days."""
        token = sessions.create_session(user.id)
        clock.advance(timedelta(days=6))
        sessions.resolve_session(token)
        assert stored_expiry(db_session, token) == NOW + timedelta(days=6) + SESSION_TTL

        clock.advance(timedelta(days=6))
        assert sessions.resolve_session(token) == user.id

    def test_sweeps_other_expired_sessions(self, sessions, user, clock, db_session):
        """Resolving any session deletes every expired row."""
        stale = sessions.create_session(user.id)
        clock.advance(SESSION_TTL)
        fresh = sessions.create_session(user.id)

        sessions.resolve_session(fresh)

        assert stored_expiry(db_session, stale) is None
        assert stored_expiry(db_session, fresh) is not None


class TestDeleteSession:
    """Revoking sessions."""

    def test_deleted_session_no_longer_resolves(self, sessions, user):
        """Logout removes the session."""
        token = sessions.create_session(user.id)
        sessions.delete_session(token)
        assert sessions.resolve_session(token) is None

    def test_delete_is_idempotent(self, sessions, user):
        """Deleting a missing session is not an error."""
        sessions.delete_session("never-existed")
        sessions.delete_session("never-existed")
