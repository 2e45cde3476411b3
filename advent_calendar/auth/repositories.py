"""
Authentication repositories.

Thin SQLAlchemy wrappers over the users and sessions tables. A repository is
bound to the request's database session, so every statement runs inside the
request transaction.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .db_models import SessionORM, UserORM
from .models import User

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_sessions = SessionORM.__table__


def insert_ignoring_conflicts(db: Session, table):
    """INSERT ... ON CONFLICT DO NOTHING for the session's dialect."""
    dialect = db.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")
    return insert(table).on_conflict_do_nothing()


class UserRepository:
    """Storage for local users."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        row = self.db.execute(
            select(UserORM).where(UserORM.user_id == user_id)
        ).scalar_one_or_none()
        return _to_user(row)

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.db.execute(
            select(UserORM).where(UserORM.email_address == email)
        ).scalar_one_or_none()
        return _to_user(row)

    def get_by_google_subject_id(self, subject_id: str) -> Optional[User]:
        row = self.db.execute(
            select(UserORM).where(UserORM.google_subject_id == subject_id)
        ).scalar_one_or_none()
        return _to_user(row)

    def create_user_if_none_exists(self, email: str, google_subject_id: str) -> Optional[User]:
        """
        Insert a user unless one already exists for the subject id or email.

        Idempotent: repeated calls for the same subject id leave exactly one
        row, keeping the email of the first call.

        Returns:
            The user owning google_subject_id, or None when the email already
            belongs to a different Google account
        """
        statement = insert_ignoring_conflicts(self.db, UserORM.__table__).values(
            email_address=email,
            google_subject_id=google_subject_id,
        )
        self.db.execute(statement)
        return self.get_by_google_subject_id(google_subject_id)


class SessionRepository:
    """Storage for browser sessions."""

    def __init__(self, db: Session):
        self.db = db

    def add_session(self, session: str, user_id: int, expires_at: datetime) -> None:
        self.db.execute(
            insert(_sessions).values(
                session=session,
                user_id=user_id,
                expires_at=expires_at,
            )
        )

    def update_session_expiry_to(self, session: str, expires_at: datetime) -> Optional[int]:
        """
        Move a session's expiry and return its owner in one statement.

        Returns:
            The owning user id, or None if no such session exists
        """
        return self.db.execute(
            update(_sessions)
            .where(_sessions.c.session == session)
            .values(expires_at=expires_at)
            .returning(_sessions.c.user_id)
        ).scalar_one_or_none()

    def delete_session(self, session: str) -> None:
        self.db.execute(delete(_sessions).where(_sessions.c.session == session))

    def delete_expired_sessions(self, now: datetime) -> int:
        result = self.db.execute(delete(_sessions).where(_sessions.c.expires_at <= now))
        return result.rowcount


def _to_user(row: Optional[UserORM]) -> Optional[User]:
    if row is None:
        return None
    return User(
        id=row.user_id,
        google_subject_id=row.google_subject_id,
        email=row.email_address,
    )
