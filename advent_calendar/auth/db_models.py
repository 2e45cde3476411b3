"""
SQLAlchemy ORM models for authentication tables.

Separate from advent_calendar/auth/models.py (dataclasses) which are domain
models.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from advent_calendar.core.database import Base


class UserORM(Base):
    """User table - one row per Google account that has signed in."""
    __tablename__ = 'users'

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    google_subject_id = Column(String(255), unique=True, nullable=False)
    email_address = Column(String(320), unique=True, nullable=False)


class SessionORM(Base):
    """Opaque browser sessions with a sliding expiry."""
    __tablename__ = 'sessions'

    session = Column(String(32), primary_key=True)
    user_id = Column(Integer, ForeignKey('users.user_id', ondelete='CASCADE'), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_sessions_expires_at', 'expires_at'),
    )
