"""
Authentication data models.

Domain models for the auth core, separate from the ORM rows in
advent_calendar.auth.db_models:
- User: local identity linked to one Google account
- VerifiedIdentity: claims of an ID token that passed verification
- ImpersonationPayload / ImpersonationToken: signed impersonation capability
"""
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """
    Core user identity.

    is_admin is never stored; it is derived from the admin allow-list on
    every request.
    """
    id: int
    google_subject_id: str
    email: str
    is_admin: bool = False


@dataclass(frozen=True)
class VerifiedIdentity:
    """Claims of a Google ID token that passed every verification check."""
    subject: str
    email: str
    issuer: str
    audience: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ImpersonationPayload:
    impersonator_email: str
    impersonated_email: str
    expiration_time_seconds: int


@dataclass(frozen=True)
class ImpersonationToken:
    """
    A parsed impersonation token.

    Keeps the payload and signature exactly as they were encoded so the
    signature can be recomputed over the original bytes.
    """
    payload: ImpersonationPayload
    encoded_payload: str
    encoded_signature: str
