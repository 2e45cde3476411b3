"""
Authentication module.

Google sign-in, server-side sessions and admin impersonation.
"""
from .models import (
    User,
    VerifiedIdentity,
    ImpersonationPayload,
    ImpersonationToken,
)
from .utils import utcnow

__all__ = [
    'User',
    'VerifiedIdentity',
    'ImpersonationPayload',
    'ImpersonationToken',
    'utcnow',
]
