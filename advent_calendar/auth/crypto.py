"""
Cryptographic helpers shared by sessions, OAuth state and impersonation.

Tokens travel in cookies and query strings, so they are encoded with the
URL-safe base64 alphabet without padding.
"""
import base64
import binascii
import hashlib
import hmac
import re
import secrets

_URLSAFE_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


def random_bytes(num_bytes: int) -> bytes:
    """Return num_bytes from the operating system's CSPRNG."""
    return secrets.token_bytes(num_bytes)


def hmac_sha256(data: bytes, key: bytes) -> bytes:
    """Return the raw HMAC-SHA256 digest of data under key."""
    return hmac.new(key, data, hashlib.sha256).digest()


def digests_equal(a: bytes, b: bytes) -> bool:
    """Constant-time comparison of two raw digests."""
    return hmac.compare_digest(a, b)


def b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64decode(text: str) -> bytes:
    """
    Decode unpadded URL-safe base64.

    Raises:
        ValueError: If text contains characters outside the alphabet or has
            an impossible length
    """
    if not _URLSAFE_ALPHABET.fullmatch(text):
        raise ValueError("not base64url")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as e:
        raise ValueError("not base64url") from e


def random_token(num_bytes: int) -> str:
    """Random bytes, base64 encoded for use as an opaque token."""
    return b64encode(random_bytes(num_bytes))
