"""Tests for the shared cryptographic helpers."""

import pytest

from advent_calendar.auth.crypto import (
    b64decode,
    b64encode,
    digests_equal,
    hmac_sha256,
    random_bytes,
    random_token,
)


class TestHmac:
    """HMAC-SHA256 digests."""

    def test_matches_rfc_4231_vector(self):
        """Known-answer test (RFC 4231, test case 2)."""
        digest = hmac_sha256(b"what do ya want for nothing?", b"Jefe")
        assert digest.hex() == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"

    def test_depends_on_key(self):
        """Same data under different keys gives different digests."""
        assert hmac_sha256(b"data", b"key-1") != hmac_sha256(b"data", b"key-2")

    def test_digests_equal(self):
        """Constant-time comparison agrees with equality on raw bytes."""
        digest = hmac_sha256(b"data", b"key")
        assert digests_equal(digest, hmac_sha256(b"data", b"key"))
        assert not digests_equal(digest, hmac_sha256(b"datb", b"key"))
        assert not digests_equal(digest, digest[:-1])


class TestBase64:
    """Unpadded URL-safe base64."""

    def test_encoding_is_url_safe_and_unpadded(self):
        """Output uses - and _ and never ends with padding."""
        encoded = b64encode(b"\xfb\xff\xfe")
        assert encoded == "-__-"
        assert "=" not in b64encode(b"a")

    def test_decodes_unpadded_input(self):
        """Padding is restored before decoding."""
        assert b64decode(b64encode(b"a")) == b"a"
        assert b64decode("-__-") == b"\xfb\xff\xfe"

    @pytest.mark.parametrize("text", ["a", "!!!!", "ab cd", "abc+", "é"])
    def test_rejects_malformed_input(self, text):
        """Characters outside the alphabet or impossible lengths raise ValueError."""
        with pytest.raises(ValueError):
            b64decode(text)


class TestRandomTokens:
    """CSPRNG-backed tokens."""

    def test_random_bytes_length(self):
        """random_bytes returns exactly the requested number of bytes."""
        assert len(random_bytes(32)) == 32

    def test_tokens_are_distinct(self):
        """Two tokens are never the same."""
        assert random_token(16) != random_token(16)

    def test_token_encodes_requested_bytes(self):
        """A 16-byte token decodes back to 16 bytes."""
        token = random_token(16)
        assert len(token) == 22
        assert len(b64decode(token)) == 16
