"""URL-bound access tokens with time-bucketed validity.

A token is ``base64url(xor(url + ":" + bucket, key))`` where ``bucket`` is
the current time divided into fixed windows and ``key`` is the first 16 bytes
of the shared secret. Verification recomputes everything from the token and
the clock, so no issued token is ever stored and any number of proxy
instances sharing the secret agree on validity.

This is a capability token, not a security boundary: the XOR scheme offers
no integrity protection beyond the exact URL match and anyone holding the
secret can mint tokens.
"""

import base64
import binascii
import hmac
import time
from typing import Optional

KEY_LENGTH = 16
PAYLOAD_ENCODING = "utf-8"


class TokenCodec:
    """Issues and verifies access tokens for proxied URLs."""

    def __init__(self, secret: str, bucket_seconds: int = 60, skew_buckets: int = 5):
        """
        Initialize the codec.

        Args:
            secret: Shared secret; only its first 16 bytes are used as the key
            bucket_seconds: Width of one time bucket
            skew_buckets: Maximum bucket distance accepted by verify()
        """
        key = secret.encode(PAYLOAD_ENCODING)[:KEY_LENGTH]
        if not key:
            raise ValueError("Token secret cannot be empty")
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")

        self._key = key
        self.bucket_seconds = bucket_seconds
        self.skew_buckets = skew_buckets

    def bucket(self, now: Optional[float] = None) -> int:
        """Return the time bucket for ``now`` (defaults to the current time)."""
        if now is None:
            now = time.time()
        return int(now // self.bucket_seconds)

    def issue(self, url: str, now: Optional[float] = None) -> str:
        """
        Mint a token bound to ``url`` and the current time bucket.

        Args:
            url: Exact URL the token authorizes
            now: Override for the current UNIX time

        Returns:
            Unpadded base64url token
        """
        payload = f"{url}:{self.bucket(now)}".encode(PAYLOAD_ENCODING)
        encoded = base64.urlsafe_b64encode(self._xor(payload)).decode("ascii")
        return encoded.rstrip("=")

    def verify(self, token: str, url: str, now: Optional[float] = None) -> bool:
        """
        Check that ``token`` was issued for ``url`` within the allowed window.

        Fails closed: any decoding problem yields False.
        """
        decoded = self._decode(token)
        if decoded is None:
            return False

        decoded_url, issued_bucket = decoded
        if not hmac.compare_digest(
            decoded_url.encode(PAYLOAD_ENCODING), url.encode(PAYLOAD_ENCODING)
        ):
            return False

        return abs(self.bucket(now) - issued_bucket) <= self.skew_buckets

    def _decode(self, token: str) -> Optional[tuple[str, int]]:
        """Recover ``(url, bucket)`` from a token, or None if it is malformed."""
        if not token:
            return None

        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.b64decode(padded, altchars=b"-_", validate=True)
            payload = self._xor(raw).decode(PAYLOAD_ENCODING)
        except (binascii.Error, ValueError):
            return None

        url, sep, bucket_text = payload.rpartition(":")
        if not sep or not bucket_text.isdecimal():
            return None

        return url, int(bucket_text)

    def _xor(self, data: bytes) -> bytes:
        key = self._key
        key_length = len(key)
        return bytes(b ^ key[i % key_length] for i, b in enumerate(data))
