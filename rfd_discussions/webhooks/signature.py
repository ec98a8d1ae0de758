"""HMAC-SHA256 signing and verification for inbound RFD webhooks.

The sender signs the raw request body with the shared secret and sends
``X-RFD-Signature: sha256=<hex>``.  Verification recomputes the HMAC
(RFC 2104) on top of :mod:`rfd_discussions.webhooks.sha256` and compares the
hex strings in constant time.
"""

from __future__ import annotations

from typing import Optional, Union

from rfd_discussions.webhooks import sha256

SIGNATURE_HEADER = "X-RFD-Signature"
SIGNATURE_PREFIX = "sha256="
SIGNATURE_HEX_LENGTH = sha256.DIGEST_SIZE * 2

_INNER_PAD = 0x36
_OUTER_PAD = 0x5C


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


# -----------------------------------------------------------------------
# HMAC
# -----------------------------------------------------------------------

def hmac_sha256(key: Union[str, bytes], message: Union[str, bytes]) -> bytes:
    """Compute the raw 32-byte HMAC-SHA256 of *message* under *key*."""
    key_bytes = _to_bytes(key)
    if len(key_bytes) > sha256.BLOCK_SIZE:
        key_bytes = sha256.digest(key_bytes)
    key_bytes = key_bytes.ljust(sha256.BLOCK_SIZE, b"\x00")

    inner_pad = bytes(b ^ _INNER_PAD for b in key_bytes)
    outer_pad = bytes(b ^ _OUTER_PAD for b in key_bytes)

    inner_digest = sha256.digest(inner_pad + _to_bytes(message))
    return sha256.digest(outer_pad + inner_digest)


def sign_payload(payload_bytes: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 hex digest for *payload_bytes* using *secret*."""
    return hmac_sha256(secret, payload_bytes).hex()


def signature_header(payload_bytes: bytes, secret: str) -> str:
    """Return the full ``sha256=<hex>`` header value for *payload_bytes*."""
    return f"{SIGNATURE_PREFIX}{sign_payload(payload_bytes, secret)}"


# -----------------------------------------------------------------------
# Constant-time comparison
# -----------------------------------------------------------------------

def _char_diff(a: str, b: str) -> int:
    return ord(a) ^ ord(b)


def constant_time_equals(provided: str, expected: str) -> bool:
    """Compare two strings without exiting early on the first mismatch.

    Unequal lengths return immediately; the expected length is public
    (always 64 hex characters), so nothing secret is revealed by it.
    """
    if len(provided) != len(expected):
        return False
    result = 0
    for a, b in zip(provided, expected):
        result |= _char_diff(a, b)
    return result == 0


# -----------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------

def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Return True only if *signature* is the HMAC of *body* under *secret*."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False

    provided = signature[len(SIGNATURE_PREFIX):]
    if len(provided) != SIGNATURE_HEX_LENGTH:
        return False

    expected = sign_payload(body, secret)
    return constant_time_equals(provided, expected)
