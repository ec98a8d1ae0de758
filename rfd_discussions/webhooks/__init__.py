"""Webhook authentication for RFD Discussions."""

from .signature import (
    SIGNATURE_HEADER,
    SIGNATURE_PREFIX,
    constant_time_equals,
    hmac_sha256,
    sign_payload,
    signature_header,
    verify_signature,
)

__all__ = [
    "SIGNATURE_HEADER",
    "SIGNATURE_PREFIX",
    "constant_time_equals",
    "hmac_sha256",
    "sign_payload",
    "signature_header",
    "verify_signature",
]
