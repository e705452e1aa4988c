"""
Webhook signature verification.

Dialpad signs webhooks either with a compact HS256 token (``a.b.c``) or, on
older subscriptions, with a hex HMAC-SHA256 of the raw body. Both schemes
are auto-detected. Every verifier fails closed: malformed input returns
False and is never raised to the caller.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import Any, Union

import structlog
from jose import jws, jwt, JWTError
from jose.exceptions import JWSError

log = structlog.get_logger(__name__)

Body = Union[str, bytes]

_HEADER_ALGORITHMS = {
    "sha256=": hashlib.sha256,
    "sha1=": hashlib.sha1,
}

_B64URL_SEGMENT = re.compile(r"[A-Za-z0-9_-]+")


class InvalidTokenError(ValueError):
    """Raised when a compact token body cannot be decoded."""


def _as_bytes(value: Body) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _hex_matches(expected_hex: str, provided_hex: str) -> bool:
    """Constant-time compare of two hex digests; unequal lengths never compared."""
    expected = bytes.fromhex(expected_hex)
    provided = bytes.fromhex(provided_hex)
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)


def verify_compact_token(token: str, secret: str) -> bool:
    """Verify an HS256 compact token's signature over ``header.payload``."""
    parts = token.split(".")
    if len(parts) != 3:
        return False

    signature = parts[2]
    if not signature:
        return False
    # base64url decoding silently skips foreign characters
    if not _B64URL_SEGMENT.fullmatch(signature):
        log.warning("compact_token_signature_malformed")
        return False

    try:
        jws.verify(token, secret, algorithms=["HS256"])
    except (JWSError, JWTError) as e:
        log.warning("compact_token_verification_error", error=str(e))
        return False
    return True


def verify_dialpad_signature(raw_body: Body, signature: str, secret: str) -> bool:
    """
    Verify a Dialpad webhook.

    A signature containing ``.`` is treated as a compact token; anything else
    is a hex HMAC-SHA256 of ``raw_body`` keyed with ``secret``.
    """
    if not signature or not secret:
        return False

    if "." in signature:
        return verify_compact_token(signature, secret)

    try:
        expected = hmac.new(_as_bytes(secret), _as_bytes(raw_body), hashlib.sha256).hexdigest()
        return _hex_matches(expected, signature.strip())
    except (ValueError, UnicodeError) as e:
        log.warning("hmac_verification_error", error=str(e))
        return False


def verify_signature_from_header(raw_body: Body, header_value: str, secret: str) -> bool:
    """
    Verify a generic webhook signature header.

    ``sha256=<hex>`` and ``sha1=<hex>`` select the hash; a bare value is
    treated as SHA-256.
    """
    if not header_value or not secret:
        return False

    digestmod = hashlib.sha256
    signature = header_value.strip()
    for prefix, algorithm in _HEADER_ALGORITHMS.items():
        if signature.startswith(prefix):
            digestmod = algorithm
            signature = signature[len(prefix):]
            break

    try:
        expected = hmac.new(_as_bytes(secret), _as_bytes(raw_body), digestmod).hexdigest()
        return _hex_matches(expected, signature)
    except (ValueError, UnicodeError) as e:
        log.warning("header_signature_verification_error", error=str(e))
        return False


def decode_compact_token_claims(token: str) -> dict[str, Any]:
    """Return the payload claims of a compact token without verifying it."""
    try:
        claims = jwt.get_unverified_claims(token.strip())
    except JWTError as e:
        raise InvalidTokenError(f"Invalid compact token: {e}") from e
    if not isinstance(claims, dict):
        raise InvalidTokenError("Compact token payload is not a JSON object")
    return claims
