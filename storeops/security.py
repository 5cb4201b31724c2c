"""Access tokens and Stripe webhook signature checks."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

# Seconds a signed webhook timestamp stays acceptable.
SIGNATURE_TOLERANCE = 300


def generate_access_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str | None,
    now: float | None = None,
) -> bool:
    """Validate a ``Stripe-Signature`` style header (``t=...,v1=...``).

    If no secret is configured, signature validation is skipped.
    """
    if not secret:
        return True
    if not header:
        return False

    timestamp, signatures = _parse_signature_header(header)
    if timestamp is None or not signatures:
        return False
    current = time.time() if now is None else now
    if abs(current - timestamp) > SIGNATURE_TOLERANCE:
        return False

    expected = sign_payload(payload, secret, timestamp).split("v1=", 1)[1]
    return any(hmac.compare_digest(candidate, expected) for candidate in signatures)
