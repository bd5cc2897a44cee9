"""
HMAC-SHA256 helpers for Zoom webhook authenticity.

Zoom signs each delivery as ``v0=hex(HMAC(secret, "v0:{timestamp}:{body}"))``
and validates endpoint ownership with a plainToken/encryptedToken handshake.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_VERSION = "v0"

__all__ = [
    "SignatureError",
    "build_validation_response",
    "compute_signature",
    "encrypt_plain_token",
    "verify_signature",
]


class SignatureError(RuntimeError):
    """Raised when the webhook secret is not configured."""


def _secret_bytes(secret: str | None) -> bytes:
    if not secret:
        raise SignatureError("ZOOM_WEBHOOK_SECRET_TOKEN is not configured")
    return secret.encode("utf-8")


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def compute_signature(body: bytes | str, timestamp: str, secret: str | None) -> str:
    """
    Compute the expected signature header for a raw request body.

    Args:
        body: Raw request body exactly as received.
        timestamp: Value of the x-zm-request-timestamp header.
        secret: Webhook secret token.
    """
    message = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + _as_bytes(body)
    digest = hmac.new(_secret_bytes(secret), message, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_signature(
    body: bytes | str, timestamp: str | None, signature: str | None, secret: str | None
) -> bool:
    """Return True only when the supplied signature header matches the body."""
    if not timestamp or not signature:
        return False
    expected = compute_signature(body, timestamp, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def encrypt_plain_token(plain_token: str, secret: str | None) -> str:
    return hmac.new(_secret_bytes(secret), plain_token.encode("utf-8"), hashlib.sha256).hexdigest()


def build_validation_response(plain_token: str, secret: str | None) -> dict[str, str]:
    """Answer for an endpoint.url_validation challenge."""
    return {
        "plainToken": plain_token,
        "encryptedToken": encrypt_plain_token(plain_token, secret),
    }
