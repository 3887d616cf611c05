"""
Deterministic HMAC-SHA256 helpers for visitor pseudonymization.

Raw client IPs never leave the request that carried them: the visitor
ledger, the enrichment cache and any log line only ever see the digest.
"""

from __future__ import annotations

import hashlib
import hmac

from app.config import settings

SECRET_MIN_LENGTH = 16  # keep configurable but catch obvious misconfiguration

__all__ = [
    "HashingError",
    "compute_hmac",
    "hash_ip",
]


class HashingError(RuntimeError):
    """Raised when hashing prerequisites are not satisfied."""


def _secret_bytes() -> bytes:
    secret = getattr(settings, "HASHING_SECRET", None)
    if not secret:
        raise HashingError("HASHING_SECRET is not configured")
    if len(secret) < SECRET_MIN_LENGTH:
        raise HashingError("HASHING_SECRET is too short; please rotate it")
    return secret.encode("utf-8")


def compute_hmac(value: str, *, namespace: str) -> str:
    """
    Compute a namespaced hex HMAC-SHA256 digest.

    Args:
        value: Raw string value to hash (will be normalized by caller).
        namespace: Logical namespace/salt to avoid cross-field collisions.
    """
    payload = value or ""
    scoped = f"{namespace}:{payload}"
    digest = hmac.new(_secret_bytes(), scoped.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def hash_ip(ip: str | None) -> str:
    """Deterministically hash a client IP address."""
    return compute_hmac((ip or "").strip(), namespace="ip")
