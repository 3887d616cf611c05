"""
verify.py
---------
Purpose:
    Shared-secret verification for operator endpoints.

Notes:
    - The key travels in the X-Admin-Key header.
    - Admin routes are disabled entirely while ADMIN_API_KEY is unset.
    - Provides `admin_dependency` for the admin router.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.config import settings
from app.infrastructure.observability.logging import log_security_event

_admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def verify_admin_key(provided: str | None) -> None:
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "ADMIN_DISABLED", "message": "Admin endpoints are not enabled"},
        )

    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        log_security_event("admin_auth_failed", "Invalid or missing admin key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_ADMIN_KEY", "message": "Invalid admin key"},
        )


def admin_dependency(api_key: str | None = Depends(_admin_key_header)) -> None:
    verify_admin_key(api_key)
