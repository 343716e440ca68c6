"""
Cron endpoint authorization.

Provides:
- verify_cron_secret: FastAPI dependency that accepts only
  ``Authorization: Bearer <CRON_SECRET>``.
"""
import hmac

from fastapi import Header, HTTPException, status

from tribelab.core.config import settings


def verify_cron_secret(authorization: str = Header(default="")) -> None:
    """
    Cron-only dependency that checks the shared scheduler secret.

    Raises:
        HTTPException: 503 if CRON_SECRET is not configured,
            401 if the header is missing or does not match
    """
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron secret not configured",
        )

    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
