"""
NextAuth.js JWT verification for FastAPI.

Verifies JWTs issued by the community platform's NextAuth.js frontend using
NEXTAUTH_SECRET and resolves the caller to a local User.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from tribelab.core.clock import utcnow
from tribelab.core.config import settings
from tribelab.db.base import get_db
from tribelab.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def verify_nextauth_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a NextAuth.js JWT (HS256 signed with NEXTAUTH_SECRET).

    Expected claims: sub, email, name, iat, exp.
    """
    if not settings.nextauth_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="NextAuth secret not configured",
        )

    try:
        return jwt.decode(
            token,
            settings.nextauth_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authorization token",
        ) from exc


def _resolve_user(claims: Dict[str, Any], db: Session) -> User:
    provider_id = claims.get("sub")
    email = claims.get("email")

    if not provider_id or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing required claims",
        )

    user = db.query(User).filter(User.email == email).first()

    # Lazy-create user on first authenticated request
    if not user:
        user = User(
            oauth_provider=claims.get("provider") or "google",
            oauth_provider_id=provider_id,
            email=email,
            full_name=claims.get("name"),
            is_active=True,
            is_superuser=email in settings.admin_emails,
        )
        db.add(user)
    else:
        user.oauth_provider_id = provider_id
        if claims.get("name"):
            user.full_name = claims.get("name")
        if email in settings.admin_emails and not user.is_superuser:
            user.is_superuser = True
        user.last_login_at = utcnow()

    db.commit()
    db.refresh(user)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated caller. Expects Authorization: Bearer <jwt>."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    if credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication scheme",
        )

    return _resolve_user(verify_nextauth_token(credentials.credentials), db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but anonymous callers resolve to None."""
    if credentials is None or not credentials.credentials:
        return None
    return get_current_user(credentials, db)
