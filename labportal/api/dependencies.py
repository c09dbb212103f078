"""
API dependencies for FastAPI dependency injection.

Provides common dependencies like database sessions and authentication.
"""
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from labportal.lib.db import get_db as get_db_session
from labportal.lib.jwt import verify_token
from labportal.models.users import User, UserStatus
from labportal.services.notification_service import NotificationService, get_email_provider


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme
security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if token invalid, user not found or account inactive
    """
    try:
        payload = verify_token(credentials.credentials)
        user_id = payload.get("sub")  # JWT standard: user_id in 'sub' claim

        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token"
            )

        user = db.get(User, UUID(str(user_id)))

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if user.status != UserStatus.ACTIVE:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is not active"
            )

        return user

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}"
        )


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency restricting a route to lab administrators."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Lab administrator access required"
        )
    return user


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    """Notification dispatcher bound to the request session."""
    return NotificationService(db, email_provider=get_email_provider())
