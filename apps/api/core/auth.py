"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting current authenticated user
- Role-based access control
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token
from models import User, UserRole

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises UnauthorizedError for a missing or bad token, ForbiddenError for
    a deactivated account.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    # Purpose-bound tokens (password reset) are not session tokens.
    if not user_id or payload.get("purpose"):
        raise UnauthorizedError("Invalid token payload")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")

    user = db.query(User).filter(User.id == user_id_uuid).first()
    if not user:
        raise UnauthorizedError("User not found")

    # Deactivated accounts keep their rows but lose access.
    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return user


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(user: User = Depends(require_role(["ADMIN"]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required roles: {allowed_roles}")
        return current_user

    return role_checker


def require_admin(
    current_user: User = Depends(require_role([UserRole.ADMIN.value]))
) -> User:
    """Require admin role."""
    return current_user
