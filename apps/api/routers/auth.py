"""
Authentication API endpoints.

Provides:
- Login (JWT token generation)
- Current user lookup
- Password reset (forgot-password / reset-password)

There is no self-service registration: accounts are created by the Stripe
checkout webhook once payment succeeds, with a generated password the user
replaces through the reset flow.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr
from uuid import UUID
import logging

from core.config import settings
from core.database import get_db
from core.exceptions import ValidationError
from core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    create_password_reset_token,
    decode_password_reset_token,
    password_fingerprint,
    ACCESS_TOKEN_EXPIRE_MINUTES,
)
from core.auth import get_current_user
from models import User
from schemas import UserResponse
from services.email_service import EmailService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8
RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent."


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ForgotPasswordRequest(BaseModel):
    """Request password reset email."""
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Reset password with token."""
    token: str
    new_password: str


class MessageResponse(BaseModel):
    success: bool
    message: str


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid email or password",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _invalid_reset_token() -> ValidationError:
    return ValidationError(
        "Invalid or expired reset token. Please request a new password reset.",
        field="token",
    )


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: UserLogin,
    db: Session = Depends(get_db)
):
    """
    Authenticate user and return JWT token.

    Returns access token valid for 30 days.
    """
    email = credentials.email.lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or not user.password_hash:
        raise _invalid_credentials()

    if not verify_password(credentials.password, user.password_hash):
        logger.info(f"Failed login for {email}")
        raise _invalid_credentials()

    # Same answer as a bad password so deactivation doesn't leak.
    if not user.is_active:
        raise _invalid_credentials()

    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role}
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60
    }


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: ForgotPasswordRequest,
    db: Session = Depends(get_db)
):
    """
    Request a password reset email.

    Always returns the same message so the endpoint can't be used to find
    out which emails have accounts.
    """
    email = request.email.lower()
    user = db.query(User).filter(User.email == email).first()

    if user and user.is_active:
        token = create_password_reset_token(str(user.id), user.email, user.password_hash)
        reset_url = f"{settings.WEB_APP_BASE_URL.rstrip('/')}/auth/reset-password?token={token}"
        sent = EmailService().send_password_reset(user.email, user.first_name, reset_url)
        if sent:
            logger.info(f"Password reset email sent to {email}")
        else:
            logger.warning(f"Password reset email not delivered to {email}")
    else:
        logger.info(f"Password reset requested for unknown or inactive account {email}")

    return {"success": True, "message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    request: ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    """
    Reset password using a token from the reset email.

    Tokens expire after an hour and stop working once the password changes.
    """
    if len(request.new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            field="new_password",
        )

    payload = decode_password_reset_token(request.token)
    if not payload:
        raise _invalid_reset_token()

    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise _invalid_reset_token()

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise _invalid_reset_token()
    if payload.get("pwh") != password_fingerprint(user.password_hash):
        logger.info(f"Rejected reused or superseded reset token for {user.email}")
        raise _invalid_reset_token()

    user.password_hash = get_password_hash(request.new_password)
    db.commit()

    logger.info(f"Password reset completed for {user.email}")

    return {"success": True, "message": "Password has been reset. You can now log in with your new password."}


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current authenticated user information."""
    return current_user
