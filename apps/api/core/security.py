"""
Security utilities for authentication and authorization.

Provides:
- Password hashing (bcrypt)
- Placeholder credential generation for payment-first signups
- JWT token generation and validation
- Single-use password reset tokens

SECURITY REQUIREMENTS:
- SECRET_KEY must be set via environment variable
- SECRET_KEY must be cryptographically secure (32+ characters)
- SECRET_KEY must be different for each environment (dev/staging/prod)
- SECRET_KEY must NEVER be committed to source control
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import hashlib
import secrets
import string
from jose import JWTError, jwt
import bcrypt
from core.config import settings

# JWT settings - config.py rejects a missing or short SECRET_KEY at startup
SECRET_KEY = settings.SECRET_KEY

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
PASSWORD_RESET_EXPIRE_MINUTES = 60
PASSWORD_RESET_PURPOSE = "password_reset"

PLACEHOLDER_PASSWORD_LENGTH = 12
_PLACEHOLDER_ALPHABET = string.ascii_letters + string.digits


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def generate_placeholder_password(length: int = PLACEHOLDER_PASSWORD_LENGTH) -> str:
    """Random alphanumeric credential for accounts created by a checkout."""
    return "".join(secrets.choice(_PLACEHOLDER_ALPHABET) for _ in range(length))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def password_fingerprint(password_hash: Optional[str]) -> str:
    """Short digest of the stored hash; changes whenever the password does."""
    return hashlib.sha256((password_hash or "").encode("utf-8")).hexdigest()[:16]


def create_password_reset_token(
    user_id: str,
    email: str,
    password_hash: Optional[str],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a password reset token.

    The token carries a fingerprint of the current password hash, so it stops
    working as soon as the password is changed. That makes it single-use
    without a token table.
    """
    return create_access_token(
        {
            "sub": user_id,
            "email": email,
            "purpose": PASSWORD_RESET_PURPOSE,
            "pwh": password_fingerprint(password_hash),
        },
        expires_delta or timedelta(minutes=PASSWORD_RESET_EXPIRE_MINUTES),
    )


def decode_password_reset_token(token: str) -> Optional[Dict]:
    """Decode a reset token; None if invalid, expired or issued for another purpose."""
    payload = decode_access_token(token)
    if not payload or payload.get("purpose") != PASSWORD_RESET_PURPOSE or not payload.get("sub"):
        return None
    return payload
