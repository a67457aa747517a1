"""
Security utilities for authentication.
Includes password hashing, encryption, JWT access/refresh tokens and session keys.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
import bcrypt
from fastapi.security import HTTPBearer
from cryptography.fernet import Fernet
import binascii
import secrets
import hashlib
import base64

from core.logger import logger
import config

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=config.BCRYPT_ROUNDS
)

# Security schemes
security = HTTPBearer()
security_optional = HTTPBearer(auto_error=False)

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


# Encryption utilities
def get_encryption_key() -> bytes:
    """
    Get encryption key from config.
    If not set, generate one (not recommended for production).
    """
    encryption_key = getattr(config, 'ENCRYPTION_KEY', None)
    if not encryption_key:
        logger.warning("ENCRYPTION_KEY not set, generating temporary key (not secure for production!)")
        encryption_key = Fernet.generate_key().decode()
        config.ENCRYPTION_KEY = encryption_key

    try:
        key_bytes = base64.urlsafe_b64decode(encryption_key + '==')
    except (binascii.Error, ValueError):
        key_bytes = b""
    if len(key_bytes) != 32:
        # Not a Fernet key: derive 32 bytes from whatever was configured
        key_bytes = hashlib.sha256(str(encryption_key).encode()).digest()

    return base64.urlsafe_b64encode(key_bytes)


def encrypt_data(data: str) -> str:
    """
    Encrypt sensitive data using Fernet symmetric encryption.

    Args:
        data: Data to encrypt

    Returns:
        Encrypted string (base64)
    """
    f = Fernet(get_encryption_key())
    return f.encrypt(data.encode()).decode()


def decrypt_data(encrypted_data: str) -> str:
    """Decrypt data produced by encrypt_data."""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted_data.encode()).decode()


# Password utilities
def validate_password(password: str, min_length: int = 6) -> Tuple[bool, Optional[str]]:
    """
    Validate password strength.

    Requirements:
    - Minimum length (6 at sign-up, 8 for resets)
    - At least 1 number
    - At least 1 special character
    - Maximum 72 bytes (bcrypt limit)

    Args:
        password: Password to validate
        min_length: Minimum number of characters

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < min_length:
        return False, f"Password must be at least {min_length} characters long"

    if len(password.encode('utf-8')) > 72:
        return False, "Password cannot be longer than 72 bytes. Please use a shorter password."

    if not any(char.isdigit() for char in password):
        return False, "Password must contain at least one number"

    if not any(char in SPECIAL_CHARS for char in password):
        return False, f"Password must contain at least one special character ({SPECIAL_CHARS})"

    return True, None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Hash not in raw bcrypt format; let passlib identify it
        return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Password validation should be done before calling this function.
    Use validate_password() to check password requirements.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        raise ValueError("Password cannot be longer than 72 bytes. Please use a shorter password.")

    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


# JWT Token utilities
def _encode_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    now = datetime.utcnow()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
        "jti": secrets.token_hex(8),
    })
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode (sub, sid, ...)
        expires_delta: Optional expiration time

    Returns:
        Encoded JWT token
    """
    return _encode_token(
        data, "access", expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token."""
    return _encode_token(
        data, "refresh", expires_delta or timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
    )


def _decode_token(token: str, token_type: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT access token.

    Returns:
        Decoded token data or None if invalid
    """
    return _decode_token(token, "access")


def decode_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify a JWT refresh token."""
    return _decode_token(token, "refresh")


# Session utilities
def generate_session_key() -> Tuple[str, str, str]:
    """
    Generate a new session key.

    Returns:
        Tuple of (session_key, encrypted_session_key, session_hash)
    """
    session_key = secrets.token_urlsafe(32)
    session_hash = hashlib.sha256(session_key.encode()).hexdigest()
    encrypted_key = encrypt_data(session_key)
    return session_key, encrypted_key, session_hash


def generate_refresh_token_hash(token: str) -> str:
    """Hash a refresh token for storage/comparison."""
    return hashlib.sha256(token.encode()).hexdigest()
