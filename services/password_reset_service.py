"""
Password reset with emailed one-time codes.

Codes are 6 digits, valid for a fixed 10 minutes, and single use. Requesting
a code invalidates every earlier unused code for the same address. Neither
step reveals whether an address is registered.
"""
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple, TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import PasswordResetCode, Profile, User
from auth.security import validate_password
from core.exceptions import TransientError, ValidationError
from core.validators import normalize_email
from services.auth_service import AuthService
from services.email_service import EmailService
from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail

INVALID_CODE_MESSAGE = "Invalid or expired code. Please request a new one."


class PasswordResetService:
    """Service for the forgot-password flow."""

    @staticmethod
    def generate_code() -> str:
        """Uniform over 000000-999999."""
        return f"{secrets.randbelow(1_000_000):06d}"

    @staticmethod
    def issue_code(db: Session, email: str) -> Tuple[PasswordResetCode, Optional[Profile]]:
        """
        Store a fresh code for ``email`` and invalidate older unused ones.

        Returns:
            The new code row and the matching profile (None for unknown addresses)
        """
        email = normalize_email(email)
        now = datetime.utcnow()

        db.query(PasswordResetCode).filter(
            PasswordResetCode.email == email,
            PasswordResetCode.used == False
        ).update({"used": True}, synchronize_session=False)

        reset_code = PasswordResetCode(
            email=email,
            code=PasswordResetService.generate_code(),
            expires_at=now + timedelta(minutes=config.RESET_CODE_TTL_MINUTES),
            used=False,
            created_at=now,
        )
        db.add(reset_code)
        db.commit()
        db.refresh(reset_code)

        profile = db.query(Profile).filter(func.lower(Profile.email) == email).first()
        return reset_code, profile

    @staticmethod
    async def request_code(db: Session, email: str, fm: Optional["FastMail"]) -> None:
        """
        Issue and email a reset code.

        Raises:
            TransientError: email is not configured or delivery failed
        """
        if fm is None:
            raise TransientError(
                "Email service not configured. Set SMTP_USER and SMTP_PASSWORD.",
                status_code=503,
            )
        reset_code, profile = PasswordResetService.issue_code(db, email)
        sent = await EmailService.send_reset_code_email(
            reset_code.email,
            reset_code.code,
            fm,
            full_name=profile.full_name if profile else None,
        )
        if not sent:
            raise TransientError("Failed to send reset code email")
        logger.info(f"Password reset code issued for {reset_code.email} (registered: {profile is not None})")

    @staticmethod
    def verify_and_reset(db: Session, email: str, code: str, new_password: str) -> User:
        """
        Consume a code and set a new password.

        The newest unused, unexpired row matching email and code is consumed
        with a conditional update so it can succeed only once.

        Raises:
            ValidationError: weak password, or the generic invalid-code error
        """
        is_valid, error_message = validate_password(new_password, min_length=config.RESET_PASSWORD_MIN_LENGTH)
        if not is_valid:
            raise ValidationError(error_message, field="newPassword")

        email = normalize_email(email)
        code = (code or "").strip()
        if len(code) != 6 or not code.isdigit():
            raise ValidationError(INVALID_CODE_MESSAGE)

        now = datetime.utcnow()
        reset_code = db.query(PasswordResetCode).filter(
            PasswordResetCode.email == email,
            PasswordResetCode.code == code,
            PasswordResetCode.used == False,
            PasswordResetCode.expires_at >= now
        ).order_by(PasswordResetCode.created_at.desc(), PasswordResetCode.id.desc()).first()
        if reset_code is None:
            raise ValidationError(INVALID_CODE_MESSAGE)

        user = db.query(User).filter(func.lower(User.email) == email).first()
        if user is None:
            raise ValidationError(INVALID_CODE_MESSAGE)

        consumed = db.query(PasswordResetCode).filter(
            PasswordResetCode.id == reset_code.id,
            PasswordResetCode.used == False
        ).update({"used": True}, synchronize_session=False)
        if consumed != 1:
            db.rollback()
            raise ValidationError(INVALID_CODE_MESSAGE)

        AuthService.set_password(user, new_password)
        db.commit()
        AuthService.sign_out(db, user.id)
        logger.info(f"Password reset completed for user {user.id}")
        return user
