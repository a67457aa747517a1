"""
Authentication service: sign-up, credential checks, sessions and tokens.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func

from database.models import User, Profile, RoleName, RefreshToken, Session as DBSession
from auth.security import (
    verify_password, get_password_hash, validate_password, create_access_token,
    create_refresh_token, decode_refresh_token, generate_session_key,
    generate_refresh_token_hash
)
from core.exceptions import ValidationError, StateError
from core.validators import normalize_email, normalize_register_no
from services.role_service import AppRole, RoleService
from core.logger import logger
import config


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    def register_user(
        db: Session,
        email: str,
        password: str,
        full_name: str,
        register_no: Optional[str] = None,
    ) -> User:
        """
        Create an identity with its profile and the default student role.

        All three rows are committed together.

        Raises:
            ValidationError: bad password, name or registration number
            StateError: email or registration number already in use
        """
        email = normalize_email(email)
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationError("Full name is required", field="fullName")

        is_valid, error_message = validate_password(password)
        if not is_valid:
            raise ValidationError(error_message, field="password")

        if register_no is not None and register_no.strip():
            register_no = normalize_register_no(register_no)
        else:
            register_no = None

        if db.query(User.id).filter(func.lower(User.email) == email).first():
            raise StateError("An account with this email already exists")
        if register_no and db.query(Profile.id).filter(Profile.register_no == register_no).first():
            raise StateError("This registration number is already registered")

        user = User(
            email=email,
            hashed_password=get_password_hash(password),
            is_active=True,
            password_changed_at=datetime.utcnow(),
        )
        db.add(user)
        db.flush()
        db.add(Profile(user_id=user.id, full_name=full_name, email=email, register_no=register_no))
        RoleService.upsert_role(db, user.id, RoleName.STUDENT)
        db.commit()
        db.refresh(user)
        logger.info(f"Registered user {user.id} ({email})")
        return user

    @staticmethod
    def find_user(db: Session, identifier: str) -> Optional[User]:
        """Look a user up by email, or by registration number for students."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        if "@" in identifier:
            return db.query(User).filter(func.lower(User.email) == identifier.lower()).first()
        return db.query(User).join(Profile, Profile.user_id == User.id).filter(
            Profile.register_no == identifier.upper()
        ).first()

    @staticmethod
    def authenticate_user(db: Session, identifier: str, password: str) -> Optional[User]:
        """
        Authenticate a user with account lockout protection.

        Args:
            db: Database session
            identifier: Email, or registration number
            password: Plain text password

        Returns:
            User if authenticated, None otherwise
        """
        user = AuthService.find_user(db, identifier)
        if not user:
            return None

        if user.is_locked:
            if user.locked_until and user.locked_until > datetime.utcnow():
                logger.warning(f"Login attempt for locked account: {user.email}")
                return None
            # Lockout expired
            user.is_locked = False
            user.locked_until = None
            user.failed_login_attempts = 0

        if not verify_password(password, user.hashed_password):
            user.failed_login_attempts += 1
            if user.failed_login_attempts >= config.MAX_LOGIN_ATTEMPTS:
                user.is_locked = True
                user.locked_until = datetime.utcnow() + timedelta(minutes=config.LOCKOUT_DURATION_MINUTES)
                logger.warning(f"Account locked due to too many failed attempts: {user.email}")
            db.commit()
            return None

        if not user.is_active:
            return None

        user.failed_login_attempts = 0
        user.is_locked = False
        user.locked_until = None
        user.last_login = datetime.utcnow()
        db.commit()
        return user

    @staticmethod
    def create_session(
        db: Session,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> DBSession:
        """Create a server-side session for the user."""
        _, encrypted_key, session_hash = generate_session_key()
        session = DBSession(
            user_id=user_id,
            session_key=encrypted_key,
            session_hash=session_hash,
            device_info=user_agent[:255] if user_agent else None,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=datetime.utcnow() + timedelta(hours=config.SESSION_EXPIRE_HOURS),
            is_active=True
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        logger.info(f"Created session {session.id} for user: {user_id}")
        return session

    @staticmethod
    def issue_tokens(
        db: Session,
        user: User,
        role: AppRole,
        session: DBSession,
        ip_address: Optional[str] = None
    ) -> Tuple[str, str]:
        """
        Create access and refresh tokens bound to ``session``.

        The role claim is informational; authorization always re-resolves it.
        """
        data = {
            "sub": str(user.id),
            "sid": session.id,
            "email": user.email,
            "role": role.value,
        }
        access_token = create_access_token(data)
        refresh_token = create_refresh_token(data)

        db.add(RefreshToken(
            user_id=user.id,
            session_id=session.id,
            token_hash=generate_refresh_token_hash(refresh_token),
            device_info=session.device_info,
            ip_address=ip_address,
            expires_at=datetime.utcnow() + timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
        ))
        db.commit()
        return access_token, refresh_token

    @staticmethod
    def refresh_access_token(db: Session, refresh_token: str) -> Optional[Tuple[str, User]]:
        """
        Exchange a refresh token for a new access token.

        Returns None when the token is invalid, revoked, expired, or its
        session has been signed out.
        """
        payload = decode_refresh_token(refresh_token)
        if payload is None:
            return None

        stored = db.query(RefreshToken).filter(
            RefreshToken.token_hash == generate_refresh_token_hash(refresh_token),
            RefreshToken.is_revoked == False
        ).first()
        if stored is None or stored.expires_at < datetime.utcnow():
            return None

        session = db.query(DBSession).filter(
            DBSession.id == stored.session_id,
            DBSession.is_active == True
        ).first()
        user = db.query(User).filter(User.id == stored.user_id).first()
        if session is None or user is None or not user.is_active:
            return None

        stored.last_used_at = datetime.utcnow()
        role = RoleService.resolve_role(db, user.id)
        access_token = create_access_token({
            "sub": str(user.id),
            "sid": session.id,
            "email": user.email,
            "role": role.value,
        })
        db.commit()
        return access_token, user

    @staticmethod
    def sign_out(db: Session, user_id: int, session_id: Optional[int] = None) -> int:
        """
        Terminate sessions and revoke their refresh tokens.

        Args:
            user_id: Whose sessions to terminate
            session_id: Only this session; all of the user's sessions when None

        Returns:
            Number of sessions deactivated
        """
        query = db.query(DBSession).filter(DBSession.user_id == user_id, DBSession.is_active == True)
        if session_id is not None:
            query = query.filter(DBSession.id == session_id)
        sessions = query.all()
        session_ids = [s.id for s in sessions]
        for session in sessions:
            session.is_active = False

        tokens = db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked == False
        )
        if session_id is not None:
            tokens = tokens.filter(RefreshToken.session_id == session_id)
        now = datetime.utcnow()
        for token in tokens.all():
            token.is_revoked = True
            token.revoked_at = now

        db.commit()
        logger.info(f"Signed out user {user_id} ({len(session_ids)} session(s))")
        return len(session_ids)

    @staticmethod
    def set_password(user: User, new_password: str) -> None:
        """Replace the stored hash. Caller validates and commits."""
        user.hashed_password = get_password_hash(new_password)
        user.password_changed_at = datetime.utcnow()
        user.failed_login_attempts = 0
        user.is_locked = False
        user.locked_until = None
