"""
Authentication dependencies for FastAPI.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException, status, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database.models import User, Session as DBSession
from auth.security import security, security_optional, decode_access_token
from services.role_service import AppRole, RoleService
from core.logger import logger
import config


@dataclass
class AuthContext:
    """Verified caller: identity, server-side session and resolved role."""
    user: User
    session_id: int
    role: AppRole


def get_db_session():
    """Get database session."""
    if not config.db:
        raise HTTPException(status_code=503, detail="Database not initialized")
    with config.db.get_session() as session:
        yield session


def get_object_store():
    """Get the attachment store (S3 or local uploads directory)."""
    if config.object_store is None:
        raise HTTPException(status_code=503, detail="File storage not initialized")
    return config.object_store


def authenticate_token(token: str, db: Session) -> tuple[User, DBSession]:
    """
    Validate an access token against the database.

    The token must decode, reference an active unexpired session, and
    belong to an active user. Raises HTTPException otherwise.
    """
    payload = decode_access_token(token)
    if payload is None or payload.get("sub") is None or payload.get("sid") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = db.query(DBSession).filter(
        DBSession.id == payload["sid"],
        DBSession.is_active == True
    ).first()
    if session is None or session.expires_at < datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or signed out",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == int(payload["sub"])).first()
    if user is None or session.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    session.last_activity = datetime.utcnow()
    return user, session


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Security(security),
    db: Session = Depends(get_db_session)
) -> AuthContext:
    """
    Resolve the caller from the bearer token.

    The role comes from user_roles, never from token claims.
    """
    user, session = authenticate_token(credentials.credentials, db)
    return AuthContext(user=user, session_id=session.id, role=RoleService.resolve_role(db, user.id))


async def get_optional_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security_optional),
    db: Session = Depends(get_db_session)
) -> Optional[AuthContext]:
    """Caller context if a valid bearer token was sent, otherwise None."""
    if credentials is None:
        return None
    try:
        return await get_auth_context(credentials, db)
    except HTTPException:
        return None


def require_role(allowed_roles: list[AppRole]):
    """
    Dependency factory for role-based access control.

    Args:
        allowed_roles: Roles allowed to call the endpoint

    Returns:
        Dependency returning the caller's AuthContext
    """
    async def role_checker(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if context.role == AppRole.NONE:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Unable to verify access. Please sign in again."
            )
        if context.role not in allowed_roles:
            logger.warning(
                f"Access denied for user {context.user.id} (role {context.role.value}); "
                f"required: {', '.join(r.value for r in allowed_roles)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden"
            )
        return context

    return role_checker


require_official = require_role([AppRole.OFFICIAL])
require_reviewer = require_role([AppRole.OFFICIAL, AppRole.STAFF])
require_student = require_role([AppRole.STUDENT])
