"""
User and role management APIs (officials).
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from pydantic import BaseModel
from sqlalchemy import or_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Profile, RoleName, User
from auth.dependencies import AuthContext, get_db_session, require_official
from core.validators import LIKE_ESCAPE, contains_pattern
from services.audit_service import AuditService
from services.role_service import RoleService
from core.logger import logger


router = APIRouter(prefix="/api/users", tags=["users"])


class RoleUpdate(BaseModel):
    role: str  # student | official | staff


class UserListResponse(BaseModel):
    data: List[dict]
    total: int
    page: int
    limit: int


def _to_dict(db: Session, user: User, profile: Optional[Profile]) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "fullName": profile.full_name if profile else None,
        "registerNo": profile.register_no if profile else None,
        "role": RoleService.resolve_role(db, user.id).value,
        "isActive": user.is_active,
        "createdAt": user.created_at.isoformat(),
        "lastLogin": user.last_login.isoformat() if user.last_login else None,
    }


@router.get("", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    context: AuthContext = Depends(require_official),
    db: Session = Depends(get_db_session)
):
    """
    List users with their resolved role.
    Officials only.
    """
    query = db.query(User, Profile).outerjoin(Profile, Profile.user_id == User.id)

    if search:
        pattern = contains_pattern(search.strip().lower())
        query = query.filter(or_(
            func.lower(User.email).like(pattern, escape=LIKE_ESCAPE),
            func.lower(func.coalesce(Profile.full_name, "")).like(pattern, escape=LIKE_ESCAPE),
            func.lower(func.coalesce(Profile.register_no, "")).like(pattern, escape=LIKE_ESCAPE),
        ))

    total = query.count()
    offset = (page - 1) * limit
    rows = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()

    return UserListResponse(
        data=[_to_dict(db, user, profile) for user, profile in rows],
        total=total,
        page=page,
        limit=limit
    )


@router.put("/{user_id}/role")
async def set_user_role(
    user_id: int,
    payload: RoleUpdate,
    request: Request,
    context: AuthContext = Depends(require_official),
    db: Session = Depends(get_db_session)
):
    """
    Replace a user's role.
    Officials only; an official cannot change their own role.
    """
    try:
        role = RoleName(payload.role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": "role", "message": f"Role must be one of: {', '.join(r.value for r in RoleName)}"}
        )

    if user_id == context.user.id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You cannot change your own role"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    try:
        RoleService.assign_role(db, user_id, role, granted_by=context.user.id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to set role of user {user_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not update the role. No changes were made."
        )

    AuditService.log_from_request(
        db=db,
        request=request,
        action="role_update",
        user_id=context.user.id,
        resource_type="user",
        resource_id=str(user_id),
        details={"role": role.value}
    )
    logger.info(f"User {context.user.id} set role of user {user_id} to {role.value}")

    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    return _to_dict(db, user, profile)
