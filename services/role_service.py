"""
Role resolution and role assignment.

A user may hold several user_roles rows (student is inserted at sign-up,
official is added on approval). The effective role is picked by priority.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError as SAIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import RoleAssignment, RoleName
from core.logger import logger


class AppRole(str, enum.Enum):
    """Effective role of a signed-in identity."""
    STUDENT = "student"
    OFFICIAL = "official"
    STAFF = "staff"
    NONE = "none"


# First match wins
ROLE_PRIORITY = (RoleName.OFFICIAL, RoleName.STAFF, RoleName.STUDENT)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class RoleService:
    """Service for reading and writing role assignments."""

    @staticmethod
    def resolve_role(db: Session, user_id: Optional[int]) -> AppRole:
        """
        Return the single effective role for a user.

        official > staff > student > none. A lookup failure yields NONE;
        callers must treat NONE as "not signed in".
        """
        if user_id is None:
            return AppRole.NONE
        try:
            rows = db.query(RoleAssignment.role).filter(RoleAssignment.user_id == user_id).all()
        except SQLAlchemyError as e:
            logger.error(f"Role lookup failed for user {user_id}: {e}", exc_info=True)
            db.rollback()
            return AppRole.NONE

        held = {row.role for row in rows}
        for role in ROLE_PRIORITY:
            if role in held:
                return AppRole(role.value)
        return AppRole.NONE

    @staticmethod
    def has_role(db: Session, user_id: int, role: RoleName) -> bool:
        """True if the user holds a user_roles row for ``role``."""
        return db.query(RoleAssignment.id).filter(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role == role
        ).first() is not None

    @staticmethod
    def upsert_role(
        db: Session,
        user_id: int,
        role: RoleName,
        granted_by: Optional[int] = None
    ) -> None:
        """
        Insert (user_id, role), or touch the existing row, in one statement.

        Does not commit; callers own the transaction.
        """
        now = datetime.utcnow()
        insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(RoleAssignment).values(
                user_id=user_id,
                role=role,
                granted_by=granted_by,
                created_at=now,
                updated_at=now,
            ).on_conflict_do_update(
                index_elements=["user_id", "role"],
                set_={"granted_by": granted_by, "updated_at": now},
            )
            db.execute(stmt)
            return

        # Other dialects: savepoint insert, update on unique violation
        try:
            with db.begin_nested():
                db.add(RoleAssignment(user_id=user_id, role=role, granted_by=granted_by))
        except SAIntegrityError:
            db.query(RoleAssignment).filter(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role == role
            ).update({"granted_by": granted_by, "updated_at": now}, synchronize_session=False)

    @staticmethod
    def assign_role(db: Session, user_id: int, role: RoleName, granted_by: Optional[int] = None) -> None:
        """
        Make ``role`` the user's only role (direct promotion/demotion by an official).

        Does not commit.
        """
        db.query(RoleAssignment).filter(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role != role
        ).delete(synchronize_session=False)
        RoleService.upsert_role(db, user_id, role, granted_by=granted_by)
        logger.info(f"Assigned role {role.value} to user {user_id} (by {granted_by})")
