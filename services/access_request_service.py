"""
Official access requests: submission, review and login-time enforcement.

pending -> approved | rejected; both outcomes are terminal. Approval and the
matching user_roles upsert commit in one transaction.
"""
from datetime import datetime
from typing import Optional, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import AccessRequest, AccessRequestStatus, RoleName
from core.exceptions import (
    AuthorizationError, IntegrityError, NotFoundError, StateError, ValidationError
)
from core.validators import normalize_email
from services.role_service import AppRole, RoleService
from core.logger import logger


# (code, message) shown when an official sign-in is refused, keyed by latest request status
LOGIN_DENIALS = {
    AccessRequestStatus.PENDING: (
        "pending_approval",
        "Your official access request is pending approval.",
    ),
    AccessRequestStatus.REJECTED: (
        "request_rejected",
        "Your official access request was rejected. Please contact the administrator.",
    ),
    AccessRequestStatus.APPROVED: (
        "approval_not_active",
        "Your request was approved but access is not yet active. Please try again shortly.",
    ),
    None: (
        "no_access",
        "You do not have official access. Please request access first.",
    ),
}

REVIEWER_ROLES = (AppRole.OFFICIAL, AppRole.STAFF)


class AccessRequestService:
    """Service for the official access request workflow."""

    @staticmethod
    def submit(
        db: Session,
        user_id: int,
        full_name: str,
        email: str,
        reason: Optional[str] = None
    ) -> AccessRequest:
        """
        Create a pending request for ``user_id``.

        Raises:
            StateError: the user already has a pending request
        """
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationError("Full name is required", field="fullName")
        email = normalize_email(email)

        existing = db.query(AccessRequest.id).filter(
            AccessRequest.user_id == user_id,
            AccessRequest.status == AccessRequestStatus.PENDING
        ).first()
        if existing:
            raise StateError("You already have a pending access request")

        access_request = AccessRequest(
            user_id=user_id,
            full_name=full_name,
            email=email,
            reason=(reason or "").strip() or None,
            status=AccessRequestStatus.PENDING,
        )
        db.add(access_request)
        db.commit()
        db.refresh(access_request)
        logger.info(f"Access request {access_request.id} submitted by user {user_id}")
        return access_request

    @staticmethod
    def latest_for_user(db: Session, user_id: int) -> Optional[AccessRequest]:
        """Most recent request of a user, or None."""
        return db.query(AccessRequest).filter(
            AccessRequest.user_id == user_id
        ).order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc()).first()

    @staticmethod
    def list_requests(
        db: Session,
        viewer_id: int,
        viewer_role: AppRole,
        status: Optional[AccessRequestStatus] = None
    ) -> List[AccessRequest]:
        """Reviewers see every request; everybody else sees their own."""
        query = db.query(AccessRequest)
        if viewer_role not in REVIEWER_ROLES:
            query = query.filter(AccessRequest.user_id == viewer_id)
        if status is not None:
            query = query.filter(AccessRequest.status == status)
        return query.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc()).all()

    @staticmethod
    def review(
        db: Session,
        request_id: int,
        reviewer_id: int,
        decision: AccessRequestStatus
    ) -> AccessRequest:
        """
        Approve or reject a pending request.

        On approval the requester gets a user_roles(official) row in the same
        transaction. The reviewer's role is resolved here from user_roles.

        Raises:
            AuthorizationError: reviewer is not official or staff
            NotFoundError: no such request
            StateError: request is no longer pending
            IntegrityError: the writes failed and were rolled back
        """
        if decision not in (AccessRequestStatus.APPROVED, AccessRequestStatus.REJECTED):
            raise ValidationError("Decision must be 'approved' or 'rejected'", field="decision")

        reviewer_role = RoleService.resolve_role(db, reviewer_id)
        if reviewer_role not in REVIEWER_ROLES:
            logger.warning(f"User {reviewer_id} ({reviewer_role.value}) tried to review access request {request_id}")
            raise AuthorizationError("Only officials or staff can review access requests")

        access_request = db.query(AccessRequest).filter(AccessRequest.id == request_id).first()
        if access_request is None:
            raise NotFoundError("Access request not found")
        if access_request.status != AccessRequestStatus.PENDING:
            raise StateError(f"Access request has already been {access_request.status.value}")

        now = datetime.utcnow()
        try:
            # Conditional on pending so two concurrent reviews cannot both win
            updated = db.query(AccessRequest).filter(
                AccessRequest.id == request_id,
                AccessRequest.status == AccessRequestStatus.PENDING
            ).update({
                "status": decision,
                "reviewed_by": reviewer_id,
                "reviewed_at": now,
                "updated_at": now,
            }, synchronize_session=False)
            if updated != 1:
                db.rollback()
                raise StateError("Access request has already been reviewed")

            if decision == AccessRequestStatus.APPROVED:
                RoleService.upsert_role(db, access_request.user_id, RoleName.OFFICIAL, granted_by=reviewer_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Review of access request {request_id} failed: {e}", exc_info=True)
            raise IntegrityError("Could not save the review. No changes were made.") from e

        db.refresh(access_request)
        logger.info(f"Access request {request_id} {decision.value} by user {reviewer_id}")
        return access_request

    @staticmethod
    def login_denial(db: Session, user_id: int) -> Tuple[str, str]:
        """(code, message) explaining why an official sign-in was refused."""
        latest = AccessRequestService.latest_for_user(db, user_id)
        return LOGIN_DENIALS[latest.status if latest else None]
