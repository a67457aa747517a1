"""
Official access request APIs.
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database.models import AccessRequest, AccessRequestStatus, Profile
from auth.dependencies import AuthContext, get_auth_context, get_db_session, require_reviewer
from core.exceptions import CampusReportsError, to_http_exception
from services.access_request_service import AccessRequestService
from services.audit_service import AuditService


router = APIRouter(prefix="/api/access-requests", tags=["access-requests"])


class AccessRequestCreate(BaseModel):
    fullName: Optional[str] = None
    reason: Optional[str] = None


class ReviewRequest(BaseModel):
    decision: str  # approved | rejected


class AccessRequestListResponse(BaseModel):
    data: List[dict]
    total: int


def _to_dict(access_request: AccessRequest) -> dict:
    return {
        "id": access_request.id,
        "userId": access_request.user_id,
        "fullName": access_request.full_name,
        "email": access_request.email,
        "reason": access_request.reason,
        "status": access_request.status.value,
        "reviewedBy": access_request.reviewed_by,
        "reviewedAt": access_request.reviewed_at.isoformat() if access_request.reviewed_at else None,
        "createdAt": access_request.created_at.isoformat(),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_access_request(
    payload: AccessRequestCreate,
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session)
):
    """File an official access request for the signed-in user."""
    full_name = payload.fullName
    if not full_name:
        profile = db.query(Profile).filter(Profile.user_id == context.user.id).first()
        full_name = profile.full_name if profile else None
    try:
        access_request = AccessRequestService.submit(
            db, context.user.id, full_name, context.user.email, payload.reason
        )
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="access_request_submit",
        user_id=context.user.id,
        resource_type="access_request",
        resource_id=str(access_request.id)
    )
    return _to_dict(access_request)


@router.get("", response_model=AccessRequestListResponse)
async def list_access_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session)
):
    """
    List access requests, newest first.
    Officials and staff see all; other callers only their own.
    """
    parsed = None
    if status_filter:
        try:
            parsed = AccessRequestStatus(status_filter.lower())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status: {status_filter}"
            )
    requests = AccessRequestService.list_requests(db, context.user.id, context.role, parsed)
    return AccessRequestListResponse(data=[_to_dict(r) for r in requests], total=len(requests))


@router.get("/latest")
async def latest_access_request(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session)
):
    """The caller's most recent request, or null."""
    latest = AccessRequestService.latest_for_user(db, context.user.id)
    return {"data": _to_dict(latest) if latest else None}


@router.post("/{request_id}/review")
async def review_access_request(
    request_id: int,
    payload: ReviewRequest,
    request: Request,
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """
    Approve or reject a pending request.
    Approval grants the official role in the same transaction.
    """
    try:
        decision = AccessRequestStatus(payload.decision.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": "decision", "message": "Decision must be 'approved' or 'rejected'"}
        )

    try:
        access_request = AccessRequestService.review(db, request_id, context.user.id, decision)
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action=f"access_request_{decision.value}",
        user_id=context.user.id,
        resource_type="access_request",
        resource_id=str(request_id),
        details={"requester": access_request.user_id}
    )
    return _to_dict(access_request)
