"""
Maintenance APIs: bulk purge of reports and stored photos (officials).
"""
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, get_auth_context, get_db_session, get_object_store
from core.exceptions import CampusReportsError, to_http_exception
from services.audit_service import AuditService
from services.maintenance_service import MaintenanceService, PurgeScope


router = APIRouter(prefix="/api/maintenance", tags=["maintenance"])


class PurgeRequest(BaseModel):
    scope: PurgeScope = PurgeScope.RESOLVED
    confirm: str


@router.get("/purge/preview")
async def preview_purge(
    scope: PurgeScope = Query(PurgeScope.RESOLVED),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """What a purge of ``scope`` would delete, and the phrase that confirms it."""
    try:
        plan = MaintenanceService.preview(db, store, context.user.id, scope)
    except CampusReportsError as e:
        raise to_http_exception(e)
    return plan.as_dict()


@router.post("/purge")
async def purge(
    payload: PurgeRequest,
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Permanently delete reports and their photos.
    Officials only; ``confirm`` must match the phrase from the preview.
    """
    try:
        result = MaintenanceService.purge(db, store, context.user.id, payload.scope, payload.confirm)
    except CampusReportsError as e:
        AuditService.log_from_request(
            db=db,
            request=request,
            action="purge_refused",
            user_id=context.user.id,
            resource_type="report",
            details={"scope": payload.scope.value, "error": e.message}
        )
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="purge",
        user_id=context.user.id,
        resource_type="report",
        details=result.as_dict()
    )
    return result.as_dict()
