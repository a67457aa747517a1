"""
Dashboard APIs for the command center and staff work queue.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database.models import AccessRequest, AccessRequestStatus
from auth.dependencies import AuthContext, get_db_session, get_object_store, require_reviewer
from core.exceptions import CampusReportsError
from services.maintenance_service import MaintenanceService
from services.report_service import ReportService
from core.logger import logger


router = APIRouter(prefix="/api/dashboards", tags=["dashboards"])

RECENT_REPORTS_LIMIT = 10


@router.get("/command-center")
async def command_center(
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Report totals by status, attachment store usage and recent reports.
    Officials and staff only.
    """
    try:
        storage = MaintenanceService.storage_usage(store)
    except CampusReportsError as e:
        # Stats still render without the store
        logger.warning(f"Storage usage unavailable: {e}")
        storage = None

    recent = ReportService.query_reports(db, context.user.id, context.role).limit(RECENT_REPORTS_LIMIT).all()
    pending_requests = db.query(AccessRequest).filter(
        AccessRequest.status == AccessRequestStatus.PENDING
    ).count()

    return {
        "reports": ReportService.status_counts(db),
        "storage": storage,
        "pendingAccessRequests": pending_requests,
        "recentReports": [ReportService.serialize(r, p, store) for r, p in recent],
    }
