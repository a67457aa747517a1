"""
Incident report APIs: submission, work queue, lifecycle, export and live feed.
"""
import asyncio
import json
import os
from datetime import datetime
from typing import Optional, List

from fastapi import (
    APIRouter, Depends, File, Form, HTTPException, Query, Request, Response,
    UploadFile, WebSocket, WebSocketDisconnect, status
)
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Profile
from auth.dependencies import (
    AuthContext, authenticate_token, get_auth_context, get_db_session, get_object_store,
    require_official, require_reviewer, require_student
)
from core.exceptions import CampusReportsError, ValidationError, to_http_exception
from core.validators import validate_file_size, validate_image_extension
from services.audit_service import AuditService
from services.maintenance_service import purge_in_progress, purges_started
from services.report_events import new_report_event, report_events
from services.report_service import ReportService, UNSET, parse_category, parse_status
from services.role_service import AppRole, RoleService
from storage.s3_paths import completion_photo_key, report_photo_key
from core.logger import logger
import config


router = APIRouter(prefix="/api/reports", tags=["reports"])

FEED_ROLES = (AppRole.OFFICIAL, AppRole.STAFF)
MAINTENANCE_MESSAGE = "Maintenance in progress. Please try again in a few minutes."
FEED_RECHECK_SECONDS = 30
FEED_CLOSE_INVALID_TOKEN = 4001
FEED_CLOSE_FORBIDDEN = 4003
FEED_CLOSE_REASONS = {FEED_CLOSE_INVALID_TOKEN: "Invalid token", FEED_CLOSE_FORBIDDEN: "Forbidden"}


class ReportUpdate(BaseModel):
    status: Optional[str] = None
    officialResponse: Optional[str] = None


class ReportListResponse(BaseModel):
    data: List[dict]
    total: int
    page: int
    limit: int


def _upload_size(upload: Optional[UploadFile]) -> int:
    if upload is None:
        return 0
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _check_photo(upload: Optional[UploadFile], field: str) -> None:
    """Validate an attached photo (presence, extension, size)."""
    if upload is None or not upload.filename or _upload_size(upload) <= 0:
        raise ValidationError("A photo is required", field=field)
    ok, error = validate_image_extension(upload.filename)
    if not ok:
        raise ValidationError(error, field=field)
    ok, error = validate_file_size(_upload_size(upload), config.MAX_IMAGE_SIZE_MB)
    if not ok:
        raise ValidationError(error, field=field)


async def _store_photo(store, upload: UploadFile, key: str) -> str:
    try:
        return await run_in_threadpool(
            store.upload_fileobj, upload.file, key, upload.content_type or "application/octet-stream"
        )
    except CampusReportsError as e:
        raise to_http_exception(e)


def _parse_filters(category: Optional[str], status_filter: Optional[str]):
    try:
        return (
            parse_category(category) if category else None,
            parse_status(status_filter) if status_filter else None,
        )
    except CampusReportsError as e:
        raise to_http_exception(e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    request: Request,
    category: str = Form(...),
    subCategory: str = Form(...),
    description: str = Form(...),
    landmark: Optional[str] = Form(None),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    isAnonymous: bool = Form(False),
    timeOfIncident: Optional[datetime] = Form(None),
    photo: Optional[UploadFile] = File(None),
    context: AuthContext = Depends(require_student),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Submit a report with its photo.
    Students only. Nothing is uploaded unless every field is valid.
    """
    purges_before = purges_started()
    if purge_in_progress():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=MAINTENANCE_MESSAGE)

    try:
        submission = ReportService.validate_submission(
            category=category,
            sub_category=subCategory,
            description=description,
            photo_filename=photo.filename if photo else None,
            photo_size=_upload_size(photo),
            landmark=landmark,
            latitude=latitude,
            longitude=longitude,
            is_anonymous=isAnonymous,
            time_of_incident=timeOfIncident,
        )
    except CampusReportsError as e:
        raise to_http_exception(e)

    image_key = await _store_photo(store, photo, report_photo_key(photo.filename))
    if purge_in_progress() or purges_started() != purges_before:
        # A purge ran during the upload and may already have removed the photo
        store.delete_objects([image_key])
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=MAINTENANCE_MESSAGE)
    try:
        report = ReportService.create_report(db, context.user.id, submission, image_key)
    except SQLAlchemyError:
        db.rollback()
        store.delete_objects([image_key])
        raise

    profile = db.query(Profile).filter(Profile.user_id == context.user.id).first()
    # Feed subscribers are reviewers, so the event carries the masked view
    report_events.publish(new_report_event(ReportService.serialize(report, profile, store)))

    AuditService.log_from_request(
        db=db,
        request=request,
        action="report_create",
        user_id=context.user.id,
        resource_type="report",
        resource_id=str(report.id),
        details={"category": report.category.value, "subCategory": report.sub_category}
    )
    return ReportService.serialize(report, profile, store, viewer_id=context.user.id)


@router.get("", response_model=ReportListResponse)
async def list_reports(
    category: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    open_only: bool = Query(False, alias="openOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    List reports, newest first.
    Students see their own submissions; officials and staff see the whole queue.
    """
    parsed_category, parsed_status = _parse_filters(category, status_filter)
    try:
        query = ReportService.query_reports(
            db, context.user.id, context.role,
            category=parsed_category, status=parsed_status, search=search, open_only=open_only,
        )
    except CampusReportsError as e:
        raise to_http_exception(e)

    total = query.count()
    offset = (page - 1) * limit
    rows = query.offset(offset).limit(limit).all()

    return ReportListResponse(
        data=[ReportService.serialize(r, p, store, viewer_id=context.user.id) for r, p in rows],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/export")
async def export_reports(
    category: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    format: str = Query("csv", pattern="^(csv|json)$"),
    request: Request = None,
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Export reports (CSV/JSON).
    Officials and staff only; anonymous submitters stay masked.
    """
    parsed_category, parsed_status = _parse_filters(category, status_filter)
    rows = ReportService.query_reports(
        db, context.user.id, context.role,
        category=parsed_category, status=parsed_status, search=search,
    ).all()

    AuditService.log_from_request(
        db=db,
        request=request,
        action="report_export",
        user_id=context.user.id,
        resource_type="report",
        details={"format": format, "count": len(rows)}
    )

    filename = f"reports_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}"
    if format == "csv":
        return Response(
            content=ReportService.export_csv(rows, store),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}.csv"}
        )

    data = [ReportService.serialize(r, p, store) for r, p in rows]
    return Response(
        content=json.dumps(data, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}.json"}
    )


def _feed_access(token: str):
    """
    Check a feed token against the database.

    Returns:
        Tuple of (close code or None while access holds, user id, role)
    """
    try:
        with config.db.get_session() as db:
            user, _ = authenticate_token(token, db)
            role = RoleService.resolve_role(db, user.id)
            user_id = user.id
    except HTTPException:
        return FEED_CLOSE_INVALID_TOKEN, None, None
    if role not in FEED_ROLES:
        return FEED_CLOSE_FORBIDDEN, user_id, role
    return None, user_id, role


@router.websocket("/feed")
async def report_feed(websocket: WebSocket, token: str = Query(...)):
    """
    Live stream of newly submitted reports for officials and staff.

    Connect with: ws://host/api/reports/feed?token=<access_token>
    Each message is ``{"type": "report_created", "report": {...}, "alert": {...}}``.
    Access is checked again before every event and while idle, so a sign-out
    or lost role closes the stream.
    """
    if not config.db:
        await websocket.close(code=1011, reason="Database not initialized")
        return
    close_code, user_id, role = _feed_access(token)
    if close_code:
        await websocket.close(code=close_code, reason=FEED_CLOSE_REASONS[close_code])
        return

    # Subscribed before accept so no event after the handshake is missed
    async with report_events.subscribe() as queue:
        await websocket.accept()
        logger.info(f"Report feed opened for user {user_id} ({role.value})")
        receiver = asyncio.ensure_future(websocket.receive_text())
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, timeout=FEED_RECHECK_SECONDS, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                if getter in done or not done:
                    close_code, _, _ = _feed_access(token)
                    if close_code:
                        logger.info(f"Report feed for user {user_id} revoked ({FEED_CLOSE_REASONS[close_code]})")
                        await websocket.close(code=close_code, reason=FEED_CLOSE_REASONS[close_code])
                        return
                if getter in done:
                    await websocket.send_json(getter.result())
                if receiver in done:
                    # Client messages are keep-alives; a close raises WebSocketDisconnect
                    receiver.result()
                    receiver = asyncio.ensure_future(websocket.receive_text())
        except WebSocketDisconnect:
            logger.info(f"Report feed closed for user {user_id}")
        finally:
            receiver.cancel()


@router.get("/{report_id}")
async def get_report(
    report_id: int,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """Report detail. Students can only open their own reports."""
    try:
        report, profile = ReportService.get_visible_report(db, report_id, context.user.id, context.role)
    except CampusReportsError as e:
        raise to_http_exception(e)
    return ReportService.serialize(report, profile, store, viewer_id=context.user.id)


@router.patch("/{report_id}")
async def update_report(
    report_id: int,
    payload: ReportUpdate,
    request: Request,
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Move a report forward and/or set the official response.
    Officials and staff only.
    """
    try:
        new_status = parse_status(payload.status) if payload.status is not None else None
        report = ReportService.update_report(
            db,
            report_id,
            context.role,
            status=new_status,
            official_response=(
                payload.officialResponse if "officialResponse" in payload.model_fields_set else UNSET
            ),
        )
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="report_update",
        user_id=context.user.id,
        resource_type="report",
        resource_id=str(report_id),
        details={"status": report.status.value}
    )
    profile = db.query(Profile).filter(Profile.user_id == report.user_id).first()
    return ReportService.serialize(report, profile, store, viewer_id=context.user.id)


@router.post("/{report_id}/complete")
async def complete_report(
    report_id: int,
    request: Request,
    completionImage: Optional[UploadFile] = File(None),
    officialResponse: Optional[str] = Form(None),
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Attach the completion photo and mark the report resolved.
    Officials and staff only.
    """
    try:
        report = ReportService.get_for_completion(db, report_id, context.role)
        _check_photo(completionImage, "completionImage")
    except CampusReportsError as e:
        raise to_http_exception(e)

    completion_key = await _store_photo(store, completionImage, completion_photo_key(completionImage.filename))
    try:
        report, replaced_key = ReportService.complete_report(db, report, completion_key, officialResponse)
    except SQLAlchemyError:
        db.rollback()
        store.delete_objects([completion_key])
        raise
    if replaced_key:
        try:
            store.delete_objects([replaced_key])
        except CampusReportsError as e:
            logger.warning(f"Could not remove replaced completion photo {replaced_key}: {e}")

    AuditService.log_from_request(
        db=db,
        request=request,
        action="report_complete",
        user_id=context.user.id,
        resource_type="report",
        resource_id=str(report_id)
    )
    profile = db.query(Profile).filter(Profile.user_id == report.user_id).first()
    return ReportService.serialize(report, profile, store, viewer_id=context.user.id)


@router.delete("/{report_id}")
async def delete_report(
    report_id: int,
    request: Request,
    confirm: bool = Query(False),
    context: AuthContext = Depends(require_official),
    db: Session = Depends(get_db_session),
    store=Depends(get_object_store)
):
    """
    Permanently delete one report and its photos.
    Officials only; requires ``?confirm=true``.
    """
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": "confirm", "message": "Deleting a report is permanent. Repeat with confirm=true."}
        )
    try:
        keys = ReportService.delete_report(db, report_id)
    except CampusReportsError as e:
        raise to_http_exception(e)

    deleted_files = 0
    try:
        deleted_files = store.delete_objects(keys)
    except CampusReportsError as e:
        # The row is gone; leftovers are picked up by the next purge
        logger.warning(f"Photos of deleted report {report_id} were not removed: {e}")

    AuditService.log_from_request(
        db=db,
        request=request,
        action="report_delete",
        user_id=context.user.id,
        resource_type="report",
        resource_id=str(report_id),
        details={"files": deleted_files}
    )
    return {"success": True, "deletedFiles": deleted_files}
