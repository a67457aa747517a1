"""
Report intake, lifecycle and visibility rules.

Status only moves forward: pending -> investigating -> resolved. Anonymous
personal reports never reveal their submitter to anyone but the owner.
"""
import csv
import io
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from database.models import (
    Profile, Report, ReportCategory, ReportStatus, REPORT_SUB_CATEGORIES
)
from core.exceptions import AuthorizationError, NotFoundError, StateError, ValidationError
from core.validators import LIKE_ESCAPE, contains_pattern, validate_file_size, validate_image_extension
from services.role_service import AppRole
from core.logger import logger
import config

STATUS_ORDER = {
    ReportStatus.PENDING: 0,
    ReportStatus.INVESTIGATING: 1,
    ReportStatus.RESOLVED: 2,
}
STAFF_ROLES = (AppRole.OFFICIAL, AppRole.STAFF)
ANONYMOUS_SUBMITTER = "Anonymous"
MAX_DESCRIPTION_LENGTH = 2000

EXPORT_COLUMNS = [
    "id", "createdAt", "category", "subCategory", "description", "landmark",
    "latitude", "longitude", "status", "submitterName", "submitterRegisterNo",
    "officialResponse", "imageUrl", "completionImageUrl",
]

# Sentinel for "field not sent" in partial updates
UNSET: Any = object()


@dataclass
class ReportSubmission:
    """Validated fields of a new report."""
    category: ReportCategory
    sub_category: str
    description: str
    landmark: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    is_anonymous: bool
    time_of_incident: Optional[datetime]


def parse_category(value: Optional[str]) -> ReportCategory:
    try:
        return ReportCategory((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            f"Category must be one of: {', '.join(c.value for c in ReportCategory)}",
            field="category",
        )


def parse_status(value: Optional[str]) -> ReportStatus:
    try:
        return ReportStatus((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            f"Status must be one of: {', '.join(s.value for s in ReportStatus)}",
            field="status",
        )


class ReportService:
    """Service for incident reports."""

    @staticmethod
    def validate_submission(
        category: Optional[str],
        sub_category: Optional[str],
        description: Optional[str],
        photo_filename: Optional[str],
        photo_size: int,
        landmark: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        is_anonymous: bool = False,
        time_of_incident: Optional[datetime] = None,
    ) -> ReportSubmission:
        """
        Check every field of a new report. Runs before anything is uploaded
        or written.

        Raises:
            ValidationError: first invalid field
        """
        if not photo_filename or photo_size <= 0:
            raise ValidationError("A photo of the issue is required", field="photo")
        ok, error = validate_image_extension(photo_filename)
        if not ok:
            raise ValidationError(error, field="photo")
        ok, error = validate_file_size(photo_size, config.MAX_IMAGE_SIZE_MB)
        if not ok:
            raise ValidationError(error, field="photo")

        parsed_category = parse_category(category)
        sub_category = (sub_category or "").strip().lower()
        if sub_category not in REPORT_SUB_CATEGORIES[parsed_category]:
            raise ValidationError(
                f"Sub-category must be one of: {', '.join(REPORT_SUB_CATEGORIES[parsed_category])}",
                field="subCategory",
            )

        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required", field="description")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters", field="description"
            )

        if (latitude is None) != (longitude is None):
            raise ValidationError("Latitude and longitude must be sent together", field="location")
        if latitude is not None and not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise ValidationError("Location is out of range", field="location")

        return ReportSubmission(
            category=parsed_category,
            sub_category=sub_category,
            description=description,
            landmark=(landmark or "").strip() or None,
            latitude=latitude,
            longitude=longitude,
            is_anonymous=bool(is_anonymous) and parsed_category == ReportCategory.PERSONAL,
            time_of_incident=time_of_incident if parsed_category == ReportCategory.SECURITY else None,
        )

    @staticmethod
    def create_report(db: Session, owner_id: int, submission: ReportSubmission, image_key: str) -> Report:
        """Insert a pending report."""
        report = Report(
            user_id=owner_id,
            category=submission.category,
            sub_category=submission.sub_category,
            description=submission.description,
            image_key=image_key,
            landmark=submission.landmark,
            latitude=submission.latitude,
            longitude=submission.longitude,
            is_anonymous=submission.is_anonymous,
            time_of_incident=submission.time_of_incident,
            status=ReportStatus.PENDING,
        )
        db.add(report)
        db.commit()
        db.refresh(report)
        logger.info(f"Report {report.id} created by user {owner_id} ({report.category.value}/{report.sub_category})")
        return report

    @staticmethod
    def check_transition(current: ReportStatus, new: ReportStatus) -> None:
        """Raise StateError for a backward move."""
        if STATUS_ORDER[new] < STATUS_ORDER[current]:
            raise StateError(f"Cannot move a report from {current.value} back to {new.value}")

    @staticmethod
    def _get_for_staff(db: Session, report_id: int, actor_role: AppRole) -> Report:
        if actor_role not in STAFF_ROLES:
            raise AuthorizationError("Only officials or staff can update reports")
        report = db.query(Report).filter(Report.id == report_id).first()
        if report is None:
            raise NotFoundError("Report not found")
        return report

    @staticmethod
    def update_report(
        db: Session,
        report_id: int,
        actor_role: AppRole,
        status: Optional[ReportStatus] = None,
        official_response: Any = UNSET,
    ) -> Report:
        """
        Set status and/or official response.

        Staff cannot mark a report resolved until a completion photo is attached.
        """
        report = ReportService._get_for_staff(db, report_id, actor_role)

        if status is not None and status != report.status:
            ReportService.check_transition(report.status, status)
            if (
                status == ReportStatus.RESOLVED
                and actor_role == AppRole.STAFF
                and not report.completion_image_key
            ):
                raise ValidationError(
                    "Upload a completion photo before marking this report resolved",
                    field="completionImage",
                )
            report.status = status

        if official_response is not UNSET:
            report.official_response = (official_response or "").strip() or None

        report.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(report)
        return report

    @staticmethod
    def get_for_completion(db: Session, report_id: int, actor_role: AppRole) -> Report:
        """Load a report that is about to receive a completion photo."""
        return ReportService._get_for_staff(db, report_id, actor_role)

    @staticmethod
    def complete_report(
        db: Session,
        report: Report,
        completion_key: str,
        official_response: Optional[str] = None
    ) -> Tuple[Report, Optional[str]]:
        """
        Attach the completion photo and resolve the report.

        Returns:
            The report and the key of a replaced completion photo, if any
        """
        replaced_key = report.completion_image_key
        report.completion_image_key = completion_key
        report.status = ReportStatus.RESOLVED
        if official_response is not None and official_response.strip():
            report.official_response = official_response.strip()
        report.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(report)
        logger.info(f"Report {report.id} resolved with completion photo")
        return report, replaced_key

    @staticmethod
    def delete_report(db: Session, report_id: int) -> List[str]:
        """
        Delete one report.

        Returns:
            Object keys that belonged to it
        """
        report = db.query(Report).filter(Report.id == report_id).first()
        if report is None:
            raise NotFoundError("Report not found")
        keys = [k for k in (report.image_key, report.completion_image_key) if k]
        db.delete(report)
        db.commit()
        logger.info(f"Report {report_id} deleted")
        return keys

    @staticmethod
    def query_reports(
        db: Session,
        viewer_id: int,
        viewer_role: AppRole,
        category: Optional[ReportCategory] = None,
        status: Optional[ReportStatus] = None,
        search: Optional[str] = None,
        open_only: bool = False,
    ):
        """
        Build the (Report, Profile) query a viewer is allowed to see.

        Students see their own reports; officials and staff see all of them.
        Anonymous personal submitters are never matched by name or number.
        """
        query = db.query(Report, Profile).outerjoin(Profile, Profile.user_id == Report.user_id)
        if viewer_role == AppRole.STUDENT:
            query = query.filter(Report.user_id == viewer_id)
        elif viewer_role not in STAFF_ROLES:
            raise AuthorizationError("Forbidden")

        if category is not None:
            query = query.filter(Report.category == category)
        if status is not None:
            query = query.filter(Report.status == status)
        elif open_only:
            query = query.filter(Report.status != ReportStatus.RESOLVED)

        term = (search or "").strip().lower()
        if term:
            pattern = contains_pattern(term)
            submitter_visible = or_(
                Report.is_anonymous == False,
                Report.category != ReportCategory.PERSONAL
            )
            query = query.filter(or_(
                func.lower(Report.description).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Report.sub_category).like(pattern, escape=LIKE_ESCAPE),
                func.lower(func.coalesce(Report.landmark, "")).like(pattern, escape=LIKE_ESCAPE),
                and_(submitter_visible, or_(
                    func.lower(func.coalesce(Profile.full_name, "")).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(func.coalesce(Profile.register_no, "")).like(pattern, escape=LIKE_ESCAPE),
                )),
            ))

        return query.order_by(Report.created_at.desc(), Report.id.desc())

    @staticmethod
    def get_visible_report(
        db: Session, report_id: int, viewer_id: int, viewer_role: AppRole
    ) -> Tuple[Report, Optional[Profile]]:
        """Single report, hidden (404) from students who don't own it."""
        row = ReportService.query_reports(db, viewer_id, viewer_role).filter(Report.id == report_id).first()
        if row is None:
            raise NotFoundError("Report not found")
        return row

    @staticmethod
    def serialize(
        report: Report,
        profile: Optional[Profile],
        store,
        viewer_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Response dict for a report.

        The owner sees their own user id. Everyone else gets submitter details
        from the profile, masked for anonymous personal reports.
        """
        data = {
            "id": report.id,
            "category": report.category.value,
            "subCategory": report.sub_category,
            "description": report.description,
            "imageUrl": store.get_public_url(report.image_key) if store and report.image_key else None,
            "landmark": report.landmark,
            "latitude": report.latitude,
            "longitude": report.longitude,
            "status": report.status.value,
            "isAnonymous": report.is_anonymous,
            "timeOfIncident": report.time_of_incident.isoformat() if report.time_of_incident else None,
            "officialResponse": report.official_response,
            "completionImageUrl": (
                store.get_public_url(report.completion_image_key)
                if store and report.completion_image_key else None
            ),
            "createdAt": report.created_at.isoformat(),
            "updatedAt": report.updated_at.isoformat() if report.updated_at else None,
        }

        if viewer_id is not None and report.user_id == viewer_id:
            data["userId"] = report.user_id
            data["submitterName"] = profile.full_name if profile else None
            data["submitterRegisterNo"] = profile.register_no if profile else None
        elif report.hides_submitter:
            data["userId"] = None
            data["submitterName"] = ANONYMOUS_SUBMITTER
            data["submitterRegisterNo"] = None
        else:
            data["userId"] = report.user_id
            data["submitterName"] = profile.full_name if profile else None
            data["submitterRegisterNo"] = profile.register_no if profile else None
        return data

    @staticmethod
    def export_csv(rows: List[Tuple[Report, Optional[Profile]]], store) -> str:
        """CSV export for officials and staff, with the same masking as the API."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_COLUMNS)
        for report, profile in rows:
            data = ReportService.serialize(report, profile, store)
            writer.writerow([
                "" if data[column] is None else data[column]
                for column in EXPORT_COLUMNS
            ])
        content = output.getvalue()
        output.close()
        return content

    @staticmethod
    def status_counts(db: Session) -> Dict[str, int]:
        """Totals per status plus overall."""
        counts = {status.value: 0 for status in ReportStatus}
        for status, count in db.query(Report.status, func.count(Report.id)).group_by(Report.status).all():
            counts[status.value if isinstance(status, ReportStatus) else str(status)] = count
        counts["total"] = sum(counts[s.value] for s in ReportStatus)
        return counts
