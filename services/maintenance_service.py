"""
Bulk purge of reports and their attachments (official only, irreversible).

Report rows go first, in one transaction; objects are removed afterwards in
batches. If the object store fails after the commit, only orphans remain and
the next purge removes them. New submissions are refused while a purge runs.
"""
import enum
import threading
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Report, ReportStatus
from core.exceptions import AuthorizationError, IntegrityError, StateError, TransientError, ValidationError
from services.role_service import AppRole, RoleService
from core.logger import logger
import config


class PurgeScope(str, enum.Enum):
    ALL = "all"
    RESOLVED = "resolved"


PURGE_CONFIRMATIONS = {
    PurgeScope.ALL: "PURGE_ALL",
    PurgeScope.RESOLVED: "PURGE_RESOLVED",
}

_purge_lock = threading.Lock()
# Bumped each time a purge starts
_purges_started = 0


@dataclass
class PurgePlan:
    scope: PurgeScope
    report_count: int
    object_keys: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        if self.scope == PurgeScope.ALL:
            consequence = "Every report and every stored photo will be permanently deleted."
        else:
            consequence = (
                "Resolved reports, their photos and photos no longer used by any report "
                "will be permanently deleted."
            )
        return {
            "scope": self.scope.value,
            "reportsToDelete": self.report_count,
            "filesToDelete": len(self.object_keys),
            "confirmWith": PURGE_CONFIRMATIONS[self.scope],
            "warning": f"{consequence} This cannot be undone.",
        }


@dataclass
class PurgeResult:
    scope: PurgeScope
    deleted_reports: int
    deleted_files: int

    def as_dict(self) -> dict:
        return {
            "scope": self.scope.value,
            "deletedReports": self.deleted_reports,
            "deletedFiles": self.deleted_files,
        }


def purge_in_progress() -> bool:
    return _purge_lock.locked()


def purges_started() -> int:
    """Number of purges started by this process. Compare two readings to detect a purge in between."""
    return _purges_started


class MaintenanceService:
    """Service for privileged storage and report cleanup."""

    @staticmethod
    def _require_official(db: Session, actor_id: int) -> None:
        role = RoleService.resolve_role(db, actor_id)
        if role != AppRole.OFFICIAL:
            logger.warning(f"User {actor_id} ({role.value}) was refused a purge")
            raise AuthorizationError("Forbidden")

    @staticmethod
    def plan(db: Session, store, scope: PurgeScope) -> PurgePlan:
        """Work out which rows and objects a purge would delete."""
        all_keys = store.list_objects()
        if scope == PurgeScope.ALL:
            return PurgePlan(scope=scope, report_count=db.query(Report).count(), object_keys=all_keys)

        report_count = db.query(Report).filter(Report.status == ReportStatus.RESOLVED).count()
        kept_keys = set()
        for image_key, completion_key in db.query(Report.image_key, Report.completion_image_key).filter(
            Report.status != ReportStatus.RESOLVED
        ).all():
            kept_keys.update(k for k in (image_key, completion_key) if k)
        # Photos of resolved reports and orphans: everything no surviving report uses
        return PurgePlan(
            scope=scope,
            report_count=report_count,
            object_keys=[key for key in all_keys if key not in kept_keys],
        )

    @staticmethod
    def preview(db: Session, store, actor_id: int, scope: PurgeScope) -> PurgePlan:
        MaintenanceService._require_official(db, actor_id)
        return MaintenanceService.plan(db, store, scope)

    @staticmethod
    def purge(db: Session, store, actor_id: int, scope: PurgeScope, confirm: str) -> PurgeResult:
        """
        Delete reports in ``scope`` and the objects they leave unused.

        The caller's role is resolved here from user_roles.

        Raises:
            AuthorizationError: caller is not an official
            ValidationError: wrong confirmation phrase
            StateError: another purge is running
            IntegrityError: the row deletion failed and was rolled back
            TransientError: the object store failed after rows were deleted
        """
        MaintenanceService._require_official(db, actor_id)
        if confirm != PURGE_CONFIRMATIONS[scope]:
            raise ValidationError(
                f"Confirm with \"{PURGE_CONFIRMATIONS[scope]}\" to purge {scope.value} reports",
                field="confirm",
            )
        if not _purge_lock.acquire(blocking=False):
            raise StateError("A purge is already in progress")
        global _purges_started
        _purges_started += 1

        try:
            plan = MaintenanceService.plan(db, store, scope)
            try:
                query = db.query(Report)
                if scope == PurgeScope.RESOLVED:
                    query = query.filter(Report.status == ReportStatus.RESOLVED)
                deleted_reports = query.delete(synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Purge ({scope.value}) failed while deleting reports: {e}", exc_info=True)
                raise IntegrityError("Purge failed. No reports were deleted.") from e

            logger.warning(f"Purge ({scope.value}) by user {actor_id}: deleted {deleted_reports} report(s)")
            try:
                deleted_files = store.delete_objects(plan.object_keys)
            except TransientError:
                logger.error(
                    f"Purge ({scope.value}) deleted {deleted_reports} report(s) but attachment "
                    f"cleanup failed; re-run the purge to remove leftovers"
                )
                raise
        finally:
            _purge_lock.release()

        logger.warning(f"Purge ({scope.value}) removed {deleted_files} object(s)")
        return PurgeResult(scope=scope, deleted_reports=deleted_reports, deleted_files=deleted_files)

    @staticmethod
    def storage_usage(store) -> dict:
        """Object count of the attachment store, with a warning past the threshold."""
        count = len(store.list_objects())
        return {
            "fileCount": count,
            "warningThreshold": config.STORAGE_WARNING_THRESHOLD,
            "warning": count > config.STORAGE_WARNING_THRESHOLD,
        }
