"""
Object key generation for report attachments.

    reports/<uuid>.<ext>       photo captured with a report
    completions/<uuid>.<ext>   photo uploaded when the work is done
"""
import uuid
from pathlib import Path
from typing import Optional

from core.validators import sanitize_filename

REPORT_PHOTO_PREFIX = "reports"
COMPLETION_PHOTO_PREFIX = "completions"


def _extension(filename: Optional[str]) -> str:
    if not filename:
        return ".jpg"
    return Path(sanitize_filename(filename)).suffix.lower() or ".jpg"


def report_photo_key(filename: Optional[str]) -> str:
    """reports/3f2c...e1.jpg"""
    return f"{REPORT_PHOTO_PREFIX}/{uuid.uuid4().hex}{_extension(filename)}"


def completion_photo_key(filename: Optional[str]) -> str:
    """completions/9ab0...44.jpg"""
    return f"{COMPLETION_PHOTO_PREFIX}/{uuid.uuid4().hex}{_extension(filename)}"
