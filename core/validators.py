"""
Input validation utilities.
"""
import os
from pathlib import Path
from typing import Tuple, Optional

import config
from core.exceptions import ValidationError


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    # Remove directory separators and path components
    filename = os.path.basename(filename)

    # Keep alphanumeric, dots, dashes, underscores
    sanitized = "".join(char if char.isalnum() or char in "._-" else "_" for char in filename)
    sanitized = sanitized[:255]

    if not sanitized:
        raise ValueError("Filename became empty after sanitization")

    return sanitized


def validate_image_extension(filename: str) -> Tuple[bool, Optional[str]]:
    """
    Validate that the file has an allowed image extension.

    Returns:
        Tuple of (is_valid, error_message)
    """
    ext = Path(filename).suffix.lower()
    if ext not in config.ALLOWED_IMAGE_EXTENSIONS:
        allowed = ", ".join(sorted(config.ALLOWED_IMAGE_EXTENSIONS))
        return False, f"Unsupported image type '{ext or filename}'. Allowed: {allowed}"
    return True, None


def validate_file_size(size_bytes: int, max_size_mb: int) -> Tuple[bool, Optional[str]]:
    """
    Validate file size is within limits.

    Args:
        size_bytes: File size in bytes
        max_size_mb: Maximum allowed size in MB

    Returns:
        Tuple of (is_valid, error_message)
    """
    if size_bytes <= 0:
        return False, "File is empty"
    if size_bytes > max_size_mb * 1024 * 1024:
        return False, f"File too large: {size_bytes / (1024 * 1024):.1f}MB (max: {max_size_mb}MB)"
    return True, None


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required", field="email")
    return email


def normalize_register_no(register_no: str) -> str:
    """
    Trim and uppercase a student registration number.

    Raises:
        ValidationError: if the result is not 5-20 characters
    """
    normalized = (register_no or "").strip().upper()
    if not normalized:
        raise ValidationError("Registration number is required", field="registerNo")
    if len(normalized) < 5 or len(normalized) > 20:
        raise ValidationError("Invalid registration number", field="registerNo")
    return normalized


LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """
    LIKE pattern matching ``term`` anywhere, with its wildcards escaped.
    Use with ``.like(pattern, escape=LIKE_ESCAPE)``.
    """
    escaped = term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
