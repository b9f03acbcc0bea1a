import re
from typing import Any, Dict, List

from .models import INPUT_MODES

REQUIRED_STR_FIELDS = ["content"]
OPTIONAL_STR_FIELDS = [
    "language",
    "inputMode",
    "conversationId",
    "userId",
]

MAX_QUESTION_LENGTH = 4000

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def validate_question(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages for a chat question payload.
    Empty list means valid.
    """
    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    for f in OPTIONAL_STR_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    content = data.get("content")
    if isinstance(content, str) and len(content) > MAX_QUESTION_LENGTH:
        errors.append(f"Field 'content' must be at most {MAX_QUESTION_LENGTH} characters")

    mode = data.get("inputMode")
    if isinstance(mode, str) and mode.strip().lower() not in INPUT_MODES:
        errors.append(f"Field 'inputMode' must be one of: {', '.join(INPUT_MODES)}")

    return errors


def validate_user(data: Dict[str, Any], partial: bool = False) -> List[str]:
    """Validate a user registration payload, or with partial=True an update."""
    errors: List[str] = []

    if (not partial or "displayName" in data) and not _is_non_empty_str(data.get("displayName")):
        errors.append("Field 'displayName' must be a non-empty string")

    email = data.get("email")
    if email is not None:
        if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
            errors.append("Field 'email' must be a valid email address")

    for f in ("schoolLevel", "externalUid"):
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    return errors


CONTENT_TYPES = ("article", "solution_template", "category")


def validate_admin_content(data: Dict[str, Any], partial: bool = False) -> List[str]:
    """
    Validate an admin content payload. With partial=True only the fields
    present are checked, as for an update.
    """
    errors: List[str] = []

    if not partial or "type" in data:
        if data.get("type") not in CONTENT_TYPES:
            errors.append(f"Field 'type' must be one of: {', '.join(CONTENT_TYPES)}")

    if not partial or "title" in data:
        if not _is_non_empty_str(data.get("title")):
            errors.append("Field 'title' must be a non-empty string")

    content = data.get("content")
    if content is not None and not isinstance(content, dict):
        errors.append("Field 'content' must be an object if provided")

    published = data.get("isPublished")
    if published is not None and not isinstance(published, bool):
        errors.append("Field 'isPublished' must be a boolean if provided")

    return errors
