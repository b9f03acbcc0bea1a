from typing import Any, Dict, Optional

from .locales import DEFAULT_LANGUAGE
from .models import Question


def normalize_text(s: str) -> str:
    """Collapse whitespace. Case is kept since it matters in math."""
    return " ".join(s.strip().split())


def normalize_language(tag: Optional[str]) -> str:
    """Lowercase a language tag and keep its primary subtag.

    "FR" -> "fr", "ar-TN" -> "ar", "" or None -> the default language.
    The set of tags stays open: unknown tags pass through.
    """
    if not tag:
        return DEFAULT_LANGUAGE
    t = tag.strip().lower().replace("_", "-")
    primary = t.split("-")[0]
    return primary or DEFAULT_LANGUAGE


def normalize_input_mode(mode: Optional[str]) -> str:
    if not mode:
        return "text"
    return mode.strip().lower()


def question_from_payload(payload: Dict[str, Any], question_id: Optional[str] = None) -> Question:
    """Build a Question from a validated chat payload."""
    return Question(
        text=normalize_text(payload["content"]),
        language=normalize_language(payload.get("language")),
        input_mode=normalize_input_mode(payload.get("inputMode")),
        question_id=question_id,
    )
