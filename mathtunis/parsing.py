"""Turn free-form solver text into Steps and a final answer."""

import re
from typing import List

from .locales import (
    ANSWER_PATTERNS,
    PENDING_ANALYSIS,
    SEE_DETAILS,
    SOLUTION_TITLES,
    STEP_TITLES,
    localized,
)
from .models import STEP_CATEGORIES, Step

# Shorter lines are usually list markers or stray tokens
MIN_STEP_LENGTH = 10


def split_into_steps(text: str, language: str) -> List[Step]:
    """Split text into one Step per meaningful line.

    Always returns at least one step: when no line is long enough the whole
    text (or a localized "analysis pending" note) becomes a single step.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    title_fmt = localized(STEP_TITLES, language)

    steps: List[Step] = []
    for index, line in enumerate(lines):
        if len(line) > MIN_STEP_LENGTH:
            steps.append(Step(
                title=title_fmt.format(n=index + 1),
                explanation=line,
                category=STEP_CATEGORIES[index % len(STEP_CATEGORIES)],
            ))

    if steps:
        return steps
    return [Step(
        title=localized(SOLUTION_TITLES, language),
        explanation=text.strip() or localized(PENDING_ANALYSIS, language),
        category="blue",
    )]


def extract_final_answer(text: str, language: str) -> str:
    """Pull "réponse: ..." style answers out of text, else a localized pointer."""
    pattern = localized(ANSWER_PATTERNS, language)
    match = re.search(pattern, text, re.IGNORECASE)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return localized(SEE_DETAILS, language)
