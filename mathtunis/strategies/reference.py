"""
External reference lookup strategy.

Looks the question up on configured reference sites and scrapes a worked
solution from the result page. Nothing is assumed about any particular site:
each source declares its URL template and the CSS selectors that locate the
steps and the final answer.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote_plus

from bs4 import BeautifulSoup

from ..errors import Malformed, StrategyError, StrategyTimeout, Unavailable
from ..locales import SEE_DETAILS, STEP_TITLES, localized
from ..logger import get_logger
from ..models import SOURCE_REFERENCE, STEP_CATEGORIES, Question, Solution, Step
from ..normalize import normalize_text
from ..retry import Deadline
from .base import StrategyAdapter
from .common import request_with_error_handling

logger = get_logger()

REFERENCE_CONFIDENCE = 75


@dataclass(frozen=True)
class ReferenceSource:
    """Where to look a question up and how to read the answer page."""

    name: str
    url_template: str
    step_selector: str
    answer_selector: Optional[str] = None
    math_selector: Optional[str] = None
    confidence: float = REFERENCE_CONFIDENCE

    def url_for(self, question: str, language: str) -> str:
        return self.url_template.format(query=quote_plus(question), language=language)


def sources_from_config(entries: Sequence[Dict[str, Any]]) -> List[ReferenceSource]:
    """Build sources from plain dicts (e.g. parsed from JSON configuration).

    Raises ValueError on entries missing name, url_template or step_selector.
    """
    sources = []
    for i, entry in enumerate(entries):
        missing = [k for k in ("name", "url_template", "step_selector") if not entry.get(k)]
        if missing:
            raise ValueError(f"Reference source #{i} is missing: {', '.join(missing)}")
        if "{query}" not in entry["url_template"]:
            raise ValueError(f"Reference source {entry['name']!r} url_template needs a {{query}} placeholder")
        sources.append(ReferenceSource(
            name=entry["name"],
            url_template=entry["url_template"],
            step_selector=entry["step_selector"],
            answer_selector=entry.get("answer_selector"),
            math_selector=entry.get("math_selector"),
            confidence=float(entry.get("confidence", REFERENCE_CONFIDENCE)),
        ))
    return sources


def parse_reference_page(html: str, source: ReferenceSource, language: str) -> Solution:
    """Read steps and answer from a reference page.

    Raises Malformed when the page has none of the expected step elements.
    """
    soup = BeautifulSoup(html, "html.parser")
    title_fmt = localized(STEP_TITLES, language)

    steps = []
    for el in soup.select(source.step_selector):
        text = normalize_text(el.get_text(" ", strip=True))
        if not text:
            continue
        math = None
        if source.math_selector:
            math_el = el.select_one(source.math_selector)
            if math_el is not None and math_el.get_text(strip=True):
                math = math_el.get_text(strip=True)
        index = len(steps)
        steps.append(Step(
            title=title_fmt.format(n=index + 1),
            explanation=text,
            math=math,
            category=STEP_CATEGORIES[index % len(STEP_CATEGORIES)],
        ))

    if not steps:
        raise Malformed(f"No steps found on {source.name} page")

    answer = None
    if source.answer_selector:
        answer_el = soup.select_one(source.answer_selector)
        if answer_el is not None:
            answer = normalize_text(answer_el.get_text(" ", strip=True)) or None

    return Solution(
        steps=steps,
        final_answer=answer or localized(SEE_DETAILS, language),
        confidence=source.confidence,
        source=SOURCE_REFERENCE,
        metadata={"reference": source.name},
    )


class ReferenceStrategy(StrategyAdapter):
    """Try each configured reference source in order until one yields steps."""

    name = "reference"
    source = SOURCE_REFERENCE

    def __init__(self, sources: Sequence[ReferenceSource], user_agent: str = "mathtunis/0.1"):
        self.sources = list(sources)
        self.user_agent = user_agent

    def solve(
        self,
        question: Question,
        language: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> Solution:
        if not self.sources:
            raise Unavailable("No reference sources configured", strategy=self.name)

        deadline = Deadline(timeout)
        last_error: Optional[StrategyError] = None
        for ref in self.sources:
            self.checkpoint(deadline, cancel)
            url = ref.url_for(question.text, language)
            try:
                resp = request_with_error_handling(
                    "GET",
                    url,
                    self.name,
                    deadline,
                    cancel=cancel,
                    max_retries=1,
                    headers={"User-Agent": self.user_agent},
                )
                solution = parse_reference_page(resp.text, ref, language)
            except StrategyTimeout:
                raise
            except (Unavailable, Malformed) as e:
                logger.warning("Reference source failed", source=ref.name, kind=e.kind, error=str(e))
                last_error = e
                continue

            logger.debug("Reference source answered", source=ref.name, steps=len(solution.steps))
            return solution

        if isinstance(last_error, Malformed):
            raise Malformed(f"No reference page had a usable solution: {last_error}", strategy=self.name)
        raise Unavailable(f"All reference sources failed: {last_error}", strategy=self.name)
