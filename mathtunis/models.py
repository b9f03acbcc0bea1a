"""
Value types passed between the chat layer, the coordinator and the strategies.

All of them are frozen dataclasses: a Question lives for a single resolution
call and a Solution never changes once a strategy has returned it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

INPUT_MODES = ("text", "image", "pdf", "audio")
STEP_CATEGORIES = ("blue", "green", "purple", "amber")

SOURCE_INFERENCE = "huggingface"
SOURCE_REFERENCE = "webscraping"
SOURCE_HEURISTIC = "heuristic"
SOURCE_MANUAL = "manual"

MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100


@dataclass(frozen=True)
class Question:
    """A student's question, already transcribed to text upstream."""

    text: str
    language: str = "fr"
    input_mode: str = "text"
    question_id: Optional[str] = None

    def __post_init__(self):
        if self.input_mode not in INPUT_MODES:
            raise ValueError(f"Unknown input mode: {self.input_mode!r}")


@dataclass(frozen=True)
class Step:
    """One displayed step of a solution."""

    title: str
    explanation: str
    math: Optional[str] = None
    category: str = "blue"

    def __post_init__(self):
        if self.category not in STEP_CATEGORIES:
            raise ValueError(f"Unknown step category: {self.category!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "title": self.title,
            "description": self.explanation,
            "color": self.category,
        }
        if self.math is not None:
            data["math"] = self.math
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            title=data["title"],
            explanation=data["description"],
            math=data.get("math"),
            category=data.get("color", "blue"),
        )


@dataclass(frozen=True)
class Solution:
    """
    A structured answer produced by exactly one strategy.

    A Solution always holds at least one step and a confidence in [0, 100];
    constructing one that breaks either rule raises ValueError.
    """

    steps: Tuple[Step, ...]
    final_answer: str
    confidence: float
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        # Accept any sequence of steps but store a tuple
        if not isinstance(self.steps, tuple):
            object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise ValueError("A solution needs at least one step")
        if not MIN_CONFIDENCE <= self.confidence <= MAX_CONFIDENCE:
            raise ValueError(
                f"Confidence must be within [{MIN_CONFIDENCE}, {MAX_CONFIDENCE}], got {self.confidence}"
            )

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_MANUAL and self.confidence == 0

    def steps_as_dicts(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": self.steps_as_dicts(),
            "finalAnswer": self.final_answer,
            "confidence": self.confidence,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Solution":
        return cls(
            steps=tuple(Step.from_dict(s) for s in data["steps"]),
            final_answer=data["finalAnswer"],
            confidence=data["confidence"],
            source=data["source"],
        )
