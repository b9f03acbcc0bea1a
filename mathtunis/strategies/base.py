"""Base interface for solving strategies."""

import threading
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import ResolutionCancelled, StrategyTimeout
from ..models import Question, Solution
from ..retry import Deadline


class StrategyAdapter(ABC):
    """
    One way of producing a Solution for a Question.

    Implementations may call remote services, scrape pages or compute
    locally. They must either return a Solution or raise a StrategyError,
    and must raise StrategyTimeout rather than return after `timeout`
    seconds. The cancel event is set when the caller gives up on the
    result; long-running work should check it between units of work.
    """

    #: Short identifier used in configuration and metrics
    name: str = "strategy"
    #: Provenance tag written into produced solutions
    source: str = "manual"

    @abstractmethod
    def solve(
        self,
        question: Question,
        language: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> Solution:
        pass

    def checkpoint(self, deadline: Deadline, cancel: Optional[threading.Event]) -> None:
        """Stop work that has been cancelled or has run out of time."""
        if cancel is not None and cancel.is_set():
            raise ResolutionCancelled(f"{self.name} cancelled")
        if deadline.expired():
            raise StrategyTimeout(
                f"{self.name} exceeded {deadline.budget:.2f}s", strategy=self.name
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
