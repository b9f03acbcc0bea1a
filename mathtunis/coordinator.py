"""
Resolution coordinator.

Runs an ordered list of strategies for one question, each under its own time
budget, and returns the first solution confident enough to show. When every
strategy fails, times out, or answers below the threshold, it returns a
localized zero-confidence fallback, so callers always get a well-formed
Solution with at least one step.

Strategies run on daemon worker threads. The calling thread waits for at
most `strategy_timeout` per strategy; a strategy still running after that is
told to stop through its cancel event and abandoned.
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import DEFAULT_ACCEPTANCE_THRESHOLD, DEFAULT_GRACE_PERIOD, DEFAULT_STRATEGY_TIMEOUT
from .errors import (
    LowConfidence,
    Malformed,
    ResolutionCancelled,
    StrategyError,
    StrategyTimeout,
    Unavailable,
)
from .locales import FALLBACK_MESSAGES, FallbackMessage, localized
from .logger import StructuredLogger, get_logger
from .models import SOURCE_MANUAL, Question, Solution, Step
from .strategies.base import StrategyAdapter

# How often a waiting caller checks its cancel event
POLL_INTERVAL = 0.02

ACCEPTED = "accepted"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class Attempt:
    """What happened when one strategy was tried."""

    strategy: str
    outcome: str
    elapsed: float
    confidence: Optional[float] = None
    detail: str = ""


@dataclass(frozen=True)
class Resolution:
    solution: Solution
    attempts: Tuple[Attempt, ...]

    @property
    def accepted_by(self) -> Optional[str]:
        for a in self.attempts:
            if a.outcome == ACCEPTED:
                return a.strategy
        return None


def fallback_solution(
    language: str,
    messages: Optional[Mapping[str, FallbackMessage]] = None,
) -> Solution:
    """The deterministic answer given when no strategy succeeds."""
    msg = localized({**FALLBACK_MESSAGES, **(messages or {})}, language)
    return Solution(
        steps=(Step(title=msg.title, explanation=msg.description, category="amber"),),
        final_answer=msg.final_answer,
        confidence=0,
        source=SOURCE_MANUAL,
    )


class _InFlight:
    """A strategy call running on its own thread."""

    def __init__(self, strategy: StrategyAdapter, question: Question, timeout: float):
        self.strategy = strategy
        self.cancel = threading.Event()
        self.future: Future = Future()
        self.started = time.monotonic()
        self._thread = threading.Thread(
            target=self._run,
            args=(question, timeout),
            name=f"strategy-{strategy.name}",
            daemon=True,
        )
        self._thread.start()

    def _run(self, question: Question, timeout: float):
        if not self.future.set_running_or_notify_cancel():
            return
        try:
            result = self.strategy.solve(question, question.language, timeout, self.cancel)
        except Exception as e:
            self.future.set_exception(e)
        else:
            self.future.set_result(result)

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def abandon(self):
        self.cancel.set()


class ResolutionCoordinator:
    """
    Try strategies in priority order and accept the first confident answer.

    Args:
        strategies: Strategies in priority order (best first)
        acceptance_threshold: Minimum confidence (0-100) to accept a solution
        strategy_timeout: Seconds each strategy may take
        fallback_messages: Localized fallback texts keyed by language tag. Missing
            languages keep the built-in texts.
        grace_period: Seconds an in-flight strategy gets to stop after cancellation
        race_width: When > 1, run that many top strategies concurrently and
            take the first acceptable answer before continuing in order
        logger: Structured logger receiving per-strategy events and metrics

    The coordinator holds no per-call state, so one instance can serve
    many questions from many threads.
    """

    def __init__(
        self,
        strategies: Sequence[StrategyAdapter],
        acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD,
        strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT,
        fallback_messages: Optional[Mapping[str, FallbackMessage]] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        race_width: int = 1,
        logger: Optional[StructuredLogger] = None,
    ):
        if strategy_timeout <= 0:
            raise ValueError("strategy_timeout must be positive")
        if race_width < 1:
            raise ValueError("race_width must be at least 1")
        self.strategies: Tuple[StrategyAdapter, ...] = tuple(strategies)
        self.acceptance_threshold = acceptance_threshold
        self.strategy_timeout = strategy_timeout
        self.fallback_messages: Dict[str, FallbackMessage] = {**FALLBACK_MESSAGES, **(fallback_messages or {})}
        self.grace_period = grace_period
        self.race_width = race_width
        self.logger = logger or get_logger()

    def resolve(self, question: Question, cancel: Optional[threading.Event] = None) -> Solution:
        """Return exactly one Solution for the question.

        Raises:
            ResolutionCancelled: If `cancel` is set before a solution is chosen.
        """
        return self.resolve_with_report(question, cancel=cancel).solution

    def resolve_with_report(
        self,
        question: Question,
        cancel: Optional[threading.Event] = None,
    ) -> Resolution:
        """Like resolve(), but also report every strategy attempt in order."""
        attempts: List[Attempt] = []
        remaining = list(self.strategies)

        if self.race_width > 1 and len(remaining) > 1:
            width = min(self.race_width, len(remaining))
            raced, remaining = remaining[:width], remaining[width:]
            solution = self._race(raced, question, cancel, attempts)
            if solution is not None:
                return self._finish(question, solution, attempts)

        for strategy in remaining:
            self._check_cancelled(cancel)
            solution = self._attempt(strategy, question, cancel, attempts)
            if solution is not None:
                return self._finish(question, solution, attempts)

        return self._finish(
            question, fallback_solution(question.language, self.fallback_messages), attempts, fallback=True
        )

    # Running strategies

    def _attempt(
        self,
        strategy: StrategyAdapter,
        question: Question,
        cancel: Optional[threading.Event],
        attempts: List[Attempt],
    ) -> Optional[Solution]:
        """Run one strategy to completion, timeout or cancellation."""
        self.logger.record_strategy_attempt(strategy.name)
        flight = _InFlight(strategy, question, self.strategy_timeout)
        deadline = flight.started + self.strategy_timeout

        while not flight.future.done():
            left = deadline - time.monotonic()
            if left <= 0:
                break
            wait([flight.future], timeout=min(POLL_INTERVAL, left) if cancel is not None else left)
            if cancel is not None and cancel.is_set() and not flight.future.done():
                self._abort([flight], attempts)

        if not flight.future.done():
            flight.abandon()
            error = StrategyTimeout(
                f"{strategy.name} exceeded {self.strategy_timeout:.2f}s", strategy=strategy.name
            )
            self._record_failure(question, strategy.name, error, flight.elapsed(), attempts)
            return None

        return self._judge(question, flight, attempts)

    def _race(
        self,
        strategies: Sequence[StrategyAdapter],
        question: Question,
        cancel: Optional[threading.Event],
        attempts: List[Attempt],
    ) -> Optional[Solution]:
        """Run strategies concurrently; the first acceptable answer wins."""
        self._check_cancelled(cancel)
        flights = []
        for strategy in strategies:
            self.logger.record_strategy_attempt(strategy.name)
            flights.append(_InFlight(strategy, question, self.strategy_timeout))
        deadline = min(f.started for f in flights) + self.strategy_timeout
        pending = list(flights)

        while pending:
            left = deadline - time.monotonic()
            if left <= 0:
                break
            done, _ = wait([f.future for f in pending], timeout=min(POLL_INTERVAL, left), return_when=FIRST_COMPLETED)
            # Same-poll finishers are judged in priority order
            for flight in [f for f in pending if f.future in done]:
                pending.remove(flight)
                solution = self._judge(question, flight, attempts)
                if solution is not None:
                    for loser in pending:
                        loser.abandon()
                        attempts.append(Attempt(loser.strategy.name, CANCELLED, loser.elapsed()))
                        self.logger.debug("Cancelled losing strategy", strategy=loser.strategy.name)
                    return solution
            if cancel is not None and cancel.is_set() and pending:
                self._abort(pending, attempts)

        for flight in pending:
            flight.abandon()
            error = StrategyTimeout(
                f"{flight.strategy.name} exceeded {self.strategy_timeout:.2f}s", strategy=flight.strategy.name
            )
            self._record_failure(question, flight.strategy.name, error, flight.elapsed(), attempts)
        return None

    def _judge(self, question: Question, flight: _InFlight, attempts: List[Attempt]) -> Optional[Solution]:
        """Classify a finished strategy call; return the solution if accepted."""
        name = flight.strategy.name
        elapsed = flight.elapsed()
        error = flight.future.exception()

        if error is not None:
            if not isinstance(error, StrategyError):
                self.logger.error(
                    "Strategy raised an unexpected error",
                    strategy=name,
                    error_type=type(error).__name__,
                    error=str(error),
                )
                error = Unavailable(f"{type(error).__name__}: {error}", strategy=name)
            self._record_failure(question, name, error, elapsed, attempts)
            return None

        result = flight.future.result()
        if not isinstance(result, Solution):
            error = Malformed(f"{name} returned {type(result).__name__}, not a Solution", strategy=name)
            self._record_failure(question, name, error, elapsed, attempts)
            return None

        if result.confidence < self.acceptance_threshold:
            error = LowConfidence(result.confidence, strategy=name)
            self._record_failure(question, name, error, elapsed, attempts, confidence=result.confidence)
            return None

        attempts.append(Attempt(name, ACCEPTED, elapsed, confidence=result.confidence))
        self.logger.record_strategy_success(name)
        return result

    # Bookkeeping

    def _record_failure(
        self,
        question: Question,
        strategy: str,
        error: StrategyError,
        elapsed: float,
        attempts: List[Attempt],
        confidence: Optional[float] = None,
    ):
        attempts.append(Attempt(strategy, error.kind, elapsed, confidence=confidence, detail=str(error)))
        self.logger.record_strategy_failure(strategy, error.kind)
        log = self.logger.info if isinstance(error, LowConfidence) else self.logger.warning
        log(
            "Strategy did not produce an accepted solution",
            strategy=strategy,
            kind=error.kind,
            elapsed=round(elapsed, 3),
            question_id=question.question_id,
            detail=str(error),
        )

    def _check_cancelled(self, cancel: Optional[threading.Event]):
        if cancel is not None and cancel.is_set():
            raise ResolutionCancelled("Resolution cancelled by caller")

    def _abort(self, flights: Sequence[_InFlight], attempts: List[Attempt]):
        """Stop in-flight strategies, give them the grace period, then raise."""
        for flight in flights:
            flight.abandon()
        wait([f.future for f in flights], timeout=self.grace_period)
        for flight in flights:
            attempts.append(Attempt(flight.strategy.name, CANCELLED, flight.elapsed()))
        self.logger.info(
            "Resolution cancelled",
            in_flight=[f.strategy.name for f in flights],
        )
        raise ResolutionCancelled("Resolution cancelled by caller")

    def _finish(
        self,
        question: Question,
        solution: Solution,
        attempts: List[Attempt],
        fallback: bool = False,
    ) -> Resolution:
        self.logger.record_resolution(fallback=fallback)
        if fallback:
            self.logger.warning(
                "No strategy succeeded, returning fallback",
                question_id=question.question_id,
                language=question.language,
                attempts=[(a.strategy, a.outcome) for a in attempts],
            )
        else:
            self.logger.info(
                "Question resolved",
                question_id=question.question_id,
                source=solution.source,
                confidence=solution.confidence,
                attempts=len(attempts),
            )
        return Resolution(solution=solution, attempts=tuple(attempts))


def resolve(
    question: Question,
    strategies: Sequence[StrategyAdapter],
    acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD,
    strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT,
    fallback_messages: Optional[Mapping[str, FallbackMessage]] = None,
    cancel: Optional[threading.Event] = None,
) -> Solution:
    """One-shot resolution with an ad hoc coordinator."""
    coordinator = ResolutionCoordinator(
        strategies,
        acceptance_threshold=acceptance_threshold,
        strategy_timeout=strategy_timeout,
        fallback_messages=fallback_messages,
    )
    return coordinator.resolve(question, cancel=cancel)
