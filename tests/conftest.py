"""
Pytest configuration and shared fixtures.
"""

import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest
import requests

from mathtunis.database import init_database, get_session
from mathtunis.errors import ResolutionCancelled
from mathtunis.logger import StructuredLogger
from mathtunis.models import Question, Solution, Step
from mathtunis.strategies.base import StrategyAdapter


class FakeStrategy(StrategyAdapter):
    """
    Strategy with scripted behaviour for coordinator tests.

    Sleeps for `delay` seconds (waking early when its cancel event is set,
    unless `cooperative` is False), then raises `error` if given, returns
    `result` if given, else a one-step Solution at `confidence`.
    """

    _unset = object()

    def __init__(
        self,
        name: str,
        confidence: float = 90,
        delay: float = 0.0,
        error: Optional[BaseException] = None,
        result: Any = _unset,
        cooperative: bool = True,
    ):
        self.name = name
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.result = result
        self.cooperative = cooperative
        self.calls = 0
        self.last_result = None
        self.started = threading.Event()
        self.cancelled = threading.Event()
        self.finished = threading.Event()

    def solve(self, question, language, timeout, cancel=None):
        self.calls += 1
        self.started.set()
        try:
            if self.delay:
                if cancel is not None and self.cooperative:
                    if cancel.wait(self.delay):
                        self.cancelled.set()
                        raise ResolutionCancelled(f"{self.name} cancelled")
                else:
                    time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.result is not self._unset:
                self.last_result = self.result
            else:
                self.last_result = Solution(
                    steps=[Step(title=f"{self.name} step", explanation=f"worked by {self.name}")],
                    final_answer=f"{self.name} answer",
                    confidence=self.confidence,
                    source=self.name,
                )
            return self.last_result
        finally:
            self.finished.set()


@pytest.fixture
def fake_strategy():
    """Factory for FakeStrategy instances."""
    return FakeStrategy


@pytest.fixture
def quiet_logger(tmp_path) -> StructuredLogger:
    """Logger writing only to a temporary directory."""
    return StructuredLogger(name="mathtunis-test", log_dir=tmp_path / "logs", enable_console=False)


@pytest.fixture
def question() -> Question:
    return Question(text="Résoudre x² + 2x - 8 = 0", language="fr", question_id="q-1")


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Initialized temporary SQLite database."""
    path = tmp_path / "mathtunis.db"
    init_database(path)
    return path


@pytest.fixture
def db_session(db_path):
    """Session on the temporary database."""
    session = get_session(db_path)
    yield session
    session.close()


@pytest.fixture
def sample_reference_html() -> str:
    """Worked-solution page as a reference site would serve it."""
    return """
    <html>
    <head><title>x^2 + 2x - 8 = 0</title></head>
    <body>
        <div class="solution">
            <div class="step">Factoriser le trinôme <span class="formula">(x + 4)(x - 2) = 0</span></div>
            <div class="step">Un produit est nul si l'un des facteurs est nul</div>
            <div class="step">   </div>
            <div class="step">On obtient x = -4 ou x = 2</div>
            <p class="answer">x = -4 ou x = 2</p>
        </div>
    </body>
    </html>
    """


@pytest.fixture
def reference_source_config() -> Dict[str, Any]:
    return {
        "name": "exosite",
        "url_template": "https://exo.example.com/search?q={query}&lang={language}",
        "step_selector": "div.solution div.step",
        "answer_selector": "p.answer",
        "math_selector": "span.formula",
        "confidence": 80,
    }


@pytest.fixture
def inference_text() -> str:
    """Generated text in the shape hosted models return."""
    return (
        "On écrit l'équation x^2 + 2x - 8 = 0\n"
        "-\n"
        "On calcule le discriminant: 4 + 32 = 36\n"
        "Les racines sont (-2 - 6)/2 et (-2 + 6)/2\n"
        "Réponse: x = -4 ou x = 2\n"
    )


@pytest.fixture
def make_response():
    """Build a stand-in for requests.Response."""

    def _make(status_code: int = 200, json_data: Any = None, text: str = "", json_error: bool = False):
        resp = MagicMock(spec=requests.Response)
        resp.status_code = status_code
        resp.text = text
        if json_error:
            resp.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            resp.json.return_value = json_data
        if status_code >= 400:
            resp.raise_for_status.side_effect = requests.exceptions.HTTPError(
                f"{status_code} Error", response=resp
            )
        else:
            resp.raise_for_status.return_value = None
        return resp

    return _make
