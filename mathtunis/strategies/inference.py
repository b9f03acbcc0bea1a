"""Remote text-generation strategy backed by the hosted inference API."""

import threading
from typing import Any, List, Optional, Sequence

from ..errors import Malformed, StrategyError, StrategyTimeout, Unavailable
from ..locales import SOLVE_PROMPTS, localized
from ..logger import get_logger
from ..models import SOURCE_INFERENCE, Question, Solution
from ..parsing import extract_final_answer, split_into_steps
from ..retry import CircuitBreaker, Deadline
from .base import StrategyAdapter
from .common import decode_json, request_with_error_handling

logger = get_logger()

INFERENCE_ENDPOINT = "https://api-inference.huggingface.co/models/{model}"

DEFAULT_MODELS = [
    "microsoft/DialoGPT-medium",
    "facebook/blenderbot-400M-distill",
    "microsoft/DialoGPT-small",
]

INFERENCE_CONFIDENCE = 85


def format_prompt(question: str, language: str) -> str:
    return localized(SOLVE_PROMPTS, language).format(question=question)


def generated_text(payload: Any) -> str:
    """Extract generated_text from either response shape the API returns."""
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        text = payload[0].get("generated_text")
    elif isinstance(payload, dict):
        text = payload.get("generated_text")
    else:
        text = None
    if not isinstance(text, str):
        raise Malformed("Response has no generated_text")
    return text


class InferenceStrategy(StrategyAdapter):
    """
    Ask hosted text-generation models for a step-by-step solution.

    Models are tried in order until one answers. The whole loop shares the
    strategy's time budget. A circuit breaker opens after repeated failures
    so that an outage costs one fast Unavailable instead of a full timeout
    on every question.
    """

    name = "inference"
    source = SOURCE_INFERENCE

    def __init__(
        self,
        api_token: Optional[str],
        models: Optional[Sequence[str]] = None,
        endpoint: str = INFERENCE_ENDPOINT,
        confidence: float = INFERENCE_CONFIDENCE,
        max_length: int = 500,
        temperature: float = 0.7,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_token = api_token
        self.models: List[str] = list(models or DEFAULT_MODELS)
        self.endpoint = endpoint
        self.confidence = confidence
        self.max_length = max_length
        self.temperature = temperature
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60,
            expected_exception=Unavailable,
            name=self.name,
        )

    def solve(
        self,
        question: Question,
        language: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> Solution:
        if not self.api_token:
            raise Unavailable("Inference API token not configured", strategy=self.name)
        if not self.models:
            raise Unavailable("No inference models configured", strategy=self.name)
        deadline = Deadline(timeout)
        return self.breaker.call(self._solve_with_models, question, language, deadline, cancel)

    def _solve_with_models(
        self,
        question: Question,
        language: str,
        deadline: Deadline,
        cancel: Optional[threading.Event],
    ) -> Solution:
        last_error: Optional[StrategyError] = None
        for model in self.models:
            self.checkpoint(deadline, cancel)
            try:
                text = self._generate(model, question.text, language, deadline, cancel)
            except StrategyTimeout:
                raise
            except (Unavailable, Malformed) as e:
                logger.warning("Inference model failed", model=model, kind=e.kind, error=str(e))
                last_error = e
                continue

            logger.debug("Inference model answered", model=model, chars=len(text))
            return Solution(
                steps=split_into_steps(text, language),
                final_answer=extract_final_answer(text, language),
                confidence=self.confidence,
                source=self.source,
                metadata={"model": model},
            )

        if isinstance(last_error, Malformed):
            raise Malformed(f"No model produced usable text: {last_error}", strategy=self.name)
        raise Unavailable(f"All inference models failed: {last_error}", strategy=self.name)

    def _generate(
        self,
        model: str,
        question_text: str,
        language: str,
        deadline: Deadline,
        cancel: Optional[threading.Event],
    ) -> str:
        resp = request_with_error_handling(
            "POST",
            self.endpoint.format(model=model),
            self.name,
            deadline,
            cancel=cancel,
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
            json={
                "inputs": format_prompt(question_text, language),
                "parameters": {
                    "max_length": self.max_length,
                    "temperature": self.temperature,
                    "do_sample": True,
                },
            },
        )
        payload = decode_json(resp, self.name)
        text = generated_text(payload)
        if not text.strip():
            raise Malformed("Model returned empty text", strategy=self.name)
        return text
