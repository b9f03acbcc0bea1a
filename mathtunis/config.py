"""
Runtime settings for the resolver and the chat service.

Settings come from environment variables (optionally loaded from .env by
env.load_env). validate() returns a list of problems instead of raising so
the CLI can print all of them at once.
"""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_STRATEGIES = ["inference", "reference", "heuristic"]
KNOWN_STRATEGIES = set(DEFAULT_STRATEGIES)

DEFAULT_ACCEPTANCE_THRESHOLD = 70.0
DEFAULT_STRATEGY_TIMEOUT = 8.0
DEFAULT_GRACE_PERIOD = 0.5
DEFAULT_FREE_QUESTION_LIMIT = 2


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class ResolverSettings:
    strategies: List[str] = field(default_factory=lambda: list(DEFAULT_STRATEGIES))
    acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD
    strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT
    grace_period: float = DEFAULT_GRACE_PERIOD
    race_width: int = 1
    inference_token: Optional[str] = None
    inference_models: List[str] = field(default_factory=list)
    reference_sources: List[Dict[str, Any]] = field(default_factory=list)
    db_path: Path = Path("data/mathtunis.db")
    free_question_limit: int = DEFAULT_FREE_QUESTION_LIMIT
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @classmethod
    def from_env(cls) -> "ResolverSettings":
        """Read settings from MATHTUNIS_* variables and the inference token vars."""
        sources_raw = os.getenv("MATHTUNIS_REFERENCE_SOURCES", "").strip()
        if sources_raw:
            try:
                sources = json.loads(sources_raw)
            except json.JSONDecodeError as e:
                raise ValueError(f"MATHTUNIS_REFERENCE_SOURCES is not valid JSON: {e}")
            if not isinstance(sources, list):
                raise ValueError("MATHTUNIS_REFERENCE_SOURCES must be a JSON list")
        else:
            sources = []

        defaults = cls()
        return cls(
            strategies=_split_list(os.getenv("MATHTUNIS_STRATEGIES")) or list(DEFAULT_STRATEGIES),
            acceptance_threshold=_env_float("MATHTUNIS_ACCEPTANCE_THRESHOLD", defaults.acceptance_threshold),
            strategy_timeout=_env_float("MATHTUNIS_STRATEGY_TIMEOUT", defaults.strategy_timeout),
            grace_period=_env_float("MATHTUNIS_GRACE_PERIOD", defaults.grace_period),
            race_width=_env_int("MATHTUNIS_RACE_WIDTH", defaults.race_width),
            inference_token=os.getenv("HUGGINGFACE_API_KEY") or os.getenv("HUGGINGFACE_TOKEN") or None,
            inference_models=_split_list(os.getenv("MATHTUNIS_INFERENCE_MODELS")),
            reference_sources=sources,
            db_path=Path(os.getenv("MATHTUNIS_DB", str(defaults.db_path))),
            free_question_limit=_env_int("MATHTUNIS_FREE_QUESTIONS", defaults.free_question_limit),
            log_level=os.getenv("MATHTUNIS_LOG_LEVEL", defaults.log_level),
            log_dir=Path(os.getenv("MATHTUNIS_LOG_DIR", str(defaults.log_dir))),
        )

    def with_overrides(self, **changes: Any) -> "ResolverSettings":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.strategies:
            errors.append("At least one strategy must be configured")
        unknown = [s for s in self.strategies if s not in KNOWN_STRATEGIES]
        if unknown:
            errors.append(f"Unknown strategies: {', '.join(unknown)}")
        if len(set(self.strategies)) != len(self.strategies):
            errors.append("Strategies must not repeat")
        if not 0 <= self.acceptance_threshold <= 100:
            errors.append("Acceptance threshold must be within [0, 100]")
        if self.strategy_timeout <= 0:
            errors.append("Strategy timeout must be positive")
        if self.grace_period < 0:
            errors.append("Grace period must not be negative")
        if self.race_width < 1:
            errors.append("Race width must be at least 1")
        if self.free_question_limit < 0:
            errors.append("Free question limit must not be negative")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown log level: {self.log_level}")
        return errors
