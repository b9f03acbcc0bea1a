"""Solving strategies and the factory that builds them from settings."""

from typing import List

from ..config import ResolverSettings
from .base import StrategyAdapter
from .heuristic import HeuristicStrategy
from .inference import InferenceStrategy
from .reference import ReferenceStrategy, sources_from_config

__all__ = [
    "StrategyAdapter",
    "HeuristicStrategy",
    "InferenceStrategy",
    "ReferenceStrategy",
    "build_strategies",
]


def build_strategies(settings: ResolverSettings) -> List[StrategyAdapter]:
    """Instantiate strategies in the configured priority order."""
    strategies: List[StrategyAdapter] = []
    for name in settings.strategies:
        if name == "inference":
            strategies.append(InferenceStrategy(
                api_token=settings.inference_token,
                models=settings.inference_models or None,
            ))
        elif name == "reference":
            strategies.append(ReferenceStrategy(sources_from_config(settings.reference_sources)))
        elif name == "heuristic":
            strategies.append(HeuristicStrategy())
        else:
            raise ValueError(f"Unknown strategy: {name}")
    return strategies
