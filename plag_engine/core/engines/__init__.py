"""Similarity engines and the factory that builds an engine list from configuration."""

from typing import List, Optional, Sequence

from ..config import Config
from ..errors import ConfigError
from .base import SimilarityEngine, run_tool
from .fake import FakeEngine
from .jplag import JPlagEngine
from .dolos import DolosEngine
from .embedding import EmbeddingEngine

ENGINE_NAMES = ["fake", "jplag", "dolos", "embedding"]


def build_engine(name: str, config: Config) -> SimilarityEngine:
    """Build a single engine by name."""
    name = name.strip().lower()

    if name == "fake":
        return FakeEngine()
    if name == "jplag":
        return JPlagEngine(
            command=list(config.jplag_command),
            min_tokens=config.jplag_min_tokens,
            timeout=config.engine_timeout,
        )
    if name == "dolos":
        return DolosEngine(command=list(config.dolos_command), timeout=config.engine_timeout)
    if name == "embedding":
        if not config.validate_api_key():
            raise ConfigError("The embedding engine needs OPENAI_API_KEY to be set.")
        return EmbeddingEngine(config)

    raise ConfigError(f"Unknown similarity engine '{name}'. Known engines: {', '.join(ENGINE_NAMES)}.")


def build_engines(names: Optional[Sequence[str]] = None, config: Optional[Config] = None) -> List[SimilarityEngine]:
    """
    Build an ordered list of engines.

    Args:
        names: Engine names (defaults to config.engines)
        config: Configuration object (uses defaults if not provided)
    """
    config = config or Config()
    names = list(names) if names is not None else list(config.engines)
    if not names:
        raise ConfigError("At least one similarity engine is required.")

    return [build_engine(name, config) for name in names]


__all__ = [
    "SimilarityEngine",
    "FakeEngine",
    "JPlagEngine",
    "DolosEngine",
    "EmbeddingEngine",
    "ENGINE_NAMES",
    "build_engine",
    "build_engines",
    "run_tool",
]
