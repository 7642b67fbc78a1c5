"""Error taxonomy for the analysis engine."""

from typing import Any, Dict, Optional


class AnalysisError(Exception):
    """Base error. Carries diagnostic context (course, assignment, key, ...)."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def __str__(self) -> str:
        return self._render()

    def _render(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ConfigError(AnalysisError):
    """Invalid analysis options or engine configuration. Never retried."""


class FetchError(AnalysisError):
    """Template or submission content could not be staged."""


class EngineError(AnalysisError):
    """A single engine failed to compare a pair of files."""


class CacheError(AnalysisError):
    """The persistence collaborator failed."""


class IncompleteAnalysisError(AnalysisError):
    """Some keys of a blocking request could not be computed.

    `results` holds everything that did succeed, `failures` maps each failed
    key to the error that stopped it.
    """

    def __init__(self, message: str, results: Optional[list] = None,
                 failures: Optional[Dict[str, Exception]] = None, **context: Any):
        self.results = results or []
        self.failures = failures or {}
        super().__init__(message, **context)
