"""Exceptions raised by the semantic search server."""

from __future__ import annotations


class SemanticSearchError(Exception):
    """Base class for server errors."""


class ConfigurationError(SemanticSearchError):
    """Raised when configuration values are missing or invalid."""


class InitializationError(SemanticSearchError):
    """Raised when the engine cannot be made ready within the retry budget."""

    def __init__(self, attempts: int, cause: BaseException) -> None:
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Engine initialization failed after {attempts} attempts: {cause}")
