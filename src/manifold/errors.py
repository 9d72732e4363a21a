"""Exception classes for manifold."""

from __future__ import annotations


class ManifoldError(Exception):
    """Base exception for all manifold errors."""


class ConfigurationError(ManifoldError):
    """Raised when models, materializations or run options are misconfigured."""


class CycleError(ManifoldError):
    """Raised when the dependency graph contains a cycle.

    ``cycles`` holds one name chain per detected cycle, each chain closed on
    its first member (``["a", "b", "a"]``).
    """

    def __init__(self, message: str, cycles: list[list[str]] | None = None) -> None:
        super().__init__(message)
        self.cycles = cycles or []


class ExecutionError(ManifoldError):
    """Raised when the store fails to execute a single model's program."""

    def __init__(self, model: str, message: str) -> None:
        super().__init__(f"Model '{model}' failed: {message}")
        self.model = model
        self.message = message
