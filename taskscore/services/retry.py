from __future__ import annotations

from dataclasses import dataclass

from ..errors import EvaluatorError


@dataclass(frozen=True)
class RetryPolicy:
    """How many times one evaluator call is attempted and how long to back off."""

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_before(self, retry: int) -> float:
        """Backoff before the ``retry``-th retry (1-based): 1s, 2s, 4s..."""
        return self.base_delay * (self.factor ** (retry - 1))

    @staticmethod
    def is_retriable(error: Exception) -> bool:
        return isinstance(error, EvaluatorError) and error.retriable
