"""
Exceptions raised by collaborators of the regeneration engine.

None of these escape the public pipeline operations: evaluator errors
degrade to a placeholder score and generation errors become recorded
failure attempts.
"""


class RegenError(Exception):
    """Base exception for all scene regeneration errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class EvaluatorUnavailable(RegenError):
    """Raised when no vision evaluator is configured or reachable."""
    pass


class EvaluatorParseError(RegenError):
    """Raised when an evaluator payload holds no recoverable JSON object."""
    pass


class GenerationFailure(RegenError):
    """Raised when a provider reports that a generation task failed."""

    def __init__(self, provider: str, message: str, task_id: str = None):
        details = {"provider": provider}
        if task_id:
            details["task_id"] = task_id
        super().__init__(message, details)
        self.provider = provider
        self.task_id = task_id


class GenerationTimeout(GenerationFailure):
    """Raised when a generation task exceeds its bounded wait."""

    def __init__(self, provider: str, timeout: float, task_id: str = None):
        super().__init__(provider, f"Generation timed out after {timeout:.0f}s", task_id)
        self.timeout = timeout
