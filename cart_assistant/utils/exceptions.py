"""Exception types shared across the assistant."""
from typing import Optional


class AssistantError(Exception):
    """Base class for errors raised by the assistant."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(AssistantError):
    """Input or session format rejected before any side effect."""

    def __init__(self, message: str, reason: str = "invalid_input"):
        self.reason = reason
        super().__init__(message)


class AuthError(AssistantError):
    """Session is unknown, expired or owned by someone else."""


class RateLimitError(AssistantError):
    """Caller exceeded the request budget for the current window."""

    def __init__(self, message: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(message)


class LLMRequestError(AssistantError):
    """A call to the LLM API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitedResponse(LLMRequestError):
    """The LLM API answered 429; carries the server's retry hint."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429)


class ToolExecutionError(AssistantError):
    """A tool call could not be dispatched or failed while running."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        self.tool_name = tool_name
        super().__init__(message)


class PersistenceError(AssistantError):
    """A history or store write failed."""
