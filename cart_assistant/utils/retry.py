"""Retry utilities for LLM calls."""
import asyncio
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.exceptions import LLMRequestError, RateLimitedResponse


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        exponential_base: float = 2.0,
        max_wait: float = 10.0,
        rate_limit_default_wait: float = 2.0,
        rate_limit_max_wait: float = 5.0,
    ):
        self.max_attempts = max_attempts
        self.exponential_base = exponential_base
        self.max_wait = max_wait
        self.rate_limit_default_wait = rate_limit_default_wait
        self.rate_limit_max_wait = rate_limit_max_wait


class LLMBackoff:
    """tenacity wait strategy.

    A 429 waits for the server's retry hint (default 2s, capped at 5s) instead
    of backing off; every other failure waits ``base ** (attempt - 1)``
    seconds, capped at ``max_wait``.
    """

    def __init__(self, config: RetryConfig):
        self.config = config

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimitedResponse):
            hint = error.retry_after
            if hint is None or hint < 0:
                hint = self.config.rate_limit_default_wait
            return min(float(hint), self.config.rate_limit_max_wait)
        backoff = self.config.exponential_base ** (retry_state.attempt_number - 1)
        return min(backoff, self.config.max_wait)


def _log_before_sleep(retry_state: RetryCallState):
    error = retry_state.outcome.exception()
    logger.warning(
        f"Retrying LLM request after {error} "
        f"(attempt {retry_state.attempt_number}, waiting {retry_state.next_action.sleep:.1f}s)"
    )


def llm_retrying(
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Build the retry controller used around a single LLM request.

    Only ``LLMRequestError`` is retried; exhausting the attempts re-raises
    the last one.
    """
    if config is None:
        config = RetryConfig()

    return AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=LLMBackoff(config),
        retry=retry_if_exception_type(LLMRequestError),
        reraise=True,
        sleep=sleep,
        before_sleep=_log_before_sleep,
    )
