"""
Retry Strategies

Retry helpers used around sponsorship and other transient external calls.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, Optional, TypeVar

from .errors import ErrorCategory, RecoverableError, UnrecoverableError, classify_error

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    # Category-specific overrides
    category_overrides: Dict[ErrorCategory, "RetryConfig"] = field(default_factory=dict)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


class RetryStrategy:
    """
    Simple retry strategy with configurable attempts.

    Retries recoverable errors up to max_attempts times. Unrecoverable
    errors propagate immediately.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        respect_retry_after: bool = False,
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.respect_retry_after = respect_retry_after

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        operation_name: str = "operation",
    ) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(self.config.max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_error = e

                if not self.should_retry(e, attempt):
                    raise

                delay = self._get_delay(e, attempt)
                self.logger.warning(
                    f"{operation_name} attempt {attempt + 1}/{self.config.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        # All attempts exhausted
        raise last_error or RuntimeError("All retry attempts exhausted")

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.config.max_attempts - 1:
            return False

        if isinstance(error, UnrecoverableError):
            return False

        if isinstance(error, RecoverableError):
            return True

        return classify_error(error).recoverable

    def _get_delay(self, error: Exception, attempt: int) -> float:
        if self.respect_retry_after and isinstance(error, RecoverableError) and error.retry_after:
            return error.retry_after

        if isinstance(error, (RecoverableError, UnrecoverableError)):
            category = error.category
            if category in self.config.category_overrides:
                return self.config.category_overrides[category].get_delay(attempt)

        return self.config.get_delay(attempt)


class ExponentialBackoffStrategy(RetryStrategy):
    """
    Retry strategy with exponential backoff.

    Increases delay exponentially between retries to avoid
    overwhelming failing services.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        config = RetryConfig(
            max_attempts=max_attempts,
            initial_delay_seconds=initial_delay,
            max_delay_seconds=max_delay,
            exponential_base=exponential_base,
            jitter=jitter,
        )
        super().__init__(config, logger)
