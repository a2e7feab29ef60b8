"""Production hardening utilities for the Tandem backend.

Provides async retry logic for calls to the external text-generation
service, NaN-safe numeric guards for aggregate statistics, and
user-friendly error formatting for the HTTP boundary. Everything here is
free of Tandem domain types so it can be reused by any router or service.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Retry Logic
# ---------------------------------------------------------------------------

_DEFAULT_RETRYABLE = (OSError, TimeoutError, ConnectionError)


@dataclass
class RetryConfig:
    """Configuration for retry-with-backoff behavior.

    Attributes:
        max_attempts: Total number of attempts (including the first).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Upper bound on delay between retries.
        exponential_backoff: Double delay on each retry when True.
        retryable_exceptions: Tuple of exception types that trigger a retry.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_backoff: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = _DEFAULT_RETRYABLE


class RetriesExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        last_error: The final exception that caused the failure.
        attempts: Total number of attempts made.
    """

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"All {attempts} attempts failed. Last error: {last_error}")


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Compute the delay before the next retry attempt.

    Args:
        attempt: Zero-based attempt index (0 = first retry).
        config: Retry configuration.

    Returns:
        Delay in seconds, capped at config.max_delay.
    """
    if config.exponential_backoff:
        delay = config.base_delay * (2**attempt)
    else:
        delay = config.base_delay
    return min(delay, config.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    config: RetryConfig | None = None,
    *,
    sleep_func: Callable[[float], Awaitable[Any]] | None = None,
) -> Any:
    """Await *func* with exponential-backoff retry on transient failures.

    Args:
        func: Zero-argument coroutine factory, called once per attempt.
        config: Retry configuration. Uses defaults when None.
        sleep_func: Injectable async sleep for testing. Defaults to asyncio.sleep.

    Returns:
        Whatever the coroutine returns on success.

    Raises:
        RetriesExhaustedError: When all attempts fail with retryable errors.
        Exception: Immediately re-raised for non-retryable errors.
    """
    cfg = config or RetryConfig()
    do_sleep = sleep_func or asyncio.sleep
    last_error: BaseException | None = None

    for attempt in range(cfg.max_attempts):
        try:
            return await func()
        except cfg.retryable_exceptions as exc:
            last_error = exc
            if attempt < cfg.max_attempts - 1:
                delay = _compute_delay(attempt, cfg)
                logger.warning(
                    "Attempt %d/%d failed (%s). Retrying in %.1fs.",
                    attempt + 1,
                    cfg.max_attempts,
                    exc,
                    delay,
                )
                await do_sleep(delay)

    raise RetriesExhaustedError(last_error, cfg.max_attempts)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# 2. Numeric Guards
# ---------------------------------------------------------------------------


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp *value* into ``[lower, upper]``.

    NaN maps to *lower*; positive and negative infinity map to the
    matching bound.

    Args:
        value: Candidate value, possibly NaN or infinite.
        lower: Inclusive lower bound.
        upper: Inclusive upper bound.

    Returns:
        A finite float within the bounds.

    Raises:
        ValueError: If lower is greater than upper.
    """
    if lower > upper:
        raise ValueError(f"lower bound {lower} exceeds upper bound {upper}")
    if math.isnan(value):
        return lower
    return max(lower, min(upper, float(value)))


def coerce_float(value: Any, default: float) -> float:
    """Convert loosely-typed input to a finite float.

    Used on values parsed from external JSON, where numbers may arrive
    as strings, booleans, or nulls.

    Args:
        value: Raw value.
        default: Returned when the value is missing or not numeric.

    Returns:
        A finite float.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


# ---------------------------------------------------------------------------
# 3. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (store, metrics, responder, api).
        error_code: Machine-readable identifier (e.g. "API_003").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or implementation details to the end user.
    """

    def format_api_error(self, error: BaseException) -> UserFriendlyError:
        """Format an error raised while handling an HTTP request.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="api", code_prefix="API")

    def format_responder_error(self, error: BaseException) -> UserFriendlyError:
        """Format an error from the external text-generation service.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="responder", code_prefix="GEN")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: BaseException,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        """Shared formatting logic.

        Args:
            error: The caught exception.
            component: Subsystem name.
            code_prefix: Short prefix for error code.

        Returns:
            Structured error with safe user message.
        """
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: BaseException) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, RetriesExhaustedError):
        return (
            "The language service did not respond after several attempts.",
            "Try again in a moment.",
            "007",
        )
    if isinstance(error, (TimeoutError, ConnectionError)):
        return (
            "The operation timed out or lost its connection.",
            "Try again. If the problem persists, check the network.",
            "003",
        )
    if isinstance(error, MemoryError):
        return (
            "The server ran out of memory.",
            "Try again later or start a new conversation.",
            "004",
        )
    if isinstance(error, json.JSONDecodeError):
        return (
            "The language service returned malformed data.",
            "Try rephrasing the message.",
            "006",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )
