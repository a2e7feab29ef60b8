"""Tests for shared.hardening utilities.

Covers async retry logic, numeric guards, and error formatting.
"""

from __future__ import annotations

import asyncio
import json
import math

import pytest

from shared.hardening import (
    ErrorFormatter,
    RetriesExhaustedError,
    RetryConfig,
    UserFriendlyError,
    _classify_error,
    _compute_delay,
    clamp,
    coerce_float,
    retry_async,
)


async def _no_sleep(_: float) -> None:
    return None


# =========================================================================
# 1. Retry Logic
# =========================================================================


class TestRetryConfig:
    """Tests for RetryConfig dataclass defaults and overrides."""

    def test_default_values(self) -> None:
        """Default config suits short network calls."""
        cfg = RetryConfig()
        assert cfg.max_attempts == 3
        assert cfg.base_delay == 0.5
        assert cfg.max_delay == 8.0
        assert cfg.exponential_backoff is True
        assert ConnectionError in cfg.retryable_exceptions

    def test_custom_values(self) -> None:
        """Overriding defaults works correctly."""
        cfg = RetryConfig(
            max_attempts=5,
            base_delay=0.1,
            max_delay=1.0,
            exponential_backoff=False,
            retryable_exceptions=(ValueError,),
        )
        assert cfg.max_attempts == 5
        assert cfg.exponential_backoff is False
        assert cfg.retryable_exceptions == (ValueError,)


class TestComputeDelay:
    """Tests for the delay computation helper."""

    def test_exponential_backoff_doubles(self) -> None:
        """Each retry doubles the previous delay."""
        cfg = RetryConfig(base_delay=1.0)
        assert [_compute_delay(i, cfg) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped_at_max(self) -> None:
        """Delay never exceeds max_delay."""
        cfg = RetryConfig(base_delay=1.0, max_delay=5.0)
        assert _compute_delay(10, cfg) == 5.0

    def test_linear_backoff(self) -> None:
        """Without exponential backoff the delay stays constant."""
        cfg = RetryConfig(base_delay=2.0, exponential_backoff=False)
        assert _compute_delay(3, cfg) == 2.0


class TestRetryAsync:
    """Tests for the retry_async coroutine."""

    def test_succeeds_on_first_attempt(self) -> None:
        """No retries needed when the call succeeds immediately."""

        async def ok() -> int:
            return 42

        assert asyncio.run(retry_async(ok, sleep_func=_no_sleep)) == 42

    def test_succeeds_after_transient_failure(self) -> None:
        """Retries on ConnectionError and eventually succeeds."""
        call_count = 0

        async def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("transient")
            return "ok"

        assert asyncio.run(retry_async(flaky, sleep_func=_no_sleep)) == "ok"
        assert call_count == 3

    def test_raises_retries_exhausted(self) -> None:
        """Raises RetriesExhaustedError when all attempts fail."""

        async def always_fail() -> None:
            raise TimeoutError("slow")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            asyncio.run(
                retry_async(always_fail, RetryConfig(max_attempts=2), sleep_func=_no_sleep)
            )

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, TimeoutError)

    def test_non_retryable_exception_raised_immediately(self) -> None:
        """ValueError is not retryable by default and raises at once."""
        call_count = 0

        async def bad() -> None:
            nonlocal call_count
            call_count += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            asyncio.run(retry_async(bad, sleep_func=_no_sleep))

        assert call_count == 1

    def test_sleep_called_between_retries(self) -> None:
        """Sleep is awaited with the backoff delays."""
        delays: list[float] = []

        async def record(delay: float) -> None:
            delays.append(delay)

        async def always_fail() -> None:
            raise OSError("fail")

        with pytest.raises(RetriesExhaustedError):
            asyncio.run(
                retry_async(
                    always_fail,
                    RetryConfig(max_attempts=3, base_delay=1.0),
                    sleep_func=record,
                )
            )

        assert delays == [1.0, 2.0]

    def test_retries_exhausted_str(self) -> None:
        """RetriesExhaustedError has a helpful string representation."""
        err = RetriesExhaustedError(ConnectionError("refused"), 3)
        assert "3 attempts" in str(err)
        assert "refused" in str(err)


# =========================================================================
# 2. Numeric Guards
# =========================================================================


class TestClamp:
    """Tests for the NaN-safe clamp helper."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0.5, 0.5),
            (-1.0, 0.0),
            (2.0, 1.0),
            (math.inf, 1.0),
            (-math.inf, 0.0),
        ],
    )
    def test_bounds(self, value: float, expected: float) -> None:
        """Values outside the range map to the nearest bound."""
        assert clamp(value, 0.0, 1.0) == expected

    def test_nan_maps_to_lower(self) -> None:
        """NaN is treated as the lower bound."""
        assert clamp(math.nan, 0.0, 0.99) == 0.0

    def test_inverted_bounds_rejected(self) -> None:
        """lower > upper is a programming error."""
        with pytest.raises(ValueError):
            clamp(0.5, 1.0, 0.0)


class TestCoerceFloat:
    """Tests for coerce_float."""

    def test_numeric_string(self) -> None:
        """Numeric strings are parsed."""
        assert coerce_float("0.85", 0.9) == 0.85

    @pytest.mark.parametrize("raw", [None, True, "high", [], "nan", "inf"])
    def test_unusable_values_use_default(self, raw: object) -> None:
        """Missing, boolean, non-numeric, and non-finite inputs fall back."""
        assert coerce_float(raw, 0.9) == 0.9


# =========================================================================
# 3. Error Formatting
# =========================================================================


class TestUserFriendlyError:
    """Tests for UserFriendlyError dataclass."""

    def test_to_dict_excludes_technical_detail(self) -> None:
        """to_dict never includes technical_detail."""
        err = UserFriendlyError(
            message="Something failed.",
            suggestion="Try again.",
            component="api",
            error_code="API_999",
            technical_detail="Traceback at line 42 in /secret/path.py",
        )
        d = err.to_dict()
        assert "technical_detail" not in d
        assert set(d.keys()) == {"message", "suggestion", "component", "error_code"}


class TestClassifyError:
    """Tests for the internal _classify_error helper."""

    @pytest.mark.parametrize(
        "exc,expected_suffix",
        [
            (TimeoutError("t"), "003"),
            (ConnectionError("c"), "003"),
            (MemoryError(), "004"),
            (ValueError("v"), "005"),
            (json.JSONDecodeError("bad", "doc", 0), "006"),
            (RetriesExhaustedError(OSError("x"), 2), "007"),
            (RuntimeError("surprise"), "999"),
        ],
    )
    def test_code_suffixes(self, exc: BaseException, expected_suffix: str) -> None:
        """Each exception family maps to a specific code suffix."""
        _msg, _sug, suffix = _classify_error(exc)
        assert suffix == expected_suffix


class TestErrorFormatter:
    """Tests for ErrorFormatter methods."""

    def setup_method(self) -> None:
        """Create a formatter for each test."""
        self.fmt = ErrorFormatter()

    def test_format_api_error(self) -> None:
        """API errors carry the api component and API_ prefix."""
        result = self.fmt.format_api_error(RuntimeError("boom"))
        assert result.component == "api"
        assert result.error_code == "API_999"

    def test_format_responder_error(self) -> None:
        """Responder errors carry the GEN_ prefix."""
        result = self.fmt.format_responder_error(TimeoutError())
        assert result.component == "responder"
        assert result.error_code == "GEN_003"

    def test_user_message_hides_detail(self) -> None:
        """The exception text only appears in technical_detail."""
        result = self.fmt.format_api_error(ValueError("/secret/internal/path"))
        assert "/secret" not in result.message
        assert "/secret" in result.technical_detail
