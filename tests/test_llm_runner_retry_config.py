"""
Tests for llm_runner/retry_config.py module.

Test coverage:
- Constants (attempts, backoff bounds, status code sets)
- Retry on transient httpx errors until MAX_ATTEMPTS
- No retry on RuntimeError (how clients report permanent failures)
- No retry on HTTP statuses outside RETRY_STATUS_CODES (403, 409, 422, ...)
- Async functions are retried the same way
"""

from unittest.mock import Mock

import httpx
import pytest
from tenacity import wait_none

from visibility_probe.llm_runner.retry_config import (
    MAX_ATTEMPTS,
    MAX_WAIT_SECONDS,
    MIN_WAIT_SECONDS,
    NO_RETRY_STATUS_CODES,
    REQUEST_TIMEOUT,
    RETRY_STATUS_CODES,
    create_retry_decorator,
    is_retryable,
)


def fast(func):
    """Apply the retry decorator without backoff sleeps."""
    decorated = create_retry_decorator()(func)
    decorated.retry.wait = wait_none()
    return decorated


def _status_error(status_code):
    request = httpx.Request("POST", "https://api.example/v1")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


# ============================================================================
# CONSTANTS TESTS
# ============================================================================


def test_constants():
    assert MAX_ATTEMPTS == 3
    assert MIN_WAIT_SECONDS == 1
    assert MAX_WAIT_SECONDS == 60
    assert REQUEST_TIMEOUT == 30.0


def test_status_code_sets_are_disjoint():
    """A status is either retried or fails fast, never both."""
    assert RETRY_STATUS_CODES == {429, 500, 502, 503, 504}
    assert NO_RETRY_STATUS_CODES == {400, 401, 404}
    assert not RETRY_STATUS_CODES & NO_RETRY_STATUS_CODES


# ============================================================================
# RETRY BEHAVIOR TESTS
# ============================================================================


@pytest.mark.parametrize(
    "error",
    [
        _status_error(429),
        _status_error(503),
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
    ],
)
def test_transient_errors_retried_until_success(error):
    func = Mock(side_effect=[error, "ok"])

    assert fast(func)() == "ok"
    assert func.call_count == 2


def test_gives_up_after_max_attempts():
    func = Mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(httpx.ConnectError):
        fast(func)()

    assert func.call_count == MAX_ATTEMPTS


def test_runtime_error_not_retried():
    """Permanent failures surface immediately."""
    func = Mock(side_effect=RuntimeError("OpenAI API error (non-retryable): status=401"))

    with pytest.raises(RuntimeError, match="non-retryable"):
        fast(func)()

    assert func.call_count == 1


@pytest.mark.parametrize("status_code", [403, 409, 422])
def test_other_status_errors_not_retried(status_code):
    func = Mock(side_effect=_status_error(status_code))

    with pytest.raises(httpx.HTTPStatusError):
        fast(func)()

    assert func.call_count == 1


@pytest.mark.parametrize(
    "error,expected",
    [
        (_status_error(429), True),
        (_status_error(500), True),
        (_status_error(403), False),
        (_status_error(422), False),
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (RuntimeError("boom"), False),
    ],
)
def test_is_retryable(error, expected):
    assert is_retryable(error) is expected


def test_custom_max_attempts():
    func = Mock(side_effect=httpx.ConnectError("refused"))
    decorated = create_retry_decorator(max_attempts=5)(func)
    decorated.retry.wait = wait_none()

    with pytest.raises(httpx.ConnectError):
        decorated()

    assert func.call_count == 5


@pytest.mark.asyncio
async def test_async_function_retried():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise httpx.ReadTimeout("slow")
        return "done"

    assert await fast(flaky)() == "done"
    assert len(calls) == 3
