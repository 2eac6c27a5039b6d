"""
Retry configuration for outbound model API calls.

Every client (answer services and the analysis model) shares one tenacity
policy so a probe's network behaviour is the same regardless of provider:

- Exponential backoff between attempts
- Retry on network errors and transient statuses (429, 500, 502, 503, 504)
- Fail fast on every other status: 400, 401 and 404 are turned into
  RuntimeError by the clients, anything else (403, 422, ...) propagates as
  httpx.HTTPStatusError after a single attempt
- Per-request HTTP timeout

The probe adds its own overall time budget on top of this
(asyncio.wait_for with report_settings.probe_timeout_seconds), so a call
that keeps retrying is still cut off and recorded as a failed run.

Example:
    >>> from visibility_probe.llm_runner.retry_config import create_retry_decorator
    >>> @create_retry_decorator()
    ... async def call_api():
    ...     ...
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

# Total attempts including the first one
MAX_ATTEMPTS = 3

# Backoff bounds in seconds
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 60

# 429: rate limit, 5xx: server side
RETRY_STATUS_CODES = frozenset([429, 500, 502, 503, 504])

# Permanent: bad request, bad key, unknown model or endpoint
NO_RETRY_STATUS_CODES = frozenset([400, 401, 404])

# Per attempt, in seconds
REQUEST_TIMEOUT = 30.0

# Network failures tenacity treats as transient; HTTP status errors are
# retried only for RETRY_STATUS_CODES
RETRYABLE_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.TimeoutException,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True for network failures and transient HTTP statuses."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRY_STATUS_CODES
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


# ============================================================================
# RETRY DECORATOR FACTORY
# ============================================================================


def create_retry_decorator(max_attempts: int = MAX_ATTEMPTS):
    """
    Create a tenacity retry decorator for model API calls.

    Retries httpx.ConnectError, httpx.TimeoutException and
    httpx.HTTPStatusError with a status in RETRY_STATUS_CODES, with
    exponential backoff (1s min, 60s max).
    The last exception is re-raised once attempts are exhausted.

    Args:
        max_attempts: Total attempts including the first one

    Returns:
        Retry decorator usable on sync or async functions

    Note:
        Callers check NO_RETRY_STATUS_CODES themselves and raise a
        RuntimeError, which this decorator does not retry.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=MIN_WAIT_SECONDS,
            max=MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
